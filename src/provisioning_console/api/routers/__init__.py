"""
provisioning_console.api.routers

HTTP routers, one module per resource.
"""
