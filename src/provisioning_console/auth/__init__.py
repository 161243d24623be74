"""
provisioning_console.auth

Authentication/authorization package.

Responsibilities:
- JWT helpers: console API tokens and unverified reads of provider tokens.
- FastAPI auth dependencies (Principal + RBAC).
"""

# Package marker.
