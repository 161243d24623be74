"""
provisioning_console.db.repositories

Repository package.
"""

# Package marker; repositories are imported directly from submodules.
