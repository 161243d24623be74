"""
provisioning_console.db

Persistence package (SQLAlchemy async) for the provisioning ledger.

Responsibilities:
- Provide ORM models, engine/session setup, and repositories.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The ledger is local to the console; it never stands in for the directory store.
