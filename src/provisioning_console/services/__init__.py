"""
provisioning_console.services

Service-layer package.

Responsibilities:
- Own transaction boundaries and persistence decisions for the ledger.
- Compose the provisioning stack (clients, guard, orchestrator) once per process.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services should be pure Python and easily testable with fake transports/sessions.
