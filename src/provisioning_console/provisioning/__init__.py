"""
provisioning_console.provisioning

Operator-mediated account provisioning across the identity provider and the
directory store.

Responsibilities:
- Request/outcome types, the session guard, the two store-facing steps and the
  orchestrator that sequences them.
"""

# Package marker; call sites go through `services.provisioning_service`.


# --- Module Notes -----------------------------------------------------------
# Nothing in this package touches the ledger database; persistence decisions
# belong to the service layer.
