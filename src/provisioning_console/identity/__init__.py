"""
provisioning_console.identity

Identity provider boundary.

Responsibilities:
- Ambient session model (`session`).
- HTTP client for account creation, sign-in and session reinstatement (`client`).
"""

# Package marker; import from submodules.
