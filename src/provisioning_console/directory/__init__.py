"""
provisioning_console.directory

Directory store boundary (PostgREST-style `/rest/v1/*`).

Responsibilities:
- Record types (`records`), the HTTP client (`client`), the cached role
  catalog (`roles`) and the cached account listing (`listing`).
"""

# Package marker; import from submodules.
