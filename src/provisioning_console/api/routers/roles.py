"""
provisioning_console.api.routers.roles

Role catalog endpoint.

Responsibilities:
- Serve the cached role catalog the provisioning form validates against.
- Report directory store failures as 502.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from starlette.status import HTTP_502_BAD_GATEWAY

from provisioning_console.api.deps import provisioning_stack
from provisioning_console.auth.deps import require_roles
from provisioning_console.errors import DirectoryError
from provisioning_console.services.stack import ProvisioningStack

router = APIRouter(
    prefix="/v1/roles",
    tags=["roles"],
    dependencies=[Depends(require_roles("operator"))],
)


class RoleResponse(BaseModel):
    id: int
    name: str


@router.get("", response_model=list[RoleResponse])
async def list_roles(stack: ProvisioningStack = Depends(provisioning_stack)) -> list[RoleResponse]:
    try:
        roles = await stack.catalog.roles()
    except DirectoryError as e:
        raise HTTPException(status_code=HTTP_502_BAD_GATEWAY, detail=e.to_dict()) from e
    return [RoleResponse(id=r.id, name=r.name) for r in roles]
