"""
provisioning_console.api.routers.session

Operator session at the identity provider.

Responsibilities:
- Sign the operator in; the resulting session becomes the process's ambient session.
- Report and clear the ambient session.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_503_SERVICE_UNAVAILABLE

from provisioning_console.api.deps import provisioning_stack
from provisioning_console.auth.deps import require_roles
from provisioning_console.errors import IdentityError, InvalidSessionError, TransientError
from provisioning_console.services.stack import ProvisioningStack

router = APIRouter(
    prefix="/v1/session",
    tags=["session"],
    dependencies=[Depends(require_roles("operator"))],
)


class SignInRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)


class SessionResponse(BaseModel):
    authenticated: bool
    user_id: str | None = None
    email: str | None = None
    expires_at: int | None = None


def _describe(stack: ProvisioningStack) -> SessionResponse:
    current = stack.ambient.current
    if current is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(
        authenticated=True,
        user_id=current.user_id,
        email=current.email,
        expires_at=current.expires_at,
    )


@router.post("", response_model=SessionResponse)
async def sign_in(
    body: SignInRequest,
    stack: ProvisioningStack = Depends(provisioning_stack),
) -> SessionResponse:
    # Waits for any provisioning run that currently has the session swapped.
    async with stack.ambient.lock:
        try:
            await stack.identity.sign_in_with_password(email=body.email, password=body.password)
        except InvalidSessionError as e:
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=e.message) from e
        except TransientError as e:
            raise HTTPException(status_code=HTTP_503_SERVICE_UNAVAILABLE, detail=e.message) from e
        except IdentityError as e:
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=e.message) from e
    # Roles are readable by the new operator; stale ones belong to the old session.
    stack.catalog.invalidate()
    stack.listing.invalidate()
    return _describe(stack)


@router.get("", response_model=SessionResponse)
async def current_session(stack: ProvisioningStack = Depends(provisioning_stack)) -> SessionResponse:
    return _describe(stack)


@router.delete("", response_model=SessionResponse)
async def sign_out(stack: ProvisioningStack = Depends(provisioning_stack)) -> SessionResponse:
    async with stack.ambient.lock:
        stack.ambient.clear(reason="sign_out")
    return _describe(stack)
