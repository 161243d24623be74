"""
provisioning_console.api.routers.accounts

Account provisioning endpoints.

Responsibilities:
- Provision an account and return the tagged outcome.
- Retry the directory write for an orphaned identity.
- Serve the cached account listing, the orphan report and an attempt's trail.

Status codes: 201 completed, 207 orphaned (partially created), 4xx/5xx for
failures by kind. The body's `bucket` is what callers should branch on.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND, HTTP_502_BAD_GATEWAY

from provisioning_console.api.deps import db_session, provisioning_service, provisioning_stack
from provisioning_console.auth.deps import get_principal, require_roles
from provisioning_console.auth.models import Principal
from provisioning_console.db.repositories.attempts import AttemptRepo
from provisioning_console.errors import (
    DirectoryError,
    DuplicateAccountError,
    NoActiveSessionError,
    ProvisioningError,
    SessionRestoreError,
    TransientError,
    ValidationError,
    WeakCredentialError,
)
from provisioning_console.provisioning.models import ProvisioningRequest
from provisioning_console.provisioning.outcomes import Completed, OrphanAccount, Outcome
from provisioning_console.services.provisioning_service import ProvisioningService
from provisioning_console.services.stack import ProvisioningStack

router = APIRouter(
    prefix="/v1/accounts",
    tags=["accounts"],
    dependencies=[Depends(require_roles("operator"))],
)

# Most specific first: DirectoryValidationError is also a ValidationError.
_FAILURE_STATUS: tuple[tuple[type[ProvisioningError], int], ...] = (
    (SessionRestoreError, 500),
    (DuplicateAccountError, 409),
    (WeakCredentialError, 422),
    (TransientError, 503),
    (NoActiveSessionError, 409),
    (DirectoryError, 502),
    (ValidationError, 422),
)


class CreateAccountRequest(BaseModel):
    # Deliberately permissive: the orchestrator reports missing fields itself.
    given_name: str | None = None
    family_name: str | None = None
    email: str | None = None
    credential: str | None = Field(default=None, repr=False)
    role_id: int | None = None


class RetryDirectoryRequest(BaseModel):
    role_id: int


class RecordResponse(BaseModel):
    identity_id: str
    given_name: str | None
    family_name: str | None
    email: str
    role_id: int | None
    created_at: datetime | None


class OutcomeResponse(BaseModel):
    status: str
    bucket: str
    attempt_id: uuid.UUID
    identity_id: str | None = None
    record: RecordResponse | None = None
    already_existed: bool = False
    reload_directory: bool = False
    error: dict[str, Any] | None = None


class OrphanResponse(BaseModel):
    attempt_id: uuid.UUID
    identity_id: str | None
    email: str
    role_id: int | None
    state: str
    error_kind: str | None
    error: str | None
    created_at: datetime
    updated_at: datetime


class AuditEventResponse(BaseModel):
    event_type: str
    actor: str
    details: dict[str, Any]
    created_at: datetime


def http_status(outcome: Outcome) -> int:
    if isinstance(outcome, Completed):
        return 201
    if isinstance(outcome, OrphanAccount):
        return 207
    for error_type, status in _FAILURE_STATUS:
        if isinstance(outcome.reason, error_type):
            return status
    return 502


def _outcome_response(attempt_id: uuid.UUID, outcome: Outcome) -> JSONResponse:
    body = OutcomeResponse(
        status=outcome.status,
        bucket=str(outcome.bucket),
        attempt_id=attempt_id,
        identity_id=outcome.identity_id,
        reload_directory=outcome.reload_directory,
    )
    if isinstance(outcome, Completed):
        body.record = RecordResponse(**outcome.record.to_dict())
        body.already_existed = outcome.already_existed
    elif outcome.reason is not None:
        body.error = outcome.reason.to_dict()
    return JSONResponse(status_code=http_status(outcome), content=body.model_dump(mode="json"))


@router.post("", response_model=OutcomeResponse)
async def provision_account(
    body: CreateAccountRequest,
    principal: Principal = Depends(get_principal),
    service: ProvisioningService = Depends(provisioning_service),
) -> JSONResponse:
    request = ProvisioningRequest(
        given_name=body.given_name,
        family_name=body.family_name,
        email=body.email,
        credential=body.credential,
        role_id=body.role_id,
    )
    attempt_id, outcome = await service.provision(request=request, actor=principal.subject)
    return _outcome_response(attempt_id, outcome)


@router.post("/{identity_id}/directory", response_model=OutcomeResponse)
async def retry_directory(
    identity_id: str,
    body: RetryDirectoryRequest,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(db_session),
    service: ProvisioningService = Depends(provisioning_service),
) -> JSONResponse:
    if await AttemptRepo(session).latest_for_identity(identity_id) is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="No attempt for identity")
    attempt_id, outcome = await service.retry_directory(
        identity_id=identity_id, role_id=body.role_id, actor=principal.subject
    )
    return _outcome_response(attempt_id, outcome)


@router.get("", response_model=list[RecordResponse])
async def list_accounts(
    stack: ProvisioningStack = Depends(provisioning_stack),
) -> list[RecordResponse]:
    try:
        records = await stack.listing.accounts()
    except DirectoryError as e:
        raise HTTPException(status_code=HTTP_502_BAD_GATEWAY, detail=e.to_dict()) from e
    return [RecordResponse(**r.to_dict()) for r in records]


@router.get("/orphans", response_model=list[OrphanResponse])
async def list_orphans(
    service: ProvisioningService = Depends(provisioning_service),
) -> list[OrphanResponse]:
    return [
        OrphanResponse(
            attempt_id=a.id,
            identity_id=a.identity_id,
            email=a.email,
            role_id=a.role_id,
            state=a.state,
            error_kind=a.error_kind,
            error=a.error,
            created_at=a.created_at,
            updated_at=a.updated_at,
        )
        for a in await service.orphans()
    ]


@router.get("/attempts/{attempt_id}/events", response_model=list[AuditEventResponse])
async def attempt_events(
    attempt_id: uuid.UUID,
    session: AsyncSession = Depends(db_session),
    service: ProvisioningService = Depends(provisioning_service),
) -> list[AuditEventResponse]:
    if await AttemptRepo(session).get(attempt_id) is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Attempt not found")
    return [
        AuditEventResponse(
            event_type=ev.event_type, actor=ev.actor, details=ev.details, created_at=ev.created_at
        )
        for ev in await service.trail(attempt_id)
    ]


# --- Module Notes -----------------------------------------------------------
# 207 is used for orphans because the request half succeeded: an identity exists
# and must not be created again by resubmitting the same form.
