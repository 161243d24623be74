"""
provisioning_console.db.models

Provisioning ledger schema.

Responsibilities:
- ProvisioningAttempt: one row per operator submission, carrying the identity
  id as soon as it exists and the classified outcome once known. Orphaned
  identities are reported from here.
- AuditEvent: append-only trail of state transitions per attempt.

Credentials are never stored.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, String, Text, Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from provisioning_console.db.base import Base


def _utcnow() -> datetime:
    # Naive UTC timestamps; SQLite has no timezone-aware column type.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class AttemptStatus(enum.StrEnum):
    running = "RUNNING"
    completed = "COMPLETED"
    failed = "FAILED"
    orphaned = "ORPHANED"


class ProvisioningAttempt(Base):
    __tablename__ = "provisioning_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    actor: Mapped[str] = mapped_column(String(256), nullable=False)

    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    given_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    family_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    role_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    identity_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="IDLE")
    status: Mapped[AttemptStatus] = mapped_column(
        Enum(AttemptStatus), nullable=False, index=True
    )

    error_kind: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)

    events: Mapped[list[AuditEvent]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan"
    )


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("provisioning_attempts.id"), nullable=False, index=True
    )

    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # Order within one batch of events written together (timestamps can tie).
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)

    attempt: Mapped[ProvisioningAttempt] = relationship(back_populates="events")

    __table_args__ = (Index("ix_audit_attempt_created", "attempt_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# `status` is the ledger's coarse view; `state` keeps the orchestrator's last
# state so an orphan can be told apart by where the run stopped.
