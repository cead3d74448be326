"""Applies identity store lifecycle events to the user directory.

Events may arrive late, twice, or out of order. Every applied upsert stores
the event's effective timestamp in ``users.source_updated_at`` and an older
event never overwrites a newer one. Deletions leave a tombstone so a late
``user.created`` cannot bring a removed identity back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.ricedash.clients.identity_store import IdentityRecord, millis_to_datetime
from app.ricedash.core.metrics import metrics
from app.ricedash.core.scope import coerce_role, normalize_assignment
from app.ricedash.db.models import User, utcnow
from app.ricedash.db.session import bind_trusted
from app.ricedash.repos.users import UserRepository
from app.ricedash.services.audit import AuditEventPayload, AuditService

logger = logging.getLogger(__name__)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"
HANDLED_EVENTS = {USER_CREATED, USER_UPDATED, USER_DELETED}

APPLIED = "applied"
DELETED = "deleted"
STALE = "stale"
IGNORED = "ignored"
FAILED = "failed"


@dataclass(frozen=True)
class SyncOutcome:
    event_type: str
    external_id: str | None
    outcome: str


def event_timestamp(data: dict[str, Any], header_timestamp: int | None) -> datetime:
    effective = millis_to_datetime(data.get("updated_at"))
    if effective is not None:
        return effective
    if header_timestamp is not None:
        return datetime.fromtimestamp(header_timestamp, tz=timezone.utc).replace(tzinfo=None)
    return utcnow()


class IdentitySyncService:
    def __init__(self, db, *, trace_id: str | None = None):
        self.db = db
        self.repo = UserRepository(db)
        self.audit = AuditService(db)
        self.trace_id = trace_id
        bind_trusted(db)

    def handle_event(self, event: dict[str, Any], *, header_timestamp: int | None = None) -> SyncOutcome:
        event_type = str(event.get("type") or "")
        data = event.get("data") if isinstance(event.get("data"), dict) else {}
        external_id = str(data["id"]) if data.get("id") else None

        if event_type not in HANDLED_EVENTS:
            logger.info("Ignoring identity event type %r", event_type)
            return self._finish(event_type, external_id, IGNORED)
        if external_id is None:
            logger.warning("Identity event %s without an identity id", event_type)
            return self._finish(event_type, None, IGNORED)

        occurred_at = event_timestamp(data, header_timestamp)
        try:
            if event_type == USER_DELETED:
                outcome = self.apply_delete(external_id, occurred_at)
            else:
                outcome = self.apply_upsert(IdentityRecord.from_payload(data), occurred_at)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Failed to apply identity event",
                extra={"event_type": event_type, "external_id": external_id, "trace_id": self.trace_id},
            )
            return self._fail(event_type, external_id, exc)
        except Exception as exc:
            # Verified deliveries are always acknowledged.
            self.db.rollback()
            logger.exception(
                "Malformed identity event",
                extra={"event_type": event_type, "external_id": external_id, "trace_id": self.trace_id},
            )
            return self._fail(event_type, external_id, exc)
        return self._finish(event_type, external_id, outcome)

    def apply_upsert(self, record: IdentityRecord, occurred_at: datetime) -> str:
        tombstone = self.repo.get_tombstone(record.id)
        if tombstone is not None and occurred_at <= tombstone.deleted_at:
            logger.info("Skipping event for deleted identity %s", record.id)
            return STALE

        role = coerce_role(record.metadata.get("role"))
        locations = normalize_assignment(role, record.metadata.get("locations"))
        name = record.display_name

        user = self.repo.get_by_external_id(record.id)
        if user is None:
            user = User(
                external_id=record.id,
                name=name,
                role=role.value,
                locations=locations,
                source_updated_at=occurred_at,
            )
            self.db.add(user)
            if tombstone is not None:
                self.repo.clear_tombstone(record.id)
            try:
                self.db.commit()
                return APPLIED
            except IntegrityError:
                # Another delivery inserted the row first; apply as an update.
                self.db.rollback()
                logger.info("Concurrent insert for %s, retrying as update", record.id)
                user = self.repo.get_by_external_id(record.id)
                if user is None:
                    raise

        if user.source_updated_at is not None and occurred_at < user.source_updated_at:
            logger.info(
                "Skipping out-of-order event for %s (%s < %s)",
                record.id,
                occurred_at.isoformat(),
                user.source_updated_at.isoformat(),
            )
            return STALE
        user.name = name
        user.role = role.value
        user.locations = locations
        user.source_updated_at = occurred_at
        if tombstone is not None:
            self.repo.clear_tombstone(record.id)
        self.db.commit()
        return APPLIED

    def apply_delete(self, external_id: str, occurred_at: datetime) -> str:
        user = self.repo.get_by_external_id(external_id)
        if user is not None and user.source_updated_at is not None and occurred_at < user.source_updated_at:
            # A delete never loses to an update; keep the tombstone after the last applied write.
            occurred_at = user.source_updated_at
        self.repo.record_tombstone(external_id, occurred_at)
        self.repo.delete_by_external_id(external_id)
        self.db.commit()
        return DELETED

    def _fail(self, event_type: str, external_id: str | None, exc: Exception) -> SyncOutcome:
        self.audit.record_event(
            AuditEventPayload(
                trace_id=self.trace_id,
                actor="identity-webhook",
                action=f"identity.{event_type}",
                entity_type="user",
                entity_id=external_id,
                result="failure",
                detail=exc.__class__.__name__,
            )
        )
        return self._finish(event_type, external_id, FAILED)

    def _finish(self, event_type: str, external_id: str | None, outcome: str) -> SyncOutcome:
        metrics.record_webhook_event(event_type if event_type in HANDLED_EVENTS else "other", outcome)
        logger.info(
            "Identity event processed",
            extra={"event_type": event_type, "external_id": external_id, "outcome": outcome},
        )
        return SyncOutcome(event_type=event_type, external_id=external_id, outcome=outcome)
