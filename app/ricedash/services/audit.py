import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.ricedash.db.models import AuditEvent, utcnow
from app.ricedash.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    trace_id: str | None
    actor: str
    action: str
    entity_type: str
    entity_id: str | None
    result: str
    before: dict | None = None
    after: dict | None = None
    metadata: dict | None = None
    detail: str | None = None


class AuditService:
    """Best-effort audit logging.

    Strategy: failures are logged and swallowed to avoid breaking request flows.
    """

    def __init__(self, db):
        self.db = db
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        try:
            event = AuditEvent(
                trace_id=payload.trace_id,
                actor=payload.actor,
                action=payload.action,
                entity_type=payload.entity_type,
                entity_id=payload.entity_id,
                before_payload=payload.before,
                after_payload=payload.after,
                event_metadata=payload.metadata,
                result=payload.result,
                detail=payload.detail,
                created_at=utcnow(),
            )
            self.repo.create(event)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={
                    "action": payload.action,
                    "trace_id": payload.trace_id,
                    "entity_id": payload.entity_id,
                },
            )
