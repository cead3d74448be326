from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from app.ricedash.clients.identity_store import IdentityStoreClient
from app.ricedash.core.error_catalog import AppError, ErrorCatalog
from app.ricedash.core.scope import coerce_role, normalize_assignment
from app.ricedash.db.models import User, utcnow
from app.ricedash.db.session import bind_trusted
from app.ricedash.repos.users import UserRepository

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class ReconciliationService:
    """Overwrites the user directory with the identity store's view.

    The identity store is authoritative for role and locations. Repairs gaps
    left by partially failed gateway writes and by lost webhook deliveries.
    """

    def __init__(self, db, identity: IdentityStoreClient):
        self.db = db
        self.identity = identity
        self.users = UserRepository(db)
        bind_trusted(db)

    def run(self) -> ReconciliationCounts:
        records = self.identity.list_users()
        counts = ReconciliationCounts()
        local = {user.external_id: user for user in self.users.list_all()}
        if not records and local:
            # An empty listing never wipes a populated directory.
            logger.warning("Identity store listed no users; keeping %s local rows", len(local))
            raise AppError(ErrorCatalog.IDENTITY_LISTING_EMPTY, {"local_users": len(local)})
        now = utcnow()

        for record in records:
            role = coerce_role(record.metadata.get("role"))
            locations = normalize_assignment(role, record.metadata.get("locations"))
            name = record.display_name
            user = local.pop(record.id, None)
            if user is None:
                self.users.clear_tombstone(record.id)
                self.db.add(
                    User(
                        external_id=record.id,
                        name=name,
                        role=role.value,
                        locations=locations,
                        source_updated_at=record.updated_at or now,
                    )
                )
                counts.created += 1
                continue
            if user.name == name and user.role == role.value and list(user.locations or []) == locations:
                counts.unchanged += 1
                continue
            user.name = name
            user.role = role.value
            user.locations = locations
            user.source_updated_at = max(filter(None, [record.updated_at, user.source_updated_at]), default=now)
            counts.updated += 1

        for external_id in local:
            self.users.record_tombstone(external_id, now)
            self.users.delete_by_external_id(external_id)
            counts.deleted += 1

        self.db.commit()
        logger.info("Identity reconciliation finished: %s", counts.as_dict())
        return counts
