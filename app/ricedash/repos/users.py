from datetime import datetime

from sqlalchemy import delete, select

from app.ricedash.db.models import IdentityTombstone, User, utcnow


class UserRepository:
    """Unfiltered access to the user directory.

    Callers acting on behalf of an end user go through ``AccessPolicyEngine``;
    this repository is used by trusted server-side components only.
    """

    def __init__(self, db):
        self.db = db

    def get_by_external_id(self, external_id: str):
        stmt = select(User).where(User.external_id == external_id)
        return self.db.execute(stmt).scalars().first()

    def list_all(self):
        stmt = select(User).order_by(User.name.asc(), User.id.asc())
        return self.db.execute(stmt).scalars().all()

    def delete_by_external_id(self, external_id: str) -> int:
        result = self.db.execute(delete(User).where(User.external_id == external_id))
        return result.rowcount or 0

    def get_tombstone(self, external_id: str):
        return self.db.get(IdentityTombstone, external_id)

    def record_tombstone(self, external_id: str, deleted_at: datetime | None = None) -> IdentityTombstone:
        deleted_at = deleted_at or utcnow()
        tombstone = self.get_tombstone(external_id)
        if tombstone is None:
            tombstone = IdentityTombstone(external_id=external_id, deleted_at=deleted_at)
            self.db.add(tombstone)
        elif deleted_at > tombstone.deleted_at:
            tombstone.deleted_at = deleted_at
        self.db.flush()
        return tombstone

    def clear_tombstone(self, external_id: str) -> None:
        self.db.execute(delete(IdentityTombstone).where(IdentityTombstone.external_id == external_id))
