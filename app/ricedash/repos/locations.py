from sqlalchemy import select

from app.ricedash.db.models import Location


class LocationRepository:
    def __init__(self, db):
        self.db = db

    def list_by_ids(self, location_ids, *, active_only: bool = False) -> list[Location]:
        ids = list(location_ids)
        if not ids:
            return []
        stmt = select(Location).where(Location.id.in_(ids))
        if active_only:
            stmt = stmt.where(Location.is_active.is_(True))
        return self.db.execute(stmt).scalars().all()

    def active_by_id(self, location_ids) -> dict[int, Location]:
        return {location.id: location for location in self.list_by_ids(location_ids, active_only=True)}
