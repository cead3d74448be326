from sqlalchemy import select

from app.ricedash.core.config import settings
from app.ricedash.core.scope import Role
from app.ricedash.db.models import Location, User
from app.ricedash.db.session import bind_trusted


def _get_or_create_locations(db) -> list[Location]:
    existing = {location.name: location for location in db.execute(select(Location)).scalars().all()}
    locations = []
    for name in settings.DEFAULT_LOCATIONS:
        location = existing.get(name)
        if location is None:
            location = Location(name=name, display_value=name, is_active=True)
            db.add(location)
        locations.append(location)
    db.flush()
    return locations


def _get_or_create_bootstrap_admin(db):
    external_id = settings.BOOTSTRAP_ADMIN_EXTERNAL_ID
    if not external_id:
        return None
    user = db.execute(select(User).where(User.external_id == external_id)).scalars().first()
    if user:
        if user.role != Role.SUPERADMIN.value:
            user.role = Role.SUPERADMIN.value
            user.locations = []
        return user
    user = User(
        external_id=external_id,
        name=settings.BOOTSTRAP_ADMIN_NAME,
        role=Role.SUPERADMIN.value,
        locations=[],
    )
    db.add(user)
    return user


def run_seed(db):
    bind_trusted(db)
    _get_or_create_locations(db)
    _get_or_create_bootstrap_admin(db)
    db.commit()
