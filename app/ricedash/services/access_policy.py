"""Row-level access policy for users, locations and stock.

Every read and write made on behalf of an end user goes through
``AccessPolicyEngine``. Visibility is expressed as SQL predicates appended to
the statement, so the database applies the filter atomically in the same
query that returns the rows. A policy violation yields zero rows; it is never
reported as a distinguishable error.

The caller is always passed explicitly as a ``CallerScope``. Role and
locations are resolved from the user directory with a direct query that does
not itself go through the policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, false, select, true, update
from sqlalchemy.exc import IntegrityError

from app.ricedash.core.error_catalog import ErrorCatalog
from app.ricedash.core.exceptions import AuthorizationDenied, ValidationError
from app.ricedash.core.metrics import metrics
from app.ricedash.core.scope import (
    DEFAULT_ROLE,
    Role,
    coerce_location_ids,
    is_admin,
    is_location_scoped,
    is_unrestricted_reader,
    normalize_assignment,
    parse_role,
)
from app.ricedash.db.models import Location, StockRecord, User
from app.ricedash.repos.stock import StockQueryFilters, StockRepository

logger = logging.getLogger(__name__)

USER_ENTITY = "user"
LOCATION_ENTITY = "location"
STOCK_ENTITY = "stock"

_USER_FIELDS = {"name", "role", "locations"}
_LOCATION_FIELDS = {"name", "display_value", "is_active"}
_STOCK_FIELDS = {
    "location_id",
    "product_id",
    "product_name",
    "uom_id",
    "uom_name",
    "category_id",
    "category_name",
    "weight",
    "quantity_on_hand",
    "product_type",
}


@dataclass(frozen=True)
class CallerScope:
    external_id: str
    user_id: int | None
    role: Role
    location_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_admin(self) -> bool:
        return is_admin(self.role)

    @property
    def is_unrestricted(self) -> bool:
        return is_unrestricted_reader(self.role)

    @property
    def is_location_scoped(self) -> bool:
        return is_location_scoped(self.role)

    @property
    def is_registered(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True)
class MutationResult:
    rows_affected: int
    row: Any | None = None


@dataclass(frozen=True)
class LocationLabel:
    id: int
    name: str | None
    is_active: bool
    label: str


class AccessPolicyEngine:
    def __init__(self, db, cache: dict | None = None):
        self.db = db
        self.cache = cache if cache is not None else {}

    # -- caller resolution -------------------------------------------------

    def resolve_caller(self, external_id: str) -> CallerScope:
        cache_key = f"caller:{external_id}"
        if cache_key in self.cache:
            return self.cache[cache_key]
        row = self.db.execute(
            select(User.id, User.role, User.locations).where(User.external_id == external_id)
        ).first()
        if row is None:
            scope = CallerScope(external_id=external_id, user_id=None, role=DEFAULT_ROLE)
        else:
            role = parse_role(row.role) or DEFAULT_ROLE
            scope = CallerScope(
                external_id=external_id,
                user_id=row.id,
                role=role,
                location_ids=tuple(coerce_location_ids(row.locations)),
            )
        self.cache[cache_key] = scope
        return scope

    def forget_caller(self, external_id: str) -> None:
        self.cache.pop(f"caller:{external_id}", None)

    # -- visibility predicates ---------------------------------------------

    @staticmethod
    def user_visibility(caller: CallerScope):
        if caller.is_unrestricted:
            return true()
        return User.external_id == caller.external_id

    @staticmethod
    def location_visibility(caller: CallerScope):
        if caller.is_admin:
            return true()
        return Location.is_active.is_(True)

    @staticmethod
    def stock_visibility(caller: CallerScope):
        if caller.is_unrestricted:
            return true()
        if not caller.is_location_scoped or not caller.location_ids:
            return false()
        # Deactivated assignments still resolve for display but never widen visibility.
        assigned_names = select(Location.name).where(
            Location.id.in_(caller.location_ids),
            Location.is_active.is_(True),
        )
        referenced_location_active = (
            select(Location.id)
            .where(Location.id == StockRecord.location_id, Location.is_active.is_(True))
            .exists()
        )
        return and_(StockRecord.location_name.in_(assigned_names), referenced_location_active)

    # -- reads -------------------------------------------------------------

    def list_users(self, caller: CallerScope, *, search: str | None = None) -> list[User]:
        stmt = select(User).where(self.user_visibility(caller))
        if search:
            stmt = stmt.where(User.name.ilike(f"%{search.strip()}%"))
        return self.db.execute(stmt.order_by(User.name.asc(), User.id.asc())).scalars().all()

    def get_user(self, caller: CallerScope, external_id: str) -> User | None:
        stmt = select(User).where(User.external_id == external_id, self.user_visibility(caller))
        return self.db.execute(stmt).scalars().first()

    def list_locations(self, caller: CallerScope) -> list[Location]:
        stmt = select(Location).where(self.location_visibility(caller)).order_by(Location.name.asc())
        return self.db.execute(stmt).scalars().all()

    def get_location(self, caller: CallerScope, location_id: int) -> Location | None:
        stmt = select(Location).where(Location.id == location_id, self.location_visibility(caller))
        return self.db.execute(stmt).scalars().first()

    def list_stock(self, caller: CallerScope, filters: StockQueryFilters | None = None) -> list[StockRecord]:
        stmt = select(StockRecord).where(self.stock_visibility(caller))
        stmt = StockRepository.apply_filters(stmt, filters)
        stmt = stmt.order_by(StockRecord.location_name.asc(), StockRecord.product_name.asc(), StockRecord.id.asc())
        return self.db.execute(stmt).scalars().all()

    def resolve_location_labels(self, location_ids) -> list[LocationLabel]:
        """Display names for assigned locations, including inactive ones."""
        ids = coerce_location_ids(location_ids)
        if not ids:
            return []
        found = {
            location.id: location
            for location in self.db.execute(select(Location).where(Location.id.in_(ids))).scalars().all()
        }
        labels = []
        for location_id in ids:
            location = found.get(location_id)
            if location is None:
                labels.append(
                    LocationLabel(
                        id=location_id,
                        name=None,
                        is_active=False,
                        label=f"Unknown location #{location_id}",
                    )
                )
                continue
            label = location.name if location.is_active else f"{location.name} (Inactive)"
            labels.append(LocationLabel(id=location.id, name=location.name, is_active=location.is_active, label=label))
        return labels

    # -- user writes -------------------------------------------------------

    def register_self(
        self,
        caller: CallerScope,
        *,
        external_id: str,
        name: str,
        role: str | Role = DEFAULT_ROLE,
        locations=None,
    ) -> MutationResult:
        try:
            if external_id != caller.external_id:
                raise AuthorizationDenied(USER_ENTITY, "insert")
            if parse_role(role) is not DEFAULT_ROLE or coerce_location_ids(locations):
                raise AuthorizationDenied(USER_ENTITY, "insert")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)

        existing = self.get_user(caller, external_id)
        if existing is not None:
            return MutationResult(rows_affected=0, row=existing)

        user = User(external_id=external_id, name=(name or "User").strip() or "User", role=DEFAULT_ROLE.value, locations=[])
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Concurrent self-registration for %s, returning existing row", external_id)
            return MutationResult(rows_affected=0, row=self.get_user(caller, external_id))
        self.db.refresh(user)
        self.forget_caller(external_id)
        return MutationResult(rows_affected=1, row=user)

    def update_user(self, caller: CallerScope, external_id: str, changes: dict[str, Any]) -> MutationResult:
        changes = {key: value for key, value in changes.items() if key in _USER_FIELDS}
        try:
            target = self._user_for_write(caller, external_id)
            new_role, new_locations = self._check_user_assignment(caller, target, changes)
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)

        if "name" in changes and changes["name"] is not None:
            name = str(changes["name"]).strip()
            if not name:
                raise ValidationError(details={"field": "name", "message": "Name must not be empty"})
            target.name = name
        target.role = new_role.value
        target.locations = new_locations
        self.db.commit()
        self.db.refresh(target)
        self.forget_caller(external_id)
        return MutationResult(rows_affected=1, row=target)

    def delete_user(self, caller: CallerScope, external_id: str) -> MutationResult:
        try:
            self._require_admin(caller, USER_ENTITY, "delete")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)
        target = self.db.execute(select(User).where(User.external_id == external_id)).scalars().first()
        if target is None:
            return MutationResult(rows_affected=0)
        self.db.delete(target)
        self.db.commit()
        self.forget_caller(external_id)
        return MutationResult(rows_affected=1, row=target)

    def _user_for_write(self, caller: CallerScope, external_id: str) -> User:
        stmt = select(User).where(User.external_id == external_id)
        if not caller.is_admin:
            stmt = stmt.where(User.external_id == caller.external_id)
        target = self.db.execute(stmt).scalars().first()
        if target is None:
            raise AuthorizationDenied(USER_ENTITY, "update")
        return target

    @staticmethod
    def _check_user_assignment(caller: CallerScope, target: User, changes: dict) -> tuple[Role, list[int]]:
        stored_role = parse_role(target.role) or DEFAULT_ROLE
        stored_locations = coerce_location_ids(target.locations)

        requested_role = stored_role
        if changes.get("role") is not None:
            parsed = parse_role(changes["role"])
            if parsed is None:
                if not caller.is_admin:
                    raise AuthorizationDenied(USER_ENTITY, "update")
                raise ValidationError(ErrorCatalog.INVALID_ROLE, details={"role": changes["role"]})
            requested_role = parsed
        requested_locations = stored_locations
        if "locations" in changes and changes["locations"] is not None:
            requested_locations = coerce_location_ids(changes["locations"])

        if not caller.is_admin:
            if requested_role is not stored_role or requested_locations != stored_locations:
                raise AuthorizationDenied(USER_ENTITY, "update")
            return stored_role, stored_locations
        return requested_role, normalize_assignment(requested_role, requested_locations)

    # -- location writes ---------------------------------------------------

    def create_location(self, caller: CallerScope, data: dict[str, Any]) -> MutationResult:
        try:
            self._require_admin(caller, LOCATION_ENTITY, "insert")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError(details={"field": "name", "message": "Name is required"})
        location = Location(
            name=name,
            display_value=str(data.get("display_value") or name),
            is_active=bool(data.get("is_active", True)),
        )
        if data.get("id") is not None:
            location.id = int(data["id"])
        self.db.add(location)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ValidationError(details={"field": "id", "message": "Location id already exists"}) from exc
        self.db.refresh(location)
        return MutationResult(rows_affected=1, row=location)

    def update_location(self, caller: CallerScope, location_id: int, changes: dict[str, Any]) -> MutationResult:
        try:
            self._require_admin(caller, LOCATION_ENTITY, "update")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)
        location = self.db.get(Location, location_id)
        if location is None:
            return MutationResult(rows_affected=0)
        for key, value in changes.items():
            if key not in _LOCATION_FIELDS or value is None:
                continue
            setattr(location, key, value.strip() if isinstance(value, str) else value)
        if not location.name:
            raise ValidationError(details={"field": "name", "message": "Name must not be empty"})
        # Keep the denormalized stock label in step with the location name.
        self.db.execute(
            update(StockRecord)
            .where(StockRecord.location_id == location.id, StockRecord.location_name != location.name)
            .values(location_name=location.name)
        )
        self.db.commit()
        self.db.refresh(location)
        return MutationResult(rows_affected=1, row=location)

    def deactivate_location(self, caller: CallerScope, location_id: int) -> MutationResult:
        return self.update_location(caller, location_id, {"is_active": False})

    # -- stock writes ------------------------------------------------------

    def create_stock_record(self, caller: CallerScope, data: dict[str, Any]) -> MutationResult:
        try:
            self._require_admin(caller, STOCK_ENTITY, "insert")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)
        values = {key: value for key, value in data.items() if key in _STOCK_FIELDS}
        location = self.db.get(Location, values.get("location_id"))
        if location is None:
            raise ValidationError(details={"field": "location_id", "message": "Unknown location"})
        record = StockRecord(**values, location_name=location.name)
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return MutationResult(rows_affected=1, row=record)

    def update_stock_record(self, caller: CallerScope, record_id: int, changes: dict[str, Any]) -> MutationResult:
        try:
            self._require_admin(caller, STOCK_ENTITY, "update")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)
        record = self.db.get(StockRecord, record_id)
        if record is None:
            return MutationResult(rows_affected=0)
        for key, value in changes.items():
            if key in _STOCK_FIELDS and value is not None:
                setattr(record, key, value)
        location = self.db.get(Location, record.location_id)
        if location is None:
            self.db.rollback()
            raise ValidationError(details={"field": "location_id", "message": "Unknown location"})
        record.location_name = location.name
        self.db.commit()
        self.db.refresh(record)
        return MutationResult(rows_affected=1, row=record)

    def delete_stock_record(self, caller: CallerScope, record_id: int) -> MutationResult:
        try:
            self._require_admin(caller, STOCK_ENTITY, "delete")
        except AuthorizationDenied as exc:
            return self._denied(caller, exc)
        record = self.db.get(StockRecord, record_id)
        if record is None:
            return MutationResult(rows_affected=0)
        self.db.delete(record)
        self.db.commit()
        return MutationResult(rows_affected=1)

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _require_admin(caller: CallerScope, entity: str, operation: str) -> None:
        if not caller.is_admin:
            raise AuthorizationDenied(entity, operation)

    @staticmethod
    def _denied(caller: CallerScope, exc: AuthorizationDenied) -> MutationResult:
        metrics.increment_rbac_denied(entity=exc.entity, operation=exc.operation)
        logger.info(
            "Row policy denied %s on %s",
            exc.operation,
            exc.entity,
            extra={"caller": caller.external_id, "role": caller.role.value},
        )
        return MutationResult(rows_affected=0)
