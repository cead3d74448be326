"""Server-side user administration spanning the identity store and the directory.

The identity store and the user directory cannot share a transaction. Create
compensates a failed local write by deleting the new identity. Update writes
the identity store first and leaves any local failure to the reconciliation
job. Delete removes the identity first and tombstones it locally.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.ricedash.clients.identity_store import IdentityRecord, IdentityStoreClient
from app.ricedash.core.error_catalog import AppError, ErrorCatalog
from app.ricedash.core.exceptions import (
    ConsistencyError,
    LocalStoreError,
    UpstreamError,
    ValidationError,
)
from app.ricedash.core.metrics import metrics
from app.ricedash.core.scope import ASSIGNABLE_ROLES, Role, normalize_assignment, parse_role
from app.ricedash.db.models import User, utcnow
from app.ricedash.repos.users import UserRepository
from app.ricedash.schemas.gateway import CreateUserCommand, DeleteUserCommand, UpdateUserCommand
from app.ricedash.services.audit import AuditEventPayload, AuditService
from app.ricedash.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _parse_command(model, payload: dict[str, Any]):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError(details={"errors": errors}) from exc


def _assignable_role(value: str | None) -> Role:
    role = parse_role(value)
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(ErrorCatalog.INVALID_ROLE, details={"role": value})
    return role


def _user_payload(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "external_id": user.external_id,
        "name": user.name,
        "role": user.role,
        "locations": list(user.locations or []),
    }


class UserGateway:
    def __init__(self, db, identity: IdentityStoreClient, *, actor: str, trace_id: str | None = None):
        self.db = db
        self.identity = identity
        self.actor = actor
        self.trace_id = trace_id
        self.users = UserRepository(db)
        self.audit = AuditService(db)

    def dispatch(self, action: str, payload: dict[str, Any]) -> tuple[dict[str, Any], int]:
        handlers = {
            "create-user": (self.create_user, 201),
            "update-user": (self.update_user, 200),
            "delete-user": (self.delete_user, 200),
            "reconcile": (self.reconcile, 200),
        }
        if action not in handlers:
            raise AppError(ErrorCatalog.UNKNOWN_ACTION, {"action": action})
        handler, status_code = handlers[action]
        try:
            result = handler(payload)
        except AppError as exc:
            metrics.record_gateway_mutation(action, exc.error.code)
            raise
        metrics.record_gateway_mutation(action, "success")
        return result, status_code

    def create_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = _parse_command(CreateUserCommand, payload)
        username = command.username.strip()
        if not username:
            raise ValidationError(details={"field": "username", "message": "Username is required"})
        if len(command.password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(ErrorCatalog.PASSWORD_TOO_SHORT)
        role = _assignable_role(command.role)
        locations = normalize_assignment(role, command.locations)

        try:
            record = self.identity.create_user(
                username=username,
                password=command.password,
                metadata={"role": role.value, "locations": locations},
            )
        except UpstreamError as exc:
            self._audit("create-user", username, "failure", detail=exc.error.code)
            raise

        try:
            user = self._write_local(record, name=record.display_name or username, role=role, locations=locations)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Directory insert failed for new identity %s", record.id)
            compensated = self._compensate_create(record.id)
            self._audit(
                "create-user",
                record.id,
                "failure",
                metadata={"compensated": compensated},
                detail=exc.__class__.__name__,
            )
            raise LocalStoreError({"external_id": record.id, "compensated": compensated}) from exc

        result = _user_payload(user)
        self._audit("create-user", record.id, "success", after=result)
        return result

    def update_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = _parse_command(UpdateUserCommand, payload)
        if command.role is None and command.locations is None:
            raise ValidationError(details={"message": "role or locations is required"})
        new_role = _assignable_role(command.role) if command.role is not None else None

        user = self.users.get_by_external_id(command.external_id)
        if user is not None:
            current_role = parse_role(user.role) or Role.NO_ROLE
            current_locations = list(user.locations or [])
        else:
            remote = self.identity.get_user(command.external_id)
            current_role = parse_role(remote.metadata.get("role")) or Role.NO_ROLE
            current_locations = remote.metadata.get("locations") or []
        before = {"role": current_role.value, "locations": current_locations}

        role = new_role or current_role
        locations = normalize_assignment(role, command.locations if command.locations is not None else current_locations)

        try:
            record = self.identity.update_metadata(command.external_id, {"role": role.value, "locations": locations})
        except UpstreamError as exc:
            self._audit("update-user", command.external_id, "failure", before=before, detail=exc.error.code)
            raise

        try:
            user = self._write_local(record, name=record.display_name, role=role, locations=locations)
        except SQLAlchemyError as exc:
            self.db.rollback()
            error = ConsistencyError("update-user", command.external_id, exc.__class__.__name__)
            self._report_consistency_error(error, after={"role": role.value, "locations": locations})
            raise LocalStoreError(
                {"external_id": command.external_id, "identity_updated": True, "reconciliation_required": True}
            ) from exc

        result = _user_payload(user)
        self._audit("update-user", command.external_id, "success", before=before, after=result)
        return result

    def delete_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        command = _parse_command(DeleteUserCommand, payload)
        external_id = command.external_id
        try:
            self.identity.delete_user(external_id)
        except UpstreamError as exc:
            # Orphaned directory rows are removed by reconciliation, not here.
            self._audit("delete-user", external_id, "failure", detail=exc.error.code)
            raise

        cleanup_pending = False
        try:
            self.users.record_tombstone(external_id, utcnow())
            self.users.delete_by_external_id(external_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            cleanup_pending = True
            self._report_consistency_error(ConsistencyError("delete-user", external_id, exc.__class__.__name__))

        self._audit(
            "delete-user",
            external_id,
            "success",
            metadata={"directory_cleanup_pending": cleanup_pending},
        )
        return {"deleted": True, "external_id": external_id, "directory_cleanup_pending": cleanup_pending}

    def reconcile(self, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        counts = ReconciliationService(self.db, self.identity).run()
        result = counts.as_dict()
        self._audit("reconcile", None, "success", metadata=result)
        return result

    def _write_local(self, record: IdentityRecord, *, name: str, role: Role, locations: list[int]) -> User:
        source_updated_at = record.updated_at or utcnow()
        user = self.users.get_by_external_id(record.id)
        if user is None:
            user = User(external_id=record.id, name=name, role=role.value, locations=locations)
            self.db.add(user)
            try:
                self.db.flush()
            except IntegrityError:
                # The webhook for this identity landed first.
                self.db.rollback()
                user = self.users.get_by_external_id(record.id)
                if user is None:
                    raise
        user.name = name
        user.role = role.value
        user.locations = locations
        if user.source_updated_at is None or source_updated_at >= user.source_updated_at:
            user.source_updated_at = source_updated_at
        self.users.clear_tombstone(record.id)
        self.db.commit()
        self.db.refresh(user)
        return user

    def _compensate_create(self, external_id: str) -> bool:
        try:
            self.identity.delete_user(external_id)
        except UpstreamError as exc:
            self._report_consistency_error(ConsistencyError("create-user", external_id, f"compensation failed: {exc.error.code}"))
            return False
        try:
            self.users.record_tombstone(external_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Could not tombstone compensated identity %s", external_id)
        logger.warning("Rolled back identity %s after directory insert failure", external_id)
        return True

    def _report_consistency_error(self, error: ConsistencyError, *, after: dict | None = None) -> None:
        metrics.increment_consistency_error(error.operation)
        logger.critical(
            "Identity store and user directory diverged: %s",
            error,
            extra={"operation": error.operation, "external_id": error.external_id, "trace_id": self.trace_id},
        )
        self._audit(error.operation, error.external_id, "consistency_gap", after=after, detail=error.reason)

    def _audit(
        self,
        action: str,
        entity_id: str | None,
        result: str,
        *,
        before: dict | None = None,
        after: dict | None = None,
        metadata: dict | None = None,
        detail: str | None = None,
    ) -> None:
        self.audit.record_event(
            AuditEventPayload(
                trace_id=self.trace_id,
                actor=self.actor,
                action=f"gateway.{action}",
                entity_type="user",
                entity_id=entity_id,
                result=result,
                before=before,
                after=after,
                metadata=metadata,
                detail=detail,
            )
        )
