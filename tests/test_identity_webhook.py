import time

import pytest
from sqlalchemy.exc import OperationalError

from app.ricedash.clients.identity_store import IdentityRecord
from app.ricedash.core.config import settings
from app.ricedash.core.error_catalog import AppError
from app.ricedash.core.exceptions import SignatureError
from app.ricedash.core.webhooks import WebhookVerifier, compute_signature
from app.ricedash.db.models import AuditEvent, IdentityTombstone, User
from app.ricedash.repos.users import UserRepository
from app.ricedash.services.identity_sync import IdentitySyncService

from tests.helpers import signed_webhook, user_event

WEBHOOK_URL = "/api/webhooks/identity"
T0 = 1_700_000_000_000
WEBHOOK_SECRET = settings.WEBHOOK_SIGNING_SECRET


def _deliver(client, event, **kwargs):
    body, headers = signed_webhook(event, **kwargs)
    return client.post(WEBHOOK_URL, content=body, headers=headers)


def _user(db, external_id):
    db.expire_all()
    return db.query(User).filter_by(external_id=external_id).first()


def test_created_event_twice_yields_one_row(client, db_session):
    event = user_event("user.created", "u1", role="auditor_role", locations=[], updated_at=T0)
    first = _deliver(client, event, msg_id="msg_a")
    second = _deliver(client, event, msg_id="msg_a")

    assert first.status_code == 200
    assert first.json() == {"received": True, "event_type": "user.created", "outcome": "applied"}
    assert second.status_code == 200
    assert db_session.query(User).filter_by(external_id="u1").count() == 1
    assert _user(db_session, "u1").role == "AUDITOR_ROLE"


def test_updated_event_applies_role_and_locations(client, db_session):
    _deliver(client, user_event("user.created", "u1", role="NO_ROLE", updated_at=T0))
    _deliver(
        client,
        user_event("user.updated", "u1", role="sales_manager_role", locations=[3, "1", "x"], updated_at=T0 + 10),
    )
    user = _user(db_session, "u1")
    assert user.role == "SALES_MANAGER_ROLE"
    assert user.locations == [1, 3]


def test_unknown_role_falls_back_to_no_role(client, db_session):
    _deliver(client, user_event("user.created", "u1", role="emperor", locations=[1], updated_at=T0))
    user = _user(db_session, "u1")
    assert user.role == "NO_ROLE"
    assert user.locations == []


def test_name_derivation(client, db_session):
    _deliver(client, user_event("user.created", "u1", updated_at=T0, username=None, first_name="Ani", last_name="Wijaya"))
    _deliver(client, user_event("user.created", "u2", updated_at=T0, username=None, last_name="Wijaya"))
    _deliver(client, user_event("user.created", "u3", updated_at=T0, username=None))
    assert _user(db_session, "u1").name == "Ani Wijaya"
    assert _user(db_session, "u2").name == "Wijaya"
    assert _user(db_session, "u3").name == "User"


def test_out_of_order_update_is_ignored(client, db_session):
    _deliver(client, user_event("user.updated", "u1", role="BOD_ROLE", updated_at=T0 + 2000))
    late = _deliver(client, user_event("user.updated", "u1", role="NO_ROLE", updated_at=T0 + 1000))
    assert late.json()["outcome"] == "stale"
    assert _user(db_session, "u1").role == "BOD_ROLE"


def test_delete_removes_row_and_blocks_late_create(client, db_session):
    _deliver(client, user_event("user.created", "u1", role="AUDITOR_ROLE", updated_at=T0))
    deleted = _deliver(client, user_event("user.deleted", "u1"))
    assert deleted.json()["outcome"] == "deleted"
    assert _user(db_session, "u1") is None
    assert db_session.get(IdentityTombstone, "u1") is not None

    late = _deliver(client, user_event("user.created", "u1", role="AUDITOR_ROLE", updated_at=T0))
    assert late.json()["outcome"] == "stale"
    assert _user(db_session, "u1") is None


def test_delete_for_unknown_user_is_acknowledged(client, db_session):
    response = _deliver(client, user_event("user.deleted", "ghost"))
    assert response.status_code == 200
    assert response.json()["outcome"] == "deleted"


def test_unhandled_event_type_is_ignored(client, db_session):
    response = _deliver(client, {"type": "session.created", "data": {"id": "sess_1"}})
    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"
    assert db_session.query(User).count() == 0


def test_concurrent_insert_retries_as_update(client, db_session, monkeypatch):
    from tests.helpers import create_user

    create_user(db_session, "u1", role="NO_ROLE")
    original = UserRepository.get_by_external_id
    calls = {"count": 0}

    def racing_lookup(self, external_id):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return original(self, external_id)

    monkeypatch.setattr(UserRepository, "get_by_external_id", racing_lookup)
    response = _deliver(client, user_event("user.created", "u1", role="BOD_ROLE", updated_at=T0))
    assert response.json()["outcome"] == "applied"
    assert db_session.query(User).filter_by(external_id="u1").count() == 1
    assert _user(db_session, "u1").role == "BOD_ROLE"


def test_local_failure_still_acknowledges_and_audits(client, db_session, monkeypatch):
    def broken_lookup(self, external_id):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(UserRepository, "get_by_external_id", broken_lookup)
    response = _deliver(client, user_event("user.created", "u1", role="BOD_ROLE", updated_at=T0))
    assert response.status_code == 200
    assert response.json()["outcome"] == "failed"

    event = db_session.query(AuditEvent).filter_by(action="identity.user.created").one()
    assert event.result == "failure"
    assert event.entity_id == "u1"


def test_update_then_older_create_keeps_newer_role(client, db_session):
    _deliver(client, user_event("user.updated", "u1", role="BOD_ROLE", updated_at=T0 + 2000), msg_id="msg_u")
    late = _deliver(client, user_event("user.created", "u1", role="AUDITOR_ROLE", updated_at=T0 + 1000), msg_id="msg_c")
    assert late.status_code == 200
    assert late.json()["outcome"] == "stale"
    assert _user(db_session, "u1").role == "BOD_ROLE"


def test_create_then_newer_update_applies(client, db_session):
    _deliver(client, user_event("user.created", "u1", role="AUDITOR_ROLE", updated_at=T0 + 1000), msg_id="msg_c")
    newer = _deliver(client, user_event("user.updated", "u1", role="BOD_ROLE", updated_at=T0 + 2000), msg_id="msg_u")
    assert newer.json()["outcome"] == "applied"
    assert _user(db_session, "u1").role == "BOD_ROLE"


def test_repeated_delete_is_a_no_op(client, db_session):
    _deliver(client, user_event("user.created", "u1", role="AUDITOR_ROLE", updated_at=T0))
    first = _deliver(client, user_event("user.deleted", "u1"), msg_id="msg_d1")
    second = _deliver(client, user_event("user.deleted", "u1"), msg_id="msg_d2")
    assert first.json()["outcome"] == "deleted"
    assert second.status_code == 200
    assert second.json()["outcome"] == "deleted"
    assert db_session.query(User).count() == 0
    assert db_session.query(IdentityTombstone).filter_by(external_id="u1").count() == 1


@pytest.mark.parametrize(
    "raw_role, raw_locations, role, locations",
    [
        (123, [1], "NO_ROLE", []),
        ("sales_manager_role", 1.5, "SALES_MANAGER_ROLE", []),
        ("sales_manager_role", 4, "SALES_MANAGER_ROLE", [4]),
        (["BOD_ROLE"], {"id": 1}, "NO_ROLE", []),
    ],
)
def test_malformed_metadata_is_coerced(client, db_session, raw_role, raw_locations, role, locations):
    event = user_event("user.created", "u1", role=raw_role, locations=raw_locations, updated_at=T0)
    response = _deliver(client, event)
    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"
    user = _user(db_session, "u1")
    assert user.role == role
    assert user.locations == locations


def test_non_text_name_fields_fall_back(client, db_session):
    _deliver(client, user_event("user.created", "u1", updated_at=T0, username=42, first_name="Ani", last_name=7))
    _deliver(client, user_event("user.created", "u2", updated_at=T0, username={"x": 1}))
    assert _user(db_session, "u1").name == "Ani"
    assert _user(db_session, "u2").name == "User"


def test_malformed_timestamp_uses_delivery_time(client, db_session):
    response = _deliver(client, user_event("user.created", "u1", role="BOD_ROLE", updated_at="soon"))
    assert response.json()["outcome"] == "applied"
    assert _user(db_session, "u1").role == "BOD_ROLE"


def test_unexpected_error_is_acknowledged_as_failed(client, db_session, monkeypatch):
    def broken_payload(data):
        raise TypeError("unexpected payload shape")

    monkeypatch.setattr(IdentityRecord, "from_payload", broken_payload)
    response = _deliver(client, user_event("user.created", "u1", role="BOD_ROLE", updated_at=T0))
    assert response.status_code == 200
    assert response.json()["outcome"] == "failed"
    assert db_session.query(User).count() == 0
    event = db_session.query(AuditEvent).filter_by(action="identity.user.created").one()
    assert event.detail == "TypeError"


def test_sync_service_runs_as_trusted_writer(db_session):
    IdentitySyncService(db_session)
    assert db_session.info["trusted"] is True


def test_tampered_body_is_rejected_without_state_change(client, db_session):
    body, headers = signed_webhook(user_event("user.created", "u1", role="SUPERADMIN_ROLE", updated_at=T0))
    tampered = body.replace(b"SUPERADMIN_ROLE", b"AUDITOR_ROLE__")
    response = client.post(WEBHOOK_URL, content=tampered, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_INVALID"
    assert db_session.query(User).count() == 0


def test_missing_signature_headers(client):
    response = client.post(WEBHOOK_URL, json=user_event("user.created", "u1"))
    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_MISSING"


def test_stale_timestamp_is_rejected(client):
    response = _deliver(client, user_event("user.created", "u1"), timestamp=int(time.time()) - 3600)
    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_INVALID"


def test_signed_non_json_body_is_validation_error(client):
    timestamp = int(time.time())
    body = b"not json"
    headers = {
        "svix-id": "msg_x",
        "svix-timestamp": str(timestamp),
        "svix-signature": compute_signature(WEBHOOK_SECRET, "msg_x", timestamp, body),
    }
    response = client.post(WEBHOOK_URL, content=body, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_verifier_accepts_any_listed_signature_and_alternate_headers():
    verifier = WebhookVerifier(WEBHOOK_SECRET, clock=lambda: 1_000_000)
    body = b'{"type": "user.created"}'
    good = compute_signature(WEBHOOK_SECRET, "msg_1", 1_000_000, body)
    headers = {
        "webhook-id": "msg_1",
        "webhook-timestamp": "1000000",
        "webhook-signature": f"v1,bm90LXRoZS1yaWdodC1vbmU= {good}",
    }
    assert verifier.verify(body, headers) == 1_000_000


def test_verifier_rejects_wrong_secret():
    other_secret = "whsec_" + "b3RoZXItc2VjcmV0"
    verifier = WebhookVerifier(WEBHOOK_SECRET, clock=lambda: 1_000_000)
    body = b"{}"
    headers = {
        "svix-id": "msg_1",
        "svix-timestamp": "1000000",
        "svix-signature": compute_signature(other_secret, "msg_1", 1_000_000, body),
    }
    with pytest.raises(SignatureError):
        verifier.verify(body, headers)


def test_verifier_requires_configured_secret():
    with pytest.raises(AppError) as excinfo:
        WebhookVerifier("").verify(b"{}", {})
    assert excinfo.value.error.code == "WEBHOOK_NOT_CONFIGURED"
