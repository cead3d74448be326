import pytest

from app.ricedash.core.error_catalog import AppError
from app.ricedash.db.models import IdentityTombstone, User
from app.ricedash.services.reconciliation import ReconciliationService
from tests.helpers import auth_headers, create_user


def _users(db):
    db.expire_all()
    return {user.external_id: user for user in db.query(User).all()}


def test_reconciliation_repairs_directory(db_session, identity_store):
    missing = identity_store.add_user("ani", role="BOD_ROLE")
    drifted = identity_store.add_user("budi", role="SALES_MANAGER_ROLE", locations=[3, 1])
    same = identity_store.add_user("citra", role="AUDITOR_ROLE")
    create_user(db_session, drifted["id"], role="NO_ROLE", name="budi")
    create_user(db_session, same["id"], role="AUDITOR_ROLE", name="citra")
    create_user(db_session, "user_orphan", role="BOD_ROLE")

    counts = ReconciliationService(db_session, identity_store.client(page_size=2)).run()

    assert counts.as_dict() == {"created": 1, "updated": 1, "deleted": 1, "unchanged": 1}
    users = _users(db_session)
    assert set(users) == {missing["id"], drifted["id"], same["id"]}
    assert users[missing["id"]].role == "BOD_ROLE"
    assert users[drifted["id"]].locations == [1, 3]
    assert db_session.get(IdentityTombstone, "user_orphan") is not None
    assert ("GET", "/users") in identity_store.calls


def test_reconciliation_coerces_untrusted_metadata(db_session, identity_store):
    remote = identity_store.add_user("dewi", role="emperor", locations=[1])
    ReconciliationService(db_session, identity_store.client()).run()
    user = _users(db_session)[remote["id"]]
    assert user.role == "NO_ROLE"
    assert user.locations == []


def test_second_run_is_a_no_op(db_session, identity_store):
    identity_store.add_user("eka", role="SALES_SUPERVISOR_ROLE", locations=[2])
    service = ReconciliationService(db_session, identity_store.client())
    service.run()
    assert service.run().as_dict() == {"created": 0, "updated": 0, "deleted": 0, "unchanged": 1}


def test_reconcile_through_gateway(client, db_session, identity_store):
    admin = identity_store.add_user("admin", role="SUPERADMIN_ROLE")
    create_user(db_session, admin["id"], role="SUPERADMIN_ROLE", name="admin")
    identity_store.add_user("fajar", role="AUDITOR_ROLE")

    response = client.post("/api/gateway", json={"action": "reconcile"}, headers=auth_headers(admin["id"]))
    assert response.status_code == 200
    assert response.json() == {"created": 1, "updated": 0, "deleted": 0, "unchanged": 1}


def test_reconcile_upstream_failure_changes_nothing(client, db_session, identity_store):
    create_user(db_session, "admin", role="SUPERADMIN_ROLE")
    identity_store.fail("GET", "/users", 503)
    response = client.post("/api/gateway", json={"action": "reconcile"}, headers=auth_headers("admin"))
    assert response.status_code == 502
    assert set(_users(db_session)) == {"admin"}


def test_empty_listing_never_wipes_directory(db_session, identity_store):
    create_user(db_session, "ani", role="BOD_ROLE")
    create_user(db_session, "budi", role="AUDITOR_ROLE")

    with pytest.raises(AppError) as excinfo:
        ReconciliationService(db_session, identity_store.client()).run()

    assert excinfo.value.error.code == "IDENTITY_LISTING_EMPTY"
    assert set(_users(db_session)) == {"ani", "budi"}
    assert db_session.query(IdentityTombstone).count() == 0


def test_empty_listing_with_empty_directory_is_a_no_op(db_session, identity_store):
    counts = ReconciliationService(db_session, identity_store.client()).run()
    assert counts.as_dict() == {"created": 0, "updated": 0, "deleted": 0, "unchanged": 0}


def test_empty_listing_through_gateway_returns_502(client, db_session, identity_store):
    create_user(db_session, "admin", role="SUPERADMIN_ROLE")
    response = client.post("/api/gateway", json={"action": "reconcile"}, headers=auth_headers("admin"))
    assert response.status_code == 502
    assert response.json()["code"] == "IDENTITY_LISTING_EMPTY"
    assert set(_users(db_session)) == {"admin"}


def test_reconciliation_runs_as_trusted_writer(db_session, identity_store):
    ReconciliationService(db_session, identity_store.client())
    assert db_session.info["trusted"] is True
