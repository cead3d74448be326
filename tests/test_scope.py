import pytest

from app.ricedash.core.scope import (
    Role,
    coerce_location_ids,
    coerce_role,
    is_admin,
    is_location_scoped,
    is_unrestricted_reader,
    normalize_assignment,
    parse_role,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("SUPERADMIN_ROLE", Role.SUPERADMIN),
        (" sales_manager_role ", Role.SALES_MANAGER),
        (Role.AUDITOR, Role.AUDITOR),
        ("admin", None),
        ("", None),
        (None, None),
        (123, None),
        (["BOD_ROLE"], None),
    ],
)
def test_parse_role(value, expected):
    assert parse_role(value) is expected


def test_coerce_role_defaults_to_no_role():
    assert coerce_role("emperor") is Role.NO_ROLE
    assert coerce_role(None) is Role.NO_ROLE
    assert coerce_role("bod_role") is Role.BOD


def test_role_classes():
    assert is_admin("SUPERADMIN_ROLE")
    assert not is_admin(Role.BOD)
    assert all(is_unrestricted_reader(role) for role in (Role.SUPERADMIN, Role.BOD, Role.AUDITOR))
    assert not is_unrestricted_reader(Role.SALES_MANAGER)
    assert is_location_scoped("sales_supervisor_role")
    assert not is_location_scoped(Role.NO_ROLE)


def test_coerce_location_ids():
    assert coerce_location_ids([3, "1", " 2 ", 3, "x", None, -4, 0, True, 1.0]) == [1, 2, 3]
    assert coerce_location_ids("7") == [7]
    assert coerce_location_ids(None) == []
    assert coerce_location_ids(4) == [4]
    assert coerce_location_ids(1.5) == []
    assert coerce_location_ids({"id": 1}) == []


def test_normalize_assignment():
    assert normalize_assignment(Role.SALES_MANAGER, [2, 1, 2]) == [1, 2]
    assert normalize_assignment(Role.SALES_SUPERVISOR, []) == []
    assert normalize_assignment(Role.BOD, [1, 2]) == []
    assert normalize_assignment(Role.NO_ROLE, [1]) == []
