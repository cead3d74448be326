import json

import pytest

from app.ricedash import cli
from tests.fakes import feed_record
from tests.helpers import create_location, create_user


@pytest.fixture()
def cli_env(client, monkeypatch, identity_store, stock_feed):
    from app.ricedash.db.session import SessionLocal

    monkeypatch.setattr(cli, "SessionLocal", SessionLocal)
    monkeypatch.setattr(cli, "IdentityStoreClient", lambda: identity_store.client())
    monkeypatch.setattr(cli, "StockFeedClient", lambda: stock_feed.client())
    return identity_store, stock_feed


def _output(capsys):
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_refresh_stock_command(cli_env, db_session, capsys):
    _, stock_feed = cli_env
    create_location(db_session, 1, "Jakarta")
    stock_feed.records = [feed_record(1, 1), feed_record(2, 1)]

    assert cli.main(["refresh-stock"]) == 0
    assert _output(capsys)["records_inserted"] == 2


def test_refresh_stock_command_reports_errors(cli_env, capsys):
    _, stock_feed = cli_env
    stock_feed.payload = {"unexpected": True}

    assert cli.main(["refresh-stock"]) == 1
    assert _output(capsys)["code"] == "FEED_MALFORMED"


def test_reconcile_command(cli_env, capsys):
    identity_store, _ = cli_env
    identity_store.add_user("ani", role="BOD_ROLE")

    assert cli.main(["reconcile-identities"]) == 0
    assert _output(capsys) == {"created": 1, "deleted": 0, "unchanged": 0, "updated": 0}


def test_reconcile_command_refuses_empty_listing(cli_env, db_session, capsys):
    create_user(db_session, "ani", role="BOD_ROLE")

    assert cli.main(["reconcile-identities"]) == 1
    assert _output(capsys)["code"] == "IDENTITY_LISTING_EMPTY"


def test_unknown_command_exits():
    with pytest.raises(SystemExit):
        cli.main(["drop-everything"])
