from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

from app.ricedash.clients.identity_store import IdentityStoreClient
from app.ricedash.clients.stock_feed import StockFeedClient
from app.ricedash.core.error_catalog import AppError
from app.ricedash.core.logging import configure_logging
from app.ricedash.db.seed import run_seed
from app.ricedash.db.session import SessionLocal
from app.ricedash.services.reconciliation import ReconciliationService
from app.ricedash.services.stock_refresh import StockRefreshService


def _print(payload: dict) -> None:
    print(json.dumps(payload, default=str, sort_keys=True))


def refresh_stock() -> int:
    with SessionLocal() as db:
        try:
            result = StockRefreshService(db, StockFeedClient()).refresh()
        except AppError as exc:
            _print({"code": exc.error.code, "message": exc.error.message, "details": exc.details})
            return 1
    _print(asdict(result))
    return 0


def reconcile_identities() -> int:
    with SessionLocal() as db:
        try:
            counts = ReconciliationService(db, IdentityStoreClient()).run()
        except AppError as exc:
            _print({"code": exc.error.code, "message": exc.error.message, "details": exc.details})
            return 1
    _print(counts.as_dict())
    return 0


def seed() -> int:
    with SessionLocal() as db:
        run_seed(db)
    _print({"status": "seeded"})
    return 0


COMMANDS = {
    "refresh-stock": refresh_stock,
    "reconcile-identities": reconcile_identities,
    "seed": seed,
}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rice dashboard maintenance jobs")
    parser.add_argument("command", choices=sorted(COMMANDS))
    args = parser.parse_args(argv)
    configure_logging()
    return COMMANDS[args.command]()


if __name__ == "__main__":
    sys.exit(main())
