"""Replaces the stock table with a fresh snapshot of the ERP feed.

The refresh is a full replacement of the configured product classes: rows of
those classes are deleted and the accepted feed records inserted inside one
transaction. A snapshot with zero usable records never deletes anything.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from app.ricedash.clients.stock_feed import StockFeedClient
from app.ricedash.core.config import settings
from app.ricedash.core.error_catalog import AppError, ErrorCatalog
from app.ricedash.core.exceptions import StockRefreshError
from app.ricedash.core.metrics import metrics
from app.ricedash.db.models import utcnow
from app.ricedash.db.session import bind_trusted
from app.ricedash.repos.locations import LocationRepository
from app.ricedash.repos.stock import StockRepository

logger = logging.getLogger(__name__)


class SkippedRecord(Exception):
    pass


@dataclass(frozen=True)
class FeedRecord:
    location_id: int
    product_id: str
    product_name: str
    uom_id: int
    uom_name: str
    category_id: int
    category_name: str
    weight: Decimal
    quantity_on_hand: Decimal
    product_type: str


@dataclass
class RefreshResult:
    records_fetched: int
    records_accepted: int
    records_skipped: int
    records_inserted: int
    product_types: list[str] = field(default_factory=list)
    refreshed_at: datetime = field(default_factory=utcnow)


def _reference(record: dict[str, Any], key: str) -> tuple[int, str]:
    value = record.get(key)
    if not isinstance(value, dict) or value.get("id") is None:
        raise SkippedRecord(f"missing {key}")
    try:
        return int(value["id"]), str(value.get("identifier") or "")
    except (TypeError, ValueError) as exc:
        raise SkippedRecord(f"invalid {key}") from exc


def _decimal(value: Any, key: str) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise SkippedRecord(f"invalid {key}") from exc


def parse_feed_record(record: Any, default_product_type: str) -> FeedRecord:
    if not isinstance(record, dict):
        raise SkippedRecord("record is not an object")
    if record.get("id") is None or not record.get("Name"):
        raise SkippedRecord("missing id or Name")
    location_id, _ = _reference(record, "AD_Org_ID")
    uom_id, uom_name = _reference(record, "C_UOM_ID")
    category_id, category_name = _reference(record, "M_Product_Category_ID")
    return FeedRecord(
        location_id=location_id,
        product_id=str(record["id"]),
        product_name=str(record["Name"]),
        uom_id=uom_id,
        uom_name=uom_name,
        category_id=category_id,
        category_name=category_name,
        weight=_decimal(record.get("Weight"), "Weight"),
        quantity_on_hand=_decimal(record.get("SumQtyOnHand"), "SumQtyOnHand"),
        product_type=str(record.get("product_type") or default_product_type),
    )


class StockRefreshService:
    def __init__(
        self,
        db,
        feed: StockFeedClient,
        *,
        product_types: list[str] | None = None,
        default_product_type: str | None = None,
    ):
        self.db = db
        self.feed = feed
        self.product_types = list(product_types or settings.STOCK_REFRESH_PRODUCT_TYPES)
        self.default_product_type = default_product_type or settings.STOCK_DEFAULT_PRODUCT_TYPE
        self.locations = LocationRepository(db)
        self.stock = StockRepository(db)
        bind_trusted(db)

    def refresh(self) -> RefreshResult:
        try:
            result = self._refresh()
        except AppError as exc:
            metrics.record_stock_refresh(exc.error.code)
            raise
        metrics.record_stock_refresh("success")
        return result

    def _refresh(self) -> RefreshResult:
        raw_records = self.feed.fetch_records()
        parsed: list[FeedRecord] = []
        skipped = 0
        for raw in raw_records:
            try:
                record = parse_feed_record(raw, self.default_product_type)
            except SkippedRecord as exc:
                logger.warning("Skipping stock record: %s", exc)
                skipped += 1
                continue
            if record.product_type not in self.product_types:
                logger.warning("Skipping stock record %s with product type %r", record.product_id, record.product_type)
                skipped += 1
                continue
            parsed.append(record)

        active = self.locations.active_by_id({record.location_id for record in parsed})
        rows = []
        for record in parsed:
            location = active.get(record.location_id)
            if location is None:
                logger.warning("Location not found or inactive: %s", record.location_id)
                skipped += 1
                continue
            row = asdict(record)
            row["location_name"] = location.name
            rows.append(row)

        if not rows:
            raise StockRefreshError(
                ErrorCatalog.STOCK_REFRESH_EMPTY,
                {"records_fetched": len(raw_records), "records_skipped": skipped},
                timestamp=utcnow().isoformat(),
            )

        try:
            deleted = self.stock.delete_by_product_types(self.product_types)
            inserted = self.stock.insert_many(rows)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.critical(
                "Stock replacement failed, previous snapshot kept: %s",
                exc.__class__.__name__,
                exc_info=True,
            )
            raise StockRefreshError(
                ErrorCatalog.STOCK_REFRESH_REPLACE_FAILED,
                {"message": str(exc.__class__.__name__)},
                timestamp=utcnow().isoformat(),
            ) from exc

        logger.info("Replaced %s stock rows with %s rows", deleted, inserted)
        return RefreshResult(
            records_fetched=len(raw_records),
            records_accepted=len(rows),
            records_skipped=skipped,
            records_inserted=inserted,
            product_types=self.product_types,
        )
