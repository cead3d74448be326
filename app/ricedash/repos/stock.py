from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import delete

from app.ricedash.db.models import StockRecord


@dataclass(frozen=True)
class StockQueryFilters:
    product_type: str | None = None
    location_id: int | None = None
    category_id: int | None = None
    q: str | None = None


class StockRepository:
    def __init__(self, db):
        self.db = db

    @staticmethod
    def apply_filters(query, filters: StockQueryFilters | None):
        if filters is None:
            return query
        if filters.product_type:
            query = query.where(StockRecord.product_type == filters.product_type)
        if filters.location_id is not None:
            query = query.where(StockRecord.location_id == filters.location_id)
        if filters.category_id is not None:
            query = query.where(StockRecord.category_id == filters.category_id)
        if filters.q:
            query = query.where(StockRecord.product_name.ilike(f"%{filters.q}%"))
        return query

    def delete_by_product_types(self, product_types: list[str]) -> int:
        result = self.db.execute(delete(StockRecord).where(StockRecord.product_type.in_(product_types)))
        return result.rowcount or 0

    def insert_many(self, rows: list[dict]) -> int:
        records = [StockRecord(**row) for row in rows]
        self.db.add_all(records)
        self.db.flush()
        return len(records)
