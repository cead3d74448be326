from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class StockRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    location_id: int
    location_name: str
    product_id: str
    product_name: str
    uom_id: int
    uom_name: str
    category_id: int
    category_name: str
    weight: Decimal
    quantity_on_hand: Decimal
    product_type: str
    created_at: datetime
    updated_at: datetime


class StockQueryResponse(BaseModel):
    rows: list[StockRow]
    total: int


class StockRecordRequest(BaseModel):
    location_id: int = Field(gt=0)
    product_id: str = Field(min_length=1, max_length=64)
    product_name: str = Field(min_length=1, max_length=255)
    uom_id: int
    uom_name: str
    category_id: int
    category_name: str
    weight: Decimal = Decimal("0")
    quantity_on_hand: Decimal = Decimal("0")
    product_type: str = "RAW MATERIAL"


class StockRecordPatch(BaseModel):
    location_id: int | None = Field(default=None, gt=0)
    product_name: str | None = Field(default=None, min_length=1, max_length=255)
    weight: Decimal | None = None
    quantity_on_hand: Decimal | None = None
    product_type: str | None = None


class StockMutationResponse(BaseModel):
    rows_affected: int
    data: StockRow | None = None


class StockRefreshResponse(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "records_fetched": 120,
                "records_accepted": 118,
                "records_skipped": 2,
                "records_inserted": 118,
                "product_types": ["RAW MATERIAL", "FINISHED_GOODS"],
                "refreshed_at": "2024-05-01T02:00:00",
            }
        }
    }

    records_fetched: int
    records_accepted: int
    records_skipped: int
    records_inserted: int
    product_types: list[str]
    refreshed_at: datetime
