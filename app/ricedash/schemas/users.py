from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LocationLabelResponse(BaseModel):
    id: int
    name: str | None = None
    is_active: bool
    label: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    name: str
    role: str
    locations: list[int]
    source_updated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class MeResponse(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "user": {
                    "id": 7,
                    "external_id": "user_2abc",
                    "name": "siti",
                    "role": "SALES_MANAGER_ROLE",
                    "locations": [1000003],
                },
                "role_label": "Sales Manager",
                "location_labels": [
                    {"id": 1000003, "name": "Surabaya", "is_active": True, "label": "Surabaya"}
                ],
                "registered": False,
            }
        }
    }

    user: UserResponse | None
    role_label: str
    location_labels: list[LocationLabelResponse]
    registered: bool = False


class UpdateMeRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class UpdateUserRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    role: str | None = None
    locations: list[Any] | None = None


class UserMutationResponse(BaseModel):
    rows_affected: int
    data: UserResponse | None = None
