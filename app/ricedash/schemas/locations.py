from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    display_value: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CreateLocationRequest(BaseModel):
    id: int | None = Field(default=None, gt=0)
    name: str = Field(min_length=1, max_length=255)
    display_value: str | None = Field(default=None, max_length=255)
    is_active: bool = True


class UpdateLocationRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    display_value: str | None = Field(default=None, max_length=255)
    is_active: bool | None = None


class LocationMutationResponse(BaseModel):
    rows_affected: int
    data: LocationResponse | None = None
