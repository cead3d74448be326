from typing import Any

from pydantic import BaseModel, ConfigDict


class GatewayRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str


class CreateUserCommand(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "action": "create-user",
                "username": "siti",
                "password": "Str0ngPass",
                "role": "SALES_MANAGER_ROLE",
                "locations": [1000003],
            }
        }
    }

    username: str
    password: str
    role: str
    locations: list[Any] = []


class UpdateUserCommand(BaseModel):
    external_id: str
    role: str | None = None
    locations: list[Any] | None = None


class DeleteUserCommand(BaseModel):
    external_id: str


class GatewayUserResponse(BaseModel):
    id: int | None = None
    external_id: str
    name: str
    role: str
    locations: list[int]


class GatewayDeleteResponse(BaseModel):
    deleted: bool
    external_id: str
    directory_cleanup_pending: bool = False


class ReconcileResponse(BaseModel):
    created: int
    updated: int
    deleted: int
    unchanged: int
