from __future__ import annotations

import json
import time
from decimal import Decimal

from app.ricedash.core.config import settings
from app.ricedash.core.security import create_identity_token
from app.ricedash.core.webhooks import compute_signature
from app.ricedash.db.models import Location, StockRecord, User


def auth_headers(external_id: str, *, username: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_identity_token(external_id, username=username)}"}


def create_user(db, external_id: str, *, role: str = "NO_ROLE", locations=None, name: str | None = None) -> User:
    user = User(external_id=external_id, name=name or external_id, role=role, locations=locations or [])
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_location(db, location_id: int, name: str, *, is_active: bool = True) -> Location:
    location = Location(id=location_id, name=name, display_value=name, is_active=is_active)
    db.add(location)
    db.commit()
    return location


def create_stock(db, location: Location, product_id: str, *, product_type: str = "RAW MATERIAL", location_name=None):
    record = StockRecord(
        location_id=location.id,
        location_name=location_name or location.name,
        product_id=product_id,
        product_name=f"Beras {product_id}",
        uom_id=100,
        uom_name="Kg",
        category_id=200,
        category_name="Beras Premium",
        weight=Decimal("50"),
        quantity_on_hand=Decimal("10"),
        product_type=product_type,
    )
    db.add(record)
    db.commit()
    return record


def user_event(event_type: str, external_id: str, *, role=None, locations=None, updated_at: int | None = None, **data):
    payload = {"id": external_id, **data}
    if event_type != "user.deleted":
        payload.setdefault("username", external_id)
        payload["public_metadata"] = {"role": role, "locations": locations or []}
        if updated_at is not None:
            payload["updated_at"] = updated_at
    else:
        payload["deleted"] = True
    return {"type": event_type, "object": "event", "data": payload}


def signed_webhook(event: dict, *, msg_id: str = "msg_1", timestamp: int | None = None, secret: str | None = None):
    body = json.dumps(event).encode()
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = compute_signature(secret or settings.WEBHOOK_SIGNING_SECRET, msg_id, timestamp, body)
    headers = {
        "svix-id": msg_id,
        "svix-timestamp": str(timestamp),
        "svix-signature": signature,
        "content-type": "application/json",
    }
    return body, headers
