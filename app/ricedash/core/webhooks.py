"""Signature verification for identity store webhook deliveries.

Deliveries are signed with HMAC-SHA256 over ``"{id}.{timestamp}.{body}"``
using the base64 secret configured for the endpoint (``whsec_`` prefix).
The signature header holds one or more space separated ``v1,<base64>``
entries so secrets can be rotated without downtime.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Callable, Mapping

from app.ricedash.core.error_catalog import AppError, ErrorCatalog
from app.ricedash.core.exceptions import SignatureError

SECRET_PREFIX = "whsec_"
HEADER_PREFIXES = ("svix-", "webhook-")


def decode_secret(secret: str) -> bytes:
    raw = secret[len(SECRET_PREFIX):] if secret.startswith(SECRET_PREFIX) else secret
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AppError(ErrorCatalog.WEBHOOK_NOT_CONFIGURED, {"message": "Signing secret is not valid base64"}) from exc


def compute_signature(secret: str, msg_id: str, timestamp: int | str, body: bytes) -> str:
    signed = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(decode_secret(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for prefix in HEADER_PREFIXES:
        value = headers.get(f"{prefix}{name}")
        if value:
            return value
    return None


class WebhookVerifier:
    def __init__(self, secret: str, tolerance_sec: int = 300, clock: Callable[[], float] = time.time):
        self.secret = secret
        self.tolerance_sec = tolerance_sec
        self.clock = clock

    def verify(self, body: bytes, headers: Mapping[str, str]) -> int:
        """Return the signed delivery timestamp, or raise ``SignatureError``."""
        if not self.secret:
            raise AppError(ErrorCatalog.WEBHOOK_NOT_CONFIGURED)
        msg_id = _header(headers, "id")
        timestamp_raw = _header(headers, "timestamp")
        signature_header = _header(headers, "signature")
        if not (msg_id and timestamp_raw and signature_header):
            raise SignatureError(ErrorCatalog.SIGNATURE_MISSING)

        try:
            timestamp = int(timestamp_raw)
        except ValueError as exc:
            raise SignatureError(details={"reason": "invalid timestamp"}) from exc
        now = int(self.clock())
        if abs(now - timestamp) > self.tolerance_sec:
            raise SignatureError(details={"reason": "timestamp outside tolerance"})

        expected = compute_signature(self.secret, msg_id, timestamp_raw, body).split(",", 1)[1]
        for entry in signature_header.split():
            version, _, candidate = entry.partition(",")
            if version == "v1" and hmac.compare_digest(candidate.encode(), expected.encode()):
                return timestamp
        raise SignatureError(details={"reason": "no matching signature"})
