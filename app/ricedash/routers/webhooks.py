import json

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from app.ricedash.core.config import settings
from app.ricedash.core.exceptions import ValidationError
from app.ricedash.core.webhooks import WebhookVerifier
from app.ricedash.db.session import get_db
from app.ricedash.schemas.errors import ApiErrorResponse, error_example
from app.ricedash.schemas.webhooks import WebhookAck
from app.ricedash.services.identity_sync import IdentitySyncService

router = APIRouter()


def get_webhook_verifier() -> WebhookVerifier:
    return WebhookVerifier(settings.WEBHOOK_SIGNING_SECRET, settings.WEBHOOK_TOLERANCE_SEC)


@router.post(
    "/webhooks/identity",
    response_model=WebhookAck,
    responses={
        400: {"description": "Missing or invalid signature", "model": ApiErrorResponse, "content": error_example("SIGNATURE_INVALID", "Invalid webhook signature")},
        500: {"description": "Signing secret not configured", "model": ApiErrorResponse},
    },
)
async def identity_webhook(
    request: Request,
    db=Depends(get_db),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
):
    body = await request.body()
    timestamp = verifier.verify(body, request.headers)
    try:
        event = json.loads(body)
    except ValueError as exc:
        raise ValidationError(details={"message": "Webhook body is not valid JSON"}) from exc
    if not isinstance(event, dict):
        raise ValidationError(details={"message": "Webhook body must be an object"})

    service = IdentitySyncService(db, trace_id=getattr(request.state, "trace_id", None))
    outcome = await run_in_threadpool(service.handle_event, event, header_timestamp=timestamp)
    return WebhookAck(event_type=outcome.event_type, outcome=outcome.outcome)
