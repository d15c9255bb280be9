"""
Stripe webhook API endpoint.

This is a driving adapter that exposes the HTTP endpoint for receiving
Stripe webhooks and delegates verification and dispatch to the core
webhook service.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.core.services import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])

SIGNATURE_HEADER = "stripe-signature"


def get_webhook_service_dependency() -> WebhookService:
    """
    Placeholder dependency function for WebhookService.

    This will be overridden in main.py via app.dependency_overrides.
    """
    raise NotImplementedError("WebhookService dependency must be configured")


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    webhook_service: WebhookService = Depends(get_webhook_service_dependency),
):
    """
    Receive a Stripe webhook, verify it and publish the event.

    The raw body is read before any JSON parsing so the signed bytes are
    exactly what Stripe sent. Verification failures answer 400 with no
    detail; nothing is published for them.
    """
    raw_body = await request.body()
    signature_header = request.headers.get(SIGNATURE_HEADER, "")

    message_id = await webhook_service.process_webhook(raw_body, signature_header)

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"received": True, "message_id": message_id},
    )
