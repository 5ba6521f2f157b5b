"""Webhooks API - identity verification results from Stripe"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request

from api.deps import get_identity, get_lifecycle
from api.errors import error_response
from domain.errors import StoreUnavailable, TransientDependencyFailure, WebhookSignatureError
from domain.lifecycle import PassLifecycleEngine
from infrastructure.identity import StripeIdentityClient

logger = structlog.get_logger()

router = APIRouter()


@router.post("/identity")
async def identity_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    identity: StripeIdentityClient = Depends(get_identity),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """
    Stripe Identity events.

    400 on a bad signature (the provider must not retry), 500 when processing
    fails (the provider retries), 200 for everything else including stale or
    duplicate events.
    """
    payload = await request.body()

    try:
        event = identity.parse_event(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning("webhook_signature_invalid", error=str(e))
        return error_response(400, str(e), "invalid_signature")

    if event is None:
        return {"received": True, "ignored": "unhandled event type"}

    log = logger.bind(session_id=event.session_id, outcome=event.outcome.value)
    try:
        result = await engine.apply_verification_event(event)
    except (StoreUnavailable, TransientDependencyFailure) as e:
        log.error("webhook_processing_failed", error=str(e))
        return error_response(500, "Webhook processing failed", "transient")

    if not result.ok:
        log.info("webhook_event_ignored", reason=result.message)
        return {"received": True, "ignored": result.message}

    applied = result.value
    log.info("webhook_event_applied", pass_id=str(applied.guest_pass.id), changed=applied.changed)
    return {"received": True, "passId": str(applied.guest_pass.id), "status": applied.guest_pass.status}
