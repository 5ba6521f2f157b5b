"""
Stripe Identity Client
Document + selfie verification sessions and signed webhook events
"""
import asyncio
import json
from typing import Any, Dict, Optional
from uuid import UUID

import stripe
import structlog

from config import settings
from domain.errors import ConfigurationError, TransientDependencyFailure, WebhookSignatureError
from domain.ports import VerificationEvent, VerificationOutcome, VerificationSession

logger = structlog.get_logger()

EVENT_OUTCOMES = {
    "identity.verification_session.verified": VerificationOutcome.VERIFIED,
    "identity.verification_session.requires_input": VerificationOutcome.REQUIRES_INPUT,
    "identity.verification_session.canceled": VerificationOutcome.CANCELED,
}

DOCUMENT_OPTIONS = {
    "document": {
        "allowed_types": ["driving_license", "passport", "id_card"],
        "require_id_number": False,
        "require_live_capture": True,
        "require_matching_selfie": True,
    }
}


class StripeIdentityClient:
    """Identity verification gateway backed by Stripe Identity"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.timeout = timeout or settings.identity_timeout_seconds

    async def create_session(
        self,
        *,
        pass_id: UUID,
        host_id: str,
        guest_email: Optional[str],
        return_url: str,
    ) -> VerificationSession:
        if not self.secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")

        metadata = {"guest_pass_id": str(pass_id), "host_id": host_id}
        if guest_email:
            metadata["guest_email"] = guest_email

        def _create():
            return stripe.identity.VerificationSession.create(
                api_key=self.secret_key,
                type="document",
                metadata=metadata,
                options=DOCUMENT_OPTIONS,
                return_url=return_url,
            )

        try:
            session = await asyncio.wait_for(asyncio.to_thread(_create), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("identity_session_timeout", pass_id=str(pass_id))
            raise TransientDependencyFailure("Identity provider timed out") from e
        except stripe.StripeError as e:
            logger.error("identity_session_failed", pass_id=str(pass_id), error=str(e))
            raise TransientDependencyFailure(f"Identity provider error: {e}") from e

        logger.info("identity_session_created", pass_id=str(pass_id), session_id=session.id)
        return VerificationSession(id=session.id, url=session.url)

    def parse_event(self, payload: bytes, signature: Optional[str]) -> Optional[VerificationEvent]:
        """Verify the webhook signature and map the event.

        Returns None for event types that do not drive the pass lifecycle.
        """
        if not self.webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookSignatureError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError("Invalid signature") from e

        outcome = EVENT_OUTCOMES.get(event["type"])
        if outcome is None:
            logger.info("webhook_event_ignored", event_type=event["type"])
            return None

        session: Dict[str, Any] = event["data"]["object"]
        metadata = dict(session.get("metadata") or {})
        pass_id: Optional[UUID] = None
        if metadata.get("guest_pass_id"):
            try:
                pass_id = UUID(str(metadata["guest_pass_id"]))
            except ValueError:
                logger.warning("webhook_bad_pass_id", session_id=session.get("id"))

        return VerificationEvent(
            outcome=outcome,
            session_id=str(session.get("id")),
            pass_id=pass_id,
            metadata={k: str(v) for k, v in metadata.items()},
        )
