"""
Twilio SMS Client
Guest invitation messages via the Twilio REST API
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from config import settings
from domain.errors import ConfigurationError, TransientDependencyFailure

logger = structlog.get_logger()


class TwilioSMSClient:
    """Client for Twilio Programmable Messaging"""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        building_name: Optional[str] = None,
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_from_number
        self.base_url = (base_url or settings.twilio_api_url).rstrip("/")
        self.timeout = timeout or settings.sms_timeout_seconds
        self.building_name = building_name or settings.building_name

    @staticmethod
    def _normalize_phone(phone: str) -> str:
        """E.164: keep digits, assume North America when no country code"""
        digits = "".join(c for c in phone if c.isdigit())
        if phone.strip().startswith("+"):
            return f"+{digits}"
        if len(digits) == 10:
            return f"+1{digits}"
        return f"+{digits}"

    async def _send(self, to: str, body: str) -> Dict[str, Any]:
        if not (self.account_sid and self.auth_token and self.from_number):
            raise ConfigurationError("Twilio credentials are not configured")

        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": self._normalize_phone(to), "From": self.from_number, "Body": body}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, data=data, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as e:
            logger.error("sms_request_failed", error=str(e))
            raise TransientDependencyFailure(f"SMS provider unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error("sms_rejected", status=response.status_code, body=response.text)
            raise TransientDependencyFailure(f"SMS provider error {response.status_code}")

        result = response.json()
        return {"sid": result.get("sid", ""), "status": result.get("status", "")}

    async def send_guest_invitation(
        self,
        *,
        phone: str,
        guest_name: str,
        host_name: str,
        link: str,
        visit_date: str,
    ) -> Dict[str, str]:
        message = (
            f"Hi {guest_name}! {host_name} invited you to visit {self.building_name} "
            f"on {visit_date}. Complete your registration: {link}"
        )
        result = await self._send(phone, message)
        logger.info("sms_invitation_sent", sid=result["sid"])
        return result
