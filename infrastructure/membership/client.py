"""
Membership API Client
Resident login codes, profiles and membership checks against the building's
member directory.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from config import settings
from domain.errors import ConfigurationError, TransientDependencyFailure

logger = structlog.get_logger()


class MembershipAuthError(Exception):
    """The membership API rejected the credentials (bad code, expired refresh token)."""


class MembershipClient:
    """Client for the external membership/auth service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.membership_api_url).rstrip("/")
        self.api_key = api_key or settings.membership_api_key
        self.timeout = timeout or settings.membership_timeout_seconds

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        if not self.base_url:
            raise ConfigurationError("MEMBERSHIP_API_URL is not configured")

        if access_token:
            headers = {"Authorization": f"Bearer {access_token}"}
        else:
            headers = {"Authorization": f"Api-Key {self.api_key}"}

        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, json=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error("membership_request_failed", endpoint=endpoint, error=str(e))
            raise TransientDependencyFailure(f"Membership API unreachable: {e}") from e

        if response.status_code >= 500:
            logger.error("membership_server_error", endpoint=endpoint, status=response.status_code)
            raise TransientDependencyFailure(f"Membership API error {response.status_code}")
        if response.status_code >= 400:
            logger.info("membership_rejected", endpoint=endpoint, status=response.status_code)
            raise MembershipAuthError(f"Membership API rejected request ({response.status_code})")

        if response.status_code == 204:
            return None
        return response.json()

    async def send_login_code(self, email: str) -> None:
        await self._request("POST", "/auth/login/code/", {"email": email})

    async def verify_login_code(self, code: str) -> Dict[str, str]:
        """Exchange a one-time code for ``{"access": ..., "refresh": ...}``"""
        result = await self._request("PUT", "/auth/login/code/", {"code": code}) or {}
        if not result.get("access"):
            raise MembershipAuthError("Membership API returned no access token")
        return result

    async def refresh(self, refresh_token: str) -> Dict[str, str]:
        result = await self._request("POST", "/auth/login/refresh/", {"refresh": refresh_token}) or {}
        if not result.get("access"):
            raise MembershipAuthError("Membership API returned no access token")
        return result

    async def me_profile(self, access_token: str) -> Dict[str, Any]:
        return await self._request("GET", "/auth/profiles/me/", access_token=access_token) or {}

    @staticmethod
    def profile_email(profile: Dict[str, Any]) -> Optional[str]:
        user = profile.get("user")
        if isinstance(user, dict) and user.get("email"):
            return user["email"]
        return profile.get("email")

    @staticmethod
    def profile_name(profile: Dict[str, Any]) -> Optional[str]:
        parts = [profile.get("firstName"), profile.get("lastName")]
        return " ".join(p for p in parts if p) or None

    @staticmethod
    def profile_user_id(profile: Dict[str, Any]) -> str:
        user = profile.get("user")
        if isinstance(user, dict):
            user = user.get("id")
        return str(user if user is not None else profile.get("id", ""))

    @staticmethod
    def is_resident(profile: Dict[str, Any]) -> bool:
        """Active member of a community, or holds a resident role."""
        return (
            bool(profile.get("community"))
            or "resident" in str(profile.get("organizationRole") or "").lower()
            or bool(profile.get("isActive"))
        )
