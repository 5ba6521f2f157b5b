"""Outbound clients: Twilio SMS, membership API, wallet signer."""
import json
from datetime import date
from uuid import uuid4

import httpx
import pytest

from domain.errors import ConfigurationError, TransientDependencyFailure
from domain.models import GuestPass
from infrastructure.membership import MembershipAuthError, MembershipClient
from infrastructure.sms import TwilioSMSClient
from infrastructure.wallet import PassCardIssuer

from tests.conftest import BASE_URL, TZ

REAL_CLIENT = httpx.AsyncClient


@pytest.fixture
def routed(monkeypatch):
    """Route every outbound httpx call through a handler; returns the captured requests."""
    captured = []

    def install(handler):
        def recording(request):
            captured.append(request)
            return handler(request)

        monkeypatch.setattr(
            httpx, "AsyncClient", lambda **kwargs: REAL_CLIENT(transport=httpx.MockTransport(recording), **kwargs)
        )
        return captured

    return install


def sms_client(**overrides):
    options = dict(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550001111",
        base_url="https://api.twilio.test/2010-04-01",
        building_name="Test Tower",
    )
    options.update(overrides)
    return TwilioSMSClient(**options)


class TestTwilioSMS:
    async def test_invitation_posts_form(self, routed):
        captured = routed(lambda request: httpx.Response(201, json={"sid": "SM1", "status": "queued"}))

        result = await sms_client().send_guest_invitation(
            phone="(415) 555-2671",
            guest_name="Gina",
            host_name="Rita",
            link="https://guestpass.test/guest/complete?token=abc",
            visit_date="2025-06-01",
        )

        assert result == {"sid": "SM1", "status": "queued"}
        request = captured[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        form = dict(httpx.QueryParams(request.content.decode()))
        assert form["To"] == "+14155552671"
        assert "Test Tower" in form["Body"]
        assert "token=abc" in form["Body"]
        assert request.headers["authorization"].startswith("Basic ")

    async def test_provider_error_is_transient(self, routed):
        routed(lambda request: httpx.Response(400, json={"message": "invalid number"}))

        with pytest.raises(TransientDependencyFailure):
            await sms_client().send_guest_invitation(
                phone="+4420", guest_name="G", host_name="H", link="x", visit_date="2025-06-01"
            )

    async def test_missing_credentials(self):
        client = sms_client()
        client.auth_token = ""

        with pytest.raises(ConfigurationError):
            await client.send_guest_invitation(
                phone="+15550002222", guest_name="G", host_name="H", link="x", visit_date="2025-06-01"
            )

    def test_phone_normalization(self):
        assert TwilioSMSClient._normalize_phone("415-555-2671") == "+14155552671"
        assert TwilioSMSClient._normalize_phone("+44 20 7946 0958") == "+442079460958"


class TestMembershipClient:
    def client(self):
        return MembershipClient(base_url="https://members.test/api", api_key="key-1")

    async def test_api_key_and_bearer_auth(self, routed):
        def handler(request):
            if request.url.path.endswith("/auth/login/code/"):
                return httpx.Response(204)
            return httpx.Response(200, json={"user": {"id": 7, "email": "r@example.com"}})

        captured = routed(handler)
        client = self.client()

        await client.send_login_code("r@example.com")
        profile = await client.me_profile("access-1")

        assert captured[0].headers["authorization"] == "Api-Key key-1"
        assert json.loads(captured[0].content) == {"email": "r@example.com"}
        assert captured[1].headers["authorization"] == "Bearer access-1"
        assert MembershipClient.profile_email(profile) == "r@example.com"
        assert MembershipClient.profile_user_id(profile) == "7"

    async def test_rejected_code(self, routed):
        routed(lambda request: httpx.Response(400, json={"detail": "bad code"}))

        with pytest.raises(MembershipAuthError):
            await self.client().verify_login_code("000000")

    async def test_server_error_is_transient(self, routed):
        routed(lambda request: httpx.Response(502))

        with pytest.raises(TransientDependencyFailure):
            await self.client().refresh("ref")

    def test_resident_detection(self):
        assert MembershipClient.is_resident({"community": "tower"})
        assert MembershipClient.is_resident({"organizationRole": "Resident"})
        assert not MembershipClient.is_resident({"organizationRole": "vendor"})


def guest_pass():
    return GuestPass(
        id=uuid4(),
        resident_id=uuid4(),
        guest_name="Gina Guest",
        guest_email="guest@example.com",
        visit_date=date(2025, 6, 1),
        status="approved",
        verification_session_id="vs_1",
    )


class TestPassCardIssuer:
    def issuer(self, codec, signer_url=""):
        return PassCardIssuer(
            codec,
            public_base_url=BASE_URL,
            building_timezone=TZ,
            building_name="Test Tower",
            signer_url=signer_url,
            signer_api_key="signer-key",
        )

    async def test_without_signer_links_to_card(self, codec):
        guest = guest_pass()

        artifact = await self.issuer(codec).issue(guest, "Rita")

        assert artifact.wallet_url == f"{BASE_URL}/api/v1/passes/{guest.id}/card?sessionId=vs_1"
        assert artifact.security_hash == json.loads(self.issuer(codec).qr_payload(guest))["securityHash"]

    async def test_signer_returns_pass_url(self, codec, routed):
        captured = routed(lambda request: httpx.Response(200, json={"url": "https://wallet.test/p/1"}))
        guest = guest_pass()

        artifact = await self.issuer(codec, signer_url="https://signer.test/passes").issue(guest, "Rita")

        assert artifact.wallet_url == "https://wallet.test/p/1"
        body = json.loads(captured[0].content)
        assert body["serialNumber"] == str(guest.id)
        assert body["hostName"] == "Rita"
        assert captured[0].headers["authorization"] == "Bearer signer-key"

    async def test_signer_failure_is_transient(self, codec, routed):
        routed(lambda request: httpx.Response(500))

        with pytest.raises(TransientDependencyFailure):
            await self.issuer(codec, signer_url="https://signer.test/passes").issue(guest_pass(), None)

    def test_card_is_png(self, codec):
        png = self.issuer(codec).render(guest_pass(), "Rita")

        assert png.startswith(b"\x89PNG")

    async def test_unreadable_signer_reply_is_transient(self, codec, routed):
        routed(lambda request: httpx.Response(200, text="<html>bad gateway</html>"))

        with pytest.raises(TransientDependencyFailure):
            await self.issuer(codec, signer_url="https://signer.test/passes").issue(guest_pass(), None)
