"""
Wallet pass issuer.

Every approved pass gets an enhanced QR (hash-bound JSON payload) rendered
onto a phone-sized PNG card. When a signing service is configured the same
payload is also sent there to build a mobile-wallet pass, and its download
URL becomes the pass's wallet URL.
"""
from __future__ import annotations

import io
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import httpx
import qrcode
import structlog
from PIL import Image, ImageDraw, ImageFont

from config import settings
from domain.errors import TransientDependencyFailure
from domain.models import GuestPass
from domain.ports import WalletArtifact
from domain.tokens import TokenCodec

logger = structlog.get_logger()


def make_qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _load_fonts():
    try:
        return (
            ImageFont.truetype("DejaVuSans-Bold.ttf", 58),
            ImageFont.truetype("DejaVuSans.ttf", 40),
            ImageFont.truetype("DejaVuSans.ttf", 30),
        )
    except OSError:
        default = ImageFont.load_default()
        return default, default, default


def render_card(
    *,
    building_name: str,
    guest_name: str,
    host_name: Optional[str],
    floor: Optional[str],
    visit_date: str,
    qr_png: bytes,
) -> bytes:
    # 1080x1920 vertical card, QR large and centered for door scanners
    W, H = 1080, 1920
    bg = Image.new("RGB", (W, H), "white")
    draw = ImageDraw.Draw(bg)
    font_title, font_body, font_small = _load_fonts()
    margin = 60

    draw.text((margin, margin), building_name, fill=(20, 20, 20), font=font_title)
    draw.text((margin, margin + 80), "Guest Pass", fill=(90, 90, 90), font=font_small)

    qr_img = Image.open(io.BytesIO(qr_png)).convert("RGBA")
    target = int(W * 0.78)
    qr_img = qr_img.resize((target, target))
    qr_x = (W - qr_img.width) // 2
    qr_y = 260
    bg.paste(qr_img, (qr_x, qr_y), qr_img)

    y = qr_y + qr_img.height + 80
    draw.text((margin, y), f"Guest: {guest_name}", fill=(30, 30, 30), font=font_body)
    y += 60
    draw.text((margin, y), f"Visit date: {visit_date}", fill=(30, 30, 30), font=font_body)
    if host_name:
        y += 60
        draw.text((margin, y), f"Host: {host_name}", fill=(30, 30, 30), font=font_body)
    if floor:
        y += 60
        draw.text((margin, y), f"Floor: {floor}", fill=(30, 30, 30), font=font_body)

    draw.text((margin, H - margin - 40), "Show this code at the front desk", fill=(120, 120, 120), font=font_small)

    out = io.BytesIO()
    bg.save(out, format="PNG")
    return out.getvalue()


class PassCardIssuer:
    """Issues the enhanced QR for a pass and, optionally, a signed wallet pass"""

    def __init__(
        self,
        codec: TokenCodec,
        public_base_url: Optional[str] = None,
        building_timezone: Optional[str] = None,
        building_name: Optional[str] = None,
        signer_url: Optional[str] = None,
        signer_api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.codec = codec
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self.tz = ZoneInfo(building_timezone or settings.building_timezone)
        self.building_name = building_name or settings.building_name
        self.signer_url = signer_url if signer_url is not None else settings.wallet_signer_url
        self.signer_api_key = signer_api_key or settings.wallet_signer_api_key
        self.timeout = timeout or settings.wallet_timeout_seconds

    def valid_until(self, guest_pass: GuestPass) -> datetime:
        """End of the visit day, building-local, as UTC."""
        local_end = datetime.combine(guest_pass.visit_date, time(23, 59, 59), tzinfo=self.tz)
        return local_end.astimezone(timezone.utc)

    def qr_payload(self, guest_pass: GuestPass) -> str:
        details = guest_pass.details
        return self.codec.encode_hash_bound(
            pass_id=guest_pass.id,
            guest_email=guest_pass.contact,
            resident_id=str(guest_pass.resident_id),
            valid_until=self.valid_until(guest_pass),
            guest_name=guest_pass.guest_name,
            pass_type=details.invite.pass_type if details.invite else "guest_access",
        )

    def card_url(self, guest_pass: GuestPass) -> str:
        url = f"{self.public_base_url}/api/v1/passes/{guest_pass.id}/card"
        if guest_pass.verification_session_id:
            url += f"?sessionId={guest_pass.verification_session_id}"
        return url

    def render(self, guest_pass: GuestPass, host_name: Optional[str] = None) -> bytes:
        details = guest_pass.details
        return render_card(
            building_name=self.building_name,
            guest_name=guest_pass.guest_name or "Guest",
            host_name=host_name or (details.invite.host_name if details.invite else None),
            floor=details.invite.floor if details.invite else None,
            visit_date=guest_pass.visit_date.isoformat(),
            qr_png=make_qr_png(self.qr_payload(guest_pass)),
        )

    async def _sign(self, guest_pass: GuestPass, payload: str, host_name: Optional[str]) -> str:
        body = {
            "serialNumber": str(guest_pass.id),
            "qrPayload": payload,
            "guestName": guest_pass.guest_name,
            "hostName": host_name,
            "visitDate": guest_pass.visit_date.isoformat(),
            "validUntil": self.valid_until(guest_pass).isoformat(),
        }
        headers = {"Authorization": f"Bearer {self.signer_api_key}"} if self.signer_api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.signer_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransientDependencyFailure(f"Wallet signer unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error("wallet_signer_rejected", status=response.status_code, body=response.text)
            raise TransientDependencyFailure(f"Wallet signer error {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error("wallet_signer_bad_response", body=response.text[:200])
            raise TransientDependencyFailure("Wallet signer returned an unreadable response") from e

        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise TransientDependencyFailure("Wallet signer returned no pass URL")
        return url

    async def issue(self, guest_pass: GuestPass, host_name: Optional[str]) -> WalletArtifact:
        payload = self.qr_payload(guest_pass)
        security_hash = self.codec.security_hash(guest_pass.id, guest_pass.contact, str(guest_pass.resident_id))

        wallet_url = self.card_url(guest_pass)
        if self.signer_url:
            wallet_url = await self._sign(guest_pass, payload, host_name)

        return WalletArtifact(
            wallet_url=wallet_url,
            security_hash=security_hash,
            valid_until=self.valid_until(guest_pass),
        )
