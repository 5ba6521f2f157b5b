"""Shared FastAPI dependencies: engine wiring, resident session, CSRF."""
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Cookie, Depends, Header, Request, Response

from config import settings
from domain.dashboard import FrontDeskDashboard
from domain.lifecycle import Actor, EngineConfig, PassLifecycleEngine
from domain.models import Resident
from domain.results import FailureKind
from domain.store import PassStore
from domain.clock import utcnow
from domain.tokens import Audience, KeyRing, TokenCodec
from infrastructure.database import SqlPassStore, get_session_maker
from infrastructure.identity import StripeIdentityClient
from infrastructure.membership import MembershipClient
from infrastructure.sms import TwilioSMSClient
from infrastructure.wallet import PassCardIssuer

from .errors import ApiError

SESSION_COOKIE = "session"
CSRF_COOKIE = "csrf"
CSRF_HEADER = "x-csrf-token"

_store: Optional[PassStore] = None


def get_store() -> PassStore:
    """Process-wide store over the lazily created session maker"""
    global _store
    if _store is None:
        _store = SqlPassStore(get_session_maker(), timeout=settings.store_timeout_seconds)
    return _store


def get_codec() -> TokenCodec:
    return TokenCodec(
        KeyRing(settings.signing_keys, settings.active_kid),
        issuer=settings.token_issuer,
        wallet_secret=settings.wallet_secret,
        hash_length=settings.wallet_hash_length,
    )


def get_identity() -> StripeIdentityClient:
    return StripeIdentityClient()


def get_notifier() -> Optional[TwilioSMSClient]:
    if not (settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number):
        return None
    return TwilioSMSClient()


def get_membership() -> MembershipClient:
    return MembershipClient()


def get_wallet(codec: TokenCodec = Depends(get_codec)) -> PassCardIssuer:
    return PassCardIssuer(codec)


def get_lifecycle(
    store: PassStore = Depends(get_store),
    codec: TokenCodec = Depends(get_codec),
    identity: StripeIdentityClient = Depends(get_identity),
    notifier: Optional[TwilioSMSClient] = Depends(get_notifier),
    wallet: PassCardIssuer = Depends(get_wallet),
) -> PassLifecycleEngine:
    config = EngineConfig(
        public_base_url=settings.public_base_url,
        building_timezone=settings.building_timezone,
        prereg_ttl=timedelta(hours=settings.prereg_token_ttl_hours),
        verification_ttl=timedelta(hours=settings.verification_token_ttl_hours),
        door_token_ttl=timedelta(minutes=settings.door_token_ttl_minutes),
    )
    return PassLifecycleEngine(
        store,
        codec,
        config,
        identity=identity,
        notifier=notifier,
        wallet=wallet,
    )


def get_dashboard(store: PassStore = Depends(get_store)) -> FrontDeskDashboard:
    return FrontDeskDashboard(store, settings.building_timezone)


# --- resident session ---

def issue_session(response: Response, resident: Resident, codec: TokenCodec) -> None:
    issued = codec.issue(
        Audience.RESIDENT_SESSION,
        host_id=str(resident.id),
        expires_at=utcnow() + timedelta(hours=settings.session_ttl_hours),
        extra={"role": resident.role},
    )
    response.set_cookie(
        SESSION_COOKIE,
        issued.token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        path="/",
    )


def clear_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")


def optional_actor(
    session: Optional[str] = Cookie(default=None),
    codec: TokenCodec = Depends(get_codec),
) -> Optional[Actor]:
    if not session:
        return None
    verified = codec.verify(session, Audience.RESIDENT_SESSION)
    if not verified.ok or not verified.value.host_id:
        return None
    claims = verified.value.claims
    return Actor(id=str(verified.value.host_id), role=str(claims.get("role") or "resident"))


def require_resident(actor: Optional[Actor] = Depends(optional_actor)) -> Actor:
    if actor is None:
        raise ApiError(401, "Not authenticated", FailureKind.UNAUTHORIZED.value)
    return actor


def require_staff(actor: Actor = Depends(require_resident)) -> Actor:
    if not actor.is_staff:
        raise ApiError(403, "Staff only", FailureKind.FORBIDDEN.value)
    return actor


# --- CSRF (double submit) ---

def new_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def set_csrf_cookie(response: Response, token: str) -> None:
    # Readable by the page so it can echo it back in the header
    response.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,
        secure=settings.secure_cookies,
        samesite="lax",
        path="/",
    )


def csrf_protect(
    request: Request,
    x_csrf_token: Optional[str] = Header(default=None),
) -> None:
    cookie = request.cookies.get(CSRF_COOKIE)
    if not cookie or not x_csrf_token or not secrets.compare_digest(cookie, x_csrf_token):
        raise ApiError(403, "CSRF", FailureKind.FORBIDDEN.value)
