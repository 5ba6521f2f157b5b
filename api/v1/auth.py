"""Auth API - resident login through the membership service"""
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Response

from api.deps import (
    clear_session,
    csrf_protect,
    get_codec,
    get_membership,
    get_store,
    issue_session,
    require_resident,
)
from api.errors import ApiError
from api.schemas import SendCodeBody, VerifyCodeBody
from domain.clock import utcnow
from domain.lifecycle import Actor
from domain.models import Resident
from domain.models.resident import ResidentRead
from domain.results import FailureKind
from domain.store import PassStore
from domain.tokens import TokenCodec
from infrastructure.membership import MembershipAuthError, MembershipClient

logger = structlog.get_logger()

router = APIRouter()


async def _current_resident(actor: Actor, store: PassStore) -> Resident:
    resident = await store.get_resident(UUID(actor.id))
    if resident is None:
        raise ApiError(401, "Not authenticated", FailureKind.UNAUTHORIZED.value)
    return resident


@router.post("/send-code", dependencies=[Depends(csrf_protect)])
async def send_code(
    body: SendCodeBody,
    membership: MembershipClient = Depends(get_membership),
):
    try:
        await membership.send_login_code(body.email)
    except MembershipAuthError:
        raise ApiError(400, "Invalid input", FailureKind.INVALID_INPUT.value)
    return {"ok": True}


@router.post("/verify-code", dependencies=[Depends(csrf_protect)])
async def verify_code(
    body: VerifyCodeBody,
    response: Response,
    membership: MembershipClient = Depends(get_membership),
    store: PassStore = Depends(get_store),
    codec: TokenCodec = Depends(get_codec),
):
    """Exchange the emailed code for a resident session"""
    try:
        tokens = await membership.verify_login_code(body.code)
        profile = await membership.me_profile(tokens["access"])
    except MembershipAuthError:
        raise ApiError(400, "Invalid input or authentication failed", FailureKind.INVALID_INPUT.value)

    email = membership.profile_email(profile)
    if not email:
        raise ApiError(400, "Membership profile has no email", FailureKind.INVALID_INPUT.value)
    is_resident = membership.is_resident(profile)

    resident = await store.get_resident_by_email(email) or Resident(name=email, email=email)
    resident.name = membership.profile_name(profile) or resident.name
    resident.membership_user_id = membership.profile_user_id(profile)
    resident.membership_refresh_token = tokens.get("refresh")
    resident.is_verified = is_resident
    resident.verified_at = utcnow()
    resident = await store.save_resident(resident)

    issue_session(response, resident, codec)
    logger.info("resident_logged_in", resident_id=str(resident.id), is_resident=is_resident)
    return {"ok": True, "isResident": is_resident}


@router.post("/logout")
async def logout(response: Response):
    clear_session(response)
    return {"ok": True}


@router.get("/me")
async def me(
    actor: Actor = Depends(require_resident),
    store: PassStore = Depends(get_store),
):
    resident = await _current_resident(actor, store)
    return {"ok": True, "resident": ResidentRead.model_validate(resident).model_dump(mode="json")}


@router.post("/reverify", dependencies=[Depends(csrf_protect)])
async def reverify(
    actor: Actor = Depends(require_resident),
    store: PassStore = Depends(get_store),
    membership: MembershipClient = Depends(get_membership),
):
    """Re-check building membership with the stored refresh token"""
    resident = await _current_resident(actor, store)
    if not resident.membership_refresh_token:
        raise ApiError(400, "No membership link on file, please log in again", FailureKind.INVALID_INPUT.value)

    try:
        tokens = await membership.refresh(resident.membership_refresh_token)
        profile = await membership.me_profile(tokens["access"])
    except MembershipAuthError:
        raise ApiError(401, "Membership session expired, please log in again", FailureKind.UNAUTHORIZED.value)

    resident.is_verified = membership.is_resident(profile)
    resident.verified_at = utcnow()
    if tokens.get("refresh"):
        resident.membership_refresh_token = tokens["refresh"]
    resident = await store.save_resident(resident)

    logger.info("resident_reverified", resident_id=str(resident.id), is_resident=resident.is_verified)
    return {"ok": True, "isResident": resident.is_verified}
