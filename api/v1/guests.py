"""Guests API - invitations, walk-in registration and identity verification"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.deps import csrf_protect, get_lifecycle, require_resident
from api.errors import unwrap
from api.schemas import CompleteBody, InviteBody, RegisterBody, StartVerificationBody
from domain.lifecycle import (
    Actor,
    InviteRequest,
    PassLifecycleEngine,
    RegisterRequest,
    RegistrationSubmission,
)
from domain.tokens import Audience

router = APIRouter()


@router.post("/invite", dependencies=[Depends(csrf_protect)])
async def invite_guest(
    body: InviteBody,
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Invite a guest for a visit day; the guest gets an SMS or the host shares the link"""
    outcome = unwrap(await engine.invite(UUID(actor.id), InviteRequest(
        guest_email=body.guest_email,
        guest_phone=body.guest_phone,
        guest_name=body.guest_name,
        visit_date=body.visit_date,
        floor=body.floor,
        purpose_of_visit=body.purpose_of_visit,
        special_instructions=body.special_instructions,
    )))
    response = {
        "ok": True,
        "passId": str(outcome.guest_pass.id),
        "method": outcome.method,
        "completionLink": outcome.completion_link,
    }
    if outcome.message:
        response["message"] = outcome.message
    return response


@router.post("/register", dependencies=[Depends(csrf_protect)])
async def register_guest(
    body: RegisterBody,
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Register a walk-in guest for today"""
    outcome = unwrap(await engine.register(UUID(actor.id), RegisterRequest(
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
        floor=body.floor,
        is_delivery=body.is_delivery,
    )))
    return {
        "ok": True,
        "passId": str(outcome.guest_pass.id),
        "verificationLink": outcome.verification_link,
        "guestName": outcome.guest_pass.guest_name,
    }


@router.get("/invitation")
async def get_invitation(
    token: str = Query(..., min_length=1),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Invitation summary used to prefill the guest form. Does not consume the link."""
    view = unwrap(await engine.describe_invitation(token))
    guest_pass = view.guest_pass
    invite = guest_pass.details.invite
    return {
        "ok": True,
        "passId": str(guest_pass.id),
        "audience": view.audience.value,
        "status": guest_pass.status,
        "guestName": guest_pass.guest_name,
        "guestEmail": guest_pass.guest_email,
        "guestPhone": guest_pass.guest_phone,
        "visitDate": guest_pass.visit_date.isoformat(),
        "floor": invite.floor if invite else None,
        "hostName": invite.host_name if invite else None,
        "passType": invite.pass_type if invite else None,
    }


@router.post("/complete", dependencies=[Depends(csrf_protect)])
async def complete_registration(
    body: CompleteBody,
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    outcome = unwrap(await engine.complete_registration(
        body.token,
        Audience.GUEST_PREREG,
        RegistrationSubmission(
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
            phone=body.phone,
            id_country=body.id_country,
            id_type=body.id_type,
            id_last4=body.id_last4,
            policy_version=body.policy_version,
        ),
    ))
    return {
        "ok": True,
        "passId": str(outcome.guest_pass.id),
        "status": outcome.guest_pass.status,
        "verificationUrl": outcome.verification_url,
        "verificationSessionId": outcome.session_id,
    }


@router.post("/start-verification")
async def start_verification(
    body: StartVerificationBody,
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Walk-in guests open their verification link and start identity verification"""
    outcome = unwrap(await engine.complete_registration(
        body.token,
        Audience.GUEST_VERIFICATION,
        RegistrationSubmission(
            first_name=body.first_name,
            last_name=body.last_name,
            phone=body.phone_number,
            is_delivery=body.is_delivery,
        ),
    ))
    return {
        "ok": True,
        "passId": str(outcome.guest_pass.id),
        "status": outcome.guest_pass.status,
        "verificationUrl": outcome.verification_url,
        "verificationSessionId": outcome.session_id,
    }


@router.get("/verification-status")
async def verification_status(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    pass_id: UUID = Query(..., alias="passId"),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    view = unwrap(await engine.verification_status(pass_id, session_id))
    response = {
        "ok": True,
        "passId": str(view.guest_pass.id),
        "status": view.status.value,
        "message": view.message,
    }
    if view.wallet_url:
        response["walletUrl"] = view.wallet_url
    return response
