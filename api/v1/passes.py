"""Passes API - host view of guest passes, door QR and wallet card"""
import base64
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from api.deps import csrf_protect, get_lifecycle, get_wallet, optional_actor, require_resident
from api.errors import unwrap
from api.schemas import CancelBody, ScheduleBody
from domain.lifecycle import Actor, PassLifecycleEngine
from domain.models.guest_pass import GuestPassRead
from infrastructure.wallet import PassCardIssuer, make_qr_png

router = APIRouter()


def _read(engine: PassLifecycleEngine, guest_pass) -> dict:
    return GuestPassRead.build(guest_pass, engine.today()).model_dump(mode="json")


@router.get("")
async def list_passes(
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Host's passes, newest visit first, with expiry applied"""
    passes = await engine.list_passes(UUID(actor.id))
    return {"ok": True, "passes": [_read(engine, p) for p in passes]}


@router.get("/{pass_id}")
async def get_pass(
    pass_id: UUID,
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    guest_pass = unwrap(await engine.get_pass(pass_id, actor))
    return {"ok": True, "pass": _read(engine, guest_pass)}


@router.get("/{pass_id}/qr")
async def door_qr(
    pass_id: UUID,
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Short-lived door-scanner token, rendered as a QR PNG"""
    issued = unwrap(await engine.issue_door_token(pass_id, actor))
    return {
        "ok": True,
        "passId": str(pass_id),
        "token": issued.token,
        "expiresAt": issued.expires_at.isoformat(),
        "qrPngBase64": base64.b64encode(make_qr_png(issued.token)).decode("ascii"),
    }


@router.get("/{pass_id}/card")
async def wallet_card(
    pass_id: UUID,
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    actor: Optional[Actor] = Depends(optional_actor),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
    wallet: PassCardIssuer = Depends(get_wallet),
):
    """PNG pass card carrying the enhanced QR"""
    guest_pass = unwrap(await engine.wallet_pass(pass_id, actor=actor, session_id=session_id))
    png = wallet.render(guest_pass)
    return Response(
        content=png,
        media_type="image/png",
        headers={"Cache-Control": "no-store"},
    )


@router.post("/{pass_id}/schedule", dependencies=[Depends(csrf_protect)])
async def schedule_pass(
    pass_id: UUID,
    body: ScheduleBody,
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Host confirms an approved pass (approve=true) or declines it"""
    guest_pass = unwrap(await engine.schedule(pass_id, actor, approve=body.approve))
    return {"ok": True, "pass": _read(engine, guest_pass)}


@router.post("/{pass_id}/cancel", dependencies=[Depends(csrf_protect)])
async def cancel_pass(
    pass_id: UUID,
    body: CancelBody,
    actor: Actor = Depends(require_resident),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    guest_pass = unwrap(await engine.cancel(pass_id, actor, reason=body.reason))
    return {"ok": True, "pass": _read(engine, guest_pass)}
