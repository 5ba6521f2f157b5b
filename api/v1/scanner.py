"""Scanner API - front desk check-in and check-out"""
from fastapi import APIRouter, Depends

from api.deps import csrf_protect, get_lifecycle, require_staff
from api.errors import unwrap
from api.schemas import CheckInBody, CheckOutBody
from domain.lifecycle import Actor, PassLifecycleEngine
from domain.models.guest_pass import GuestPassRead

router = APIRouter(dependencies=[Depends(csrf_protect)])


@router.post("/check-in")
async def check_in(
    body: CheckInBody,
    actor: Actor = Depends(require_staff),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    """Check a guest in from a scanned door token or wallet QR.

    Scanning the same code twice is not an error: the second scan reports the
    existing check-in with ``replayed: true``.
    """
    outcome = unwrap(await engine.check_in(body.token, actor))
    return {
        "ok": True,
        "passId": str(outcome.guest_pass.id),
        "accepted": outcome.accepted,
        "replayed": outcome.replayed,
        "message": outcome.message,
        "pass": GuestPassRead.build(outcome.guest_pass, engine.today()).model_dump(mode="json"),
    }


@router.post("/check-out")
async def check_out(
    body: CheckOutBody,
    actor: Actor = Depends(require_staff),
    engine: PassLifecycleEngine = Depends(get_lifecycle),
):
    guest_pass = unwrap(await engine.check_out(body.pass_id, actor))
    return {
        "ok": True,
        "passId": str(guest_pass.id),
        "pass": GuestPassRead.build(guest_pass, engine.today()).model_dump(mode="json"),
    }
