"""Admin API - front desk dashboard (staff only, read-only)"""
from fastapi import APIRouter, Depends, Query

from api.deps import get_dashboard, require_staff
from api.errors import unwrap
from domain.dashboard import FrontDeskDashboard, guest_display_name
from domain.lifecycle import Actor
from domain.models.guest_pass import GuestPassRead
from domain.models.resident import ResidentRead

router = APIRouter()


@router.get("/metrics")
async def metrics(
    actor: Actor = Depends(require_staff),
    dashboard: FrontDeskDashboard = Depends(get_dashboard),
):
    """Guests in the building now, check-ins and expected visits for today."""
    result = unwrap(await dashboard.metrics(actor))
    counts = result.counts
    return {
        "ok": True,
        "date": result.day.isoformat(),
        "inBuilding": counts.in_building,
        "checkedInToday": counts.checked_in_today,
        "scheduledToday": counts.scheduled_today,
        "totalPasses": counts.total_passes,
    }


@router.get("/passes")
async def list_passes(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_staff),
    dashboard: FrontDeskDashboard = Depends(get_dashboard),
):
    rows = unwrap(await dashboard.passes(actor, limit))
    today = dashboard.today()
    passes = []
    for row in rows:
        item = GuestPassRead.build(row.guest_pass, today).model_dump(mode="json")
        item["hostName"] = row.host.name if row.host else None
        item["hostUnit"] = row.host.unit if row.host else None
        passes.append(item)
    return {"ok": True, "passes": passes}


@router.get("/activity")
async def recent_activity(
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(require_staff),
    dashboard: FrontDeskDashboard = Depends(get_dashboard),
):
    """Newest audit entries first, joined to their pass and host."""
    rows = unwrap(await dashboard.activity(actor, limit))
    return {
        "ok": True,
        "activities": [
            {
                "id": str(row.entry.id),
                "action": row.entry.action,
                "status": row.entry.status,
                "message": row.entry.message,
                "actorType": row.entry.actor_type,
                "actorId": row.entry.actor_id,
                "passId": str(row.entry.pass_id) if row.entry.pass_id else None,
                "guestName": guest_display_name(row.guest_pass),
                "hostName": row.host.name if row.host else None,
                "timestamp": row.entry.created_at.isoformat(),
            }
            for row in rows
        ],
    }


@router.get("/residents")
async def list_residents(
    actor: Actor = Depends(require_staff),
    dashboard: FrontDeskDashboard = Depends(get_dashboard),
):
    rows = unwrap(await dashboard.residents(actor))
    residents = []
    for row in rows:
        item = ResidentRead.model_validate(row.resident).model_dump(mode="json")
        item["totalPasses"] = row.total_passes
        item["activePasses"] = row.active_passes
        item["lastPassAt"] = row.last_pass_at.isoformat() if row.last_pass_at else None
        residents.append(item)
    return {"ok": True, "residents": residents}
