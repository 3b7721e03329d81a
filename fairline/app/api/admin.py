import math
from typing import Any

from fastapi import APIRouter, Depends

from fairline.app.api.deps import RoomDep
from fairline.app.api.schemas import BudgetsRequest, ThrottleRequest
from fairline.app.core.logging import get_logger
from fairline.app.exceptions import BadRequest
from fairline.app.middleware.auth import require_admin
from fairline.app.services.events import QueueEvent

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/throttle")
async def set_throttle(data: ThrottleRequest, room: RoomDep) -> dict[str, Any]:
    """Replace the global admit rate."""
    rate = data.admit_per_minute
    if not math.isfinite(rate) or rate <= 0:
        raise BadRequest("bad rate")

    room.engine.set_rate(rate)
    room.outbox.publish(QueueEvent(type="throttle", data={"admitPerMinute": rate}))
    return {"ok": True, "admitPerMinute": rate}


@router.post("/budgets")
async def set_budgets(data: BudgetsRequest, room: RoomDep) -> dict[str, Any]:
    """Replace the per-class split; shares must sum to 1."""
    try:
        room.engine.set_budgets(data.budgets)
    except ValueError as e:
        raise BadRequest(str(e)) from e

    room.outbox.publish(QueueEvent(type="budgets", data={"budgets": room.engine.budgets}))
    return {"ok": True, "budgets": room.engine.budgets}


@router.get("/stats")
async def get_stats(room: RoomDep) -> dict[str, Any]:
    """Engine snapshot plus gate and outbox counters."""
    stats = room.engine.get_stats().to_dict()
    stats["pendingChallenges"] = room.gate.pending_count
    stats["events"] = {
        "published": room.outbox.published,
        "dropped": room.outbox.dropped,
    }
    return stats


@router.get("/audit/status")
async def audit_status(room: RoomDep) -> dict[str, Any]:
    return room.audit.status()
