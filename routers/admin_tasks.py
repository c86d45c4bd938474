from __future__ import annotations
from fastapi import APIRouter, Depends

from models import User
from schemas import RecalculateRequest
from deps import require_admin
from services.panel_events import billing_totals
from services.recalculation import recalculate_panel_month
from services.summary import assert_month_unlocked

router = APIRouter(prefix="/admin/tasks", tags=["admin-tasks"])


@router.post("/recalculate")
async def recalculate(payload: RecalculateRequest, _: User = Depends(require_admin)):
    await assert_month_unlocked(payload.month_key)
    billing = await recalculate_panel_month(payload.panel_id, payload.month_key)
    return {
        "success": True,
        "panel_id": payload.panel_id,
        "month_key": payload.month_key,
        "totals": billing_totals(billing),
    }
