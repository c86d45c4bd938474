# routers/months.py
from fastapi import APIRouter, Depends

from models import User
from schemas import BaseMonthImport, MonthLockUpdate
from deps import require_admin
from services.months import (
    close_month, create_next_month, delete_month, import_base_month,
    regenerate_month_billing, resync_month_from_previous, toggle_month_lock,
)

router = APIRouter(prefix="/months", tags=["months"])


@router.post("/import", status_code=201)
async def import_month(payload: BaseMonthImport, user: User = Depends(require_admin)):
    rows = [r.model_dump() for r in payload.panels]
    return await import_base_month(payload.month_key, rows, actor=user.username)


@router.post("/{month_key}/create", status_code=201)
async def open_month(month_key: str, user: User = Depends(require_admin)):
    return await create_next_month(month_key, actor=user.username)


@router.put("/{month_key}/lock")
async def set_month_lock(month_key: str, payload: MonthLockUpdate, user: User = Depends(require_admin)):
    return await toggle_month_lock(month_key, payload.is_locked, actor=user.username)


@router.post("/{month_key}/close")
async def close(month_key: str, user: User = Depends(require_admin)):
    return await close_month(month_key, actor=user.username)


@router.post("/{month_key}/regenerate")
async def regenerate(month_key: str, _: User = Depends(require_admin)):
    return await regenerate_month_billing(month_key)


@router.post("/{month_key}/resync")
async def resync(month_key: str, _: User = Depends(require_admin)):
    return await resync_month_from_previous(month_key)


@router.delete("/{month_key}")
async def remove_month(month_key: str, user: User = Depends(require_admin)):
    return await delete_month(month_key, actor=user.username)
