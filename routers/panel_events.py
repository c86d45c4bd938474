# routers/panel_events.py
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from models import PanelEvent, User
from schemas import (
    IntervencionCreate, PanelEventCreate, PanelEventRead, PanelEventUpdate, PanelEventsBulkDelete, PanelSnapshot,
)
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, to_bool
from deps import get_current_active_user, require_editor
from services.panel_events import (
    create_intervencion, delete_all_panel_events, delete_panel_event, request_panel_change, update_panel_event,
)

router = APIRouter(prefix="/panel-events", tags=["panel-events"])

def _snapshot_dict(snapshot: Optional[PanelSnapshot]) -> Optional[dict]:
    return snapshot.model_dump(exclude_unset=True) if snapshot is not None else None

def to_event_read(m: PanelEvent) -> PanelEventRead:
    return PanelEventRead.model_validate(m)

@router.get("", response_model=list[PanelEventRead])
async def list_panel_events(params: RAListParams = Depends(), _: User = Depends(get_current_active_user)):
    qs = PanelEvent.all()
    # deleted events stay hidden unless asked for
    if not to_bool(params.filters.get("include_deleted")):
        qs = qs.filter(is_deleted=False)
    fmap = {
        "panel_id": lambda q, v: q.filter(panel_id=str(v)),
        "month_key": lambda q, v: q.filter(month_key=str(v)),
        "action": lambda q, v: q.filter(action=str(v)),
        "tipo_intervencion": lambda q, v: q.filter(tipo_intervencion=str(v)),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["effective_date", "month_key", "action", "created_at", "importe_cents"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_event_read)

@router.get("/{event_id:uuid}", response_model=PanelEventRead)
async def get_panel_event(event_id: uuid.UUID, _: User = Depends(get_current_active_user)):
    obj = await PanelEvent.get_or_none(id=event_id)
    if not obj:
        raise HTTPException(404, "Event not found")
    return respond_item(obj, to_event_read)

@router.post("", status_code=201)
async def create_panel_event(payload: PanelEventCreate, user: User = Depends(require_editor)):
    return await request_panel_change(
        payload.panel_id,
        payload.action,
        payload.effective_date,
        month_key=payload.month_key,
        motivo=payload.motivo,
        snapshot_before=_snapshot_dict(payload.snapshot_before),
        snapshot_after=_snapshot_dict(payload.snapshot_after),
        actor=user.username,
    )

@router.post("/intervencion", status_code=201)
async def create_panel_intervencion(payload: IntervencionCreate, user: User = Depends(require_editor)):
    return await create_intervencion(
        payload.panel_id,
        payload.effective_date,
        payload.tipo_intervencion,
        payload.concepto,
        payload.importe,
        evidencia_url=payload.evidencia_url,
        actor=user.username,
    )

@router.post("/bulk-delete")
async def bulk_delete_panel_events(payload: PanelEventsBulkDelete, user: User = Depends(require_editor)):
    return await delete_all_panel_events(payload.panel_id, payload.month_key, actor=user.username)

@router.patch("/{event_id}")
async def patch_panel_event(event_id: str, payload: PanelEventUpdate, user: User = Depends(require_editor)):
    return await update_panel_event(event_id, payload.model_dump(exclude_unset=True), actor=user.username)

@router.delete("/{event_id}")
async def remove_panel_event(event_id: str, user: User = Depends(require_editor)):
    return await delete_panel_event(event_id, actor=user.username)
