# routers/panels.py
from fastapi import APIRouter, Depends, HTTPException
from tortoise.expressions import Q

from models import Panel, User
from schemas import PanelCreate, PanelDelete, PanelRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_active_user, require_admin
from services.panels import create_panel, delete_panel, get_unique_locations

router = APIRouter(prefix="/panels", tags=["panels"])

def to_panel_read(m: Panel) -> PanelRead:
    return PanelRead.model_validate(m)

@router.get("", response_model=list[PanelRead])
async def list_panels(params: RAListParams = Depends(), _: User = Depends(get_current_active_user)):
    qs = Panel.all()
    fmap = {
        "q": lambda q, v: q.filter(
            Q(codigo__icontains=str(v)) | Q(municipio__icontains=str(v)) | Q(ubicacion__icontains=str(v))
        ),
        "codigo": lambda q, v: q.filter(codigo__icontains=str(v)),
        "municipio": lambda q, v: q.filter(municipio__icontains=str(v)),
        "ubicacion": lambda q, v: q.filter(ubicacion__icontains=str(v)),
        "estado_actual": lambda q, v: q.filter(estado_actual=str(v)),
        "tipo": lambda q, v: q.filter(tipo=str(v)),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["codigo", "municipio", "ubicacion", "estado_actual", "fecha_alta", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_panel_read)

@router.get("/locations", response_model=list[str])
async def list_locations(_: User = Depends(get_current_active_user)):
    return await get_unique_locations()

@router.get("/{panel_id}", response_model=PanelRead)
async def get_panel(panel_id: str, _: User = Depends(get_current_active_user)):
    obj = await Panel.get_or_none(id=panel_id)
    if not obj:
        raise HTTPException(404, "Panel not found")
    return respond_item(obj, to_panel_read)

@router.post("", status_code=201)
async def register_panel(payload: PanelCreate, user: User = Depends(require_admin)):
    return await create_panel(
        payload.codigo,
        payload.municipio,
        payload.fecha_alta,
        ubicacion=payload.ubicacion,
        tipo=payload.tipo,
        actor=user.username,
    )

# POST rather than DELETE: the confirmation code travels in the body
@router.post("/{panel_id}/delete")
async def remove_panel(panel_id: str, payload: PanelDelete, user: User = Depends(require_admin)):
    return await delete_panel(panel_id, payload.confirm_code, actor=user.username)
