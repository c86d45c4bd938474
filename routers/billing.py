from fastapi import APIRouter, Depends, HTTPException
from models import BillingMonthlyPanel, BillingSummary, User
from schemas import BillingMonthlyPanelRead, BillingSummaryRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, to_bool
from deps import get_current_active_user, require_editor
from services.recalculation import check_month_key
from services.summary import recalculate_summary

router = APIRouter(prefix="/billing", tags=["billing"])

def to_row_read(m: BillingMonthlyPanel) -> BillingMonthlyPanelRead:
    return BillingMonthlyPanelRead.model_validate(m)

def to_summary_read(m: BillingSummary) -> BillingSummaryRead:
    return BillingSummaryRead.model_validate(m)

# ---------- per panel, per month ----------

@router.get("/panels", response_model=list[BillingMonthlyPanelRead])
async def list_billing_rows(params: RAListParams = Depends(), _: User = Depends(get_current_active_user)):
    qs = BillingMonthlyPanel.all()
    fmap = {
        "month_key": lambda q, v: q.filter(month_key=str(v)),
        "panel_id": lambda q, v: q.filter(panel_id=str(v)),
        "codigo": lambda q, v: q.filter(codigo__icontains=str(v)),
        "municipio": lambda q, v: q.filter(municipio__icontains=str(v)),
        "estado_al_cierre": lambda q, v: q.filter(estado_al_cierre=str(v)),
        "facturable": lambda q, v: q.filter(total_importe_cents__gt=0) if to_bool(v) else q.filter(total_importe_cents=0),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(
        params.sort,
        ["month_key", "codigo", "municipio", "total_dias_facturables", "total_importe_cents", "estado_al_cierre"],
    )
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_row_read)

@router.get("/panels/{row_id}", response_model=BillingMonthlyPanelRead)
async def get_billing_row(row_id: str, _: User = Depends(get_current_active_user)):
    obj = await BillingMonthlyPanel.get_or_none(id=row_id)
    if not obj:
        raise HTTPException(404, "Billing row not found")
    return respond_item(obj, to_row_read)

# ---------- monthly summaries ----------

@router.get("/summaries", response_model=list[BillingSummaryRead])
async def list_summaries(params: RAListParams = Depends(), _: User = Depends(get_current_active_user)):
    qs = BillingSummary.all()
    fmap = {
        "year": lambda q, v: q.filter(month_key__startswith=f"{str(v).strip()}-"),
        "is_locked": lambda q, v: q.filter(is_locked=to_bool(v)),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["total_importe_mes_cents", "total_paneles_facturables", "is_locked"], pk="month_key")
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_summary_read)

@router.get("/summaries/{month_key}", response_model=BillingSummaryRead)
async def get_summary(month_key: str, _: User = Depends(get_current_active_user)):
    obj = await BillingSummary.get_or_none(month_key=month_key)
    if not obj:
        raise HTTPException(404, "Summary not found")
    return respond_item(obj, to_summary_read)

@router.post("/summaries/{month_key}/recompute", response_model=BillingSummaryRead)
async def recompute_summary(month_key: str, _: User = Depends(require_editor)):
    check_month_key(month_key)
    obj = await recalculate_summary(month_key)
    return respond_item(obj, to_summary_read)
