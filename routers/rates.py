# routers/rates.py
from fastapi import APIRouter, Depends, HTTPException

from models import User, YearlyRate
from schemas import YearlyRateRead, YearlyRateUpdate
from api_utils import RAListParams, parse_sort, paginate_and_respond, respond_item
from deps import get_current_active_user, require_admin
from services.rates import update_yearly_rate

router = APIRouter(prefix="/rates", tags=["rates"])

def to_rate_read(m: YearlyRate) -> YearlyRateRead:
    return YearlyRateRead.model_validate(m)

@router.get("", response_model=list[YearlyRateRead])
async def list_rates(params: RAListParams = Depends(), _: User = Depends(get_current_active_user)):
    order = parse_sort(params.sort, ["importe_cents", "updated_at"], pk="year")
    return await paginate_and_respond(YearlyRate.all(), params.skip, params.limit, order, to_rate_read)

@router.get("/{year:int}", response_model=YearlyRateRead)
async def get_rate(year: int, _: User = Depends(get_current_active_user)):
    obj = await YearlyRate.get_or_none(year=year)
    if not obj:
        raise HTTPException(404, "Rate not found")
    return respond_item(obj, to_rate_read)

@router.put("/{year}")
async def put_rate(year: str, payload: YearlyRateUpdate, user: User = Depends(require_admin)):
    return await update_yearly_rate(year, payload.importe, actor=user.username)
