# api_utils.py
import json
from typing import Any, Callable, Iterable
from fastapi import HTTPException, Query
from fastapi.responses import JSONResponse
from tortoise.queryset import QuerySet

# ---------- React-Admin param parsing ----------
def parse_range(range_param: str) -> tuple[int, int, int]:
    try:
        start, end = json.loads(range_param)
        skip = max(int(start), 0)
        limit = int(end) - skip + 1
    except (ValueError, TypeError):
        raise HTTPException(400, f"Invalid range {range_param!r}")
    if limit <= 0:
        raise HTTPException(400, f"Invalid range {range_param!r}")
    return skip, limit, start

def parse_sort(sort_param: str, allowed_fields: Iterable[str], pk: str = "id") -> str:
    """
    React-Admin always sorts by "id" by default; for models keyed on
    something else (month_key, year) `pk` is what "id" means.
    """
    allowed = set(allowed_fields) | {pk}
    try:
        field, order = json.loads(sort_param)
    except (ValueError, TypeError):
        field, order = (pk, "ASC")
    if field == "id":
        field = pk
    field = field if field in allowed else pk
    prefix = "-" if str(order).upper() == "DESC" else ""
    return f"{prefix}{field}"

def parse_filter(filter_param: str | None) -> dict:
    try:
        parsed = json.loads(filter_param or "{}")
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}

def to_bool(v) -> bool:
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    return str(v).strip().lower() in {"1", "true", "t", "yes", "y"}

# ---------- Query helpers ----------
def apply_filter_map(qs: QuerySet, filters: dict, fmap: dict[str, Callable[[QuerySet, Any], QuerySet]]) -> QuerySet:
    for key, fn in fmap.items():
        if key in filters and filters[key] is not None:
            qs = fn(qs, filters[key])
    return qs

async def paginate_and_respond(
    qs: QuerySet,
    skip: int,
    limit: int,
    order: str,
    to_pydantic: Callable[[Any], Any],
) -> JSONResponse:
    total = await qs.count()
    items = await qs.order_by(order).offset(skip).limit(limit)
    end_real = skip + max(len(items) - 1, 0)
    content_range = f"items {skip}-{end_real}/{total}"

    # Pydantic v2 encoders for UUID/date/datetime safety
    content = [json.loads(to_pydantic(it).model_dump_json()) for it in items]

    return JSONResponse(
        status_code=206 if total > len(items) else 200,
        content=content,
        headers={"Content-Range": content_range},
    )

def respond_item(model_obj: Any, to_pydantic: Callable[[Any], Any], status_code: int = 200) -> JSONResponse:
    """Single item response that uses the same Pydantic-safe encoding."""
    payload = json.loads(to_pydantic(model_obj).model_dump_json())
    return JSONResponse(status_code=status_code, content=payload)

# ---------- RA params container ----------
class RAListParams:
    def __init__(
        self,
        range: str = Query("[0,24]"),
        sort: str = Query('["id","ASC"]'),
        filter: str = Query("{}"),
    ):
        self.skip, self.limit, self.start = parse_range(range)
        self.filters = parse_filter(filter)
        self.sort = sort
