# services/recalculation.py
from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional

from tortoise.transactions import in_transaction

from models import BillingMonthlyPanel, Panel, PanelEvent
from services import config
from services.billing_rules import (
    ACTIVO, ALTA_INICIAL, DESMONTADO,
    compute_month_billing, current_month_key, get_month_key,
    get_previous_month_key, parse_month_key,
)
from services.errors import InvalidArgumentError, NotFoundError
from services.money import cents_to_euros
from services.rates import get_standard_rate_cents
from services.summary import recalculate_summary

logger = logging.getLogger(__name__)


def billing_id(panel_id: str, month_key: str) -> str:
    return f"{panel_id}_{month_key}"


def check_month_key(month_key: str) -> str:
    try:
        parse_month_key(month_key)
    except ValueError as e:
        raise InvalidArgumentError(str(e), month_key=month_key)
    return month_key


async def opening_state(panel_id: str, month_key: str) -> tuple[str, Optional[int]]:
    """Closing state and applied rate of the previous month, if it was billed."""
    prev = await BillingMonthlyPanel.get_or_none(id=billing_id(panel_id, get_previous_month_key(month_key)))
    if prev is None:
        return ACTIVO, None
    return prev.estado_al_cierre or ACTIVO, prev.tarifa_aplicada_cents or None


async def recalculate_panel_month(
    panel_id: str,
    month_key: str,
    *,
    rate_override_cents: Optional[int] = None,
    update_summary: bool = True,
) -> BillingMonthlyPanel:
    """
    Rebuild billing_monthly_panel[panel_id, month_key] from scratch:
    inherit state and rate from the previous month, replay the month's live
    events, overwrite the row and (for current/future months) the panel state.
    """
    check_month_key(month_key)
    panel = await Panel.get_or_none(id=panel_id)
    if panel is None:
        raise NotFoundError(f"Panel {panel_id} not found", panel_id=panel_id)
    if panel.fecha_alta and get_month_key(panel.fecha_alta) > month_key:
        raise InvalidArgumentError(
            f"Panel {panel_id} was registered after {month_key}", panel_id=panel_id, month_key=month_key
        )

    year, _ = parse_month_key(month_key)
    standard_rate = await get_standard_rate_cents(year)

    initial_state, inherited_rate = await opening_state(panel_id, month_key)
    rate = inherited_rate or standard_rate
    if inherited_rate and inherited_rate != standard_rate:
        logger.info(
            f"[recalculate_panel_month] {panel_id}/{month_key}: custom rate {cents_to_euros(rate)} "
            f"kept (standard {year}: {cents_to_euros(standard_rate)})"
        )
    if rate_override_cents is not None:
        rate = rate_override_cents

    events = await PanelEvent.filter(panel_id=panel_id, month_key=month_key, is_deleted=False)
    if inherited_rate is None and any(e.action == ALTA_INICIAL for e in events):
        # not installed yet: billing starts at the ALTA_INICIAL day
        initial_state = DESMONTADO

    result = compute_month_billing(initial_state, rate, events)
    logger.info(
        f"[recalculate_panel_month] {panel_id}/{month_key}: {len(events)} events, "
        f"periods={result.periods}, {result.dias_facturables} days, "
        f"{cents_to_euros(result.importe_cents)} EUR, state={result.estado_al_cierre}"
    )

    update_panel_state = month_key >= current_month_key(config.BILLING_TZ)
    async with in_transaction():
        billing, _ = await BillingMonthlyPanel.update_or_create(
            id=billing_id(panel_id, month_key),
            defaults=dict(
                panel_id=panel_id,
                month_key=month_key,
                codigo=panel.codigo,
                municipio=panel.municipio,
                total_dias_facturables=result.dias_facturables,
                total_importe_cents=result.importe_cents,
                estado_al_cierre=result.estado_al_cierre,
                tarifa_aplicada_cents=result.tarifa_cents,
            ),
        )
        if update_panel_state:
            panel.estado_actual = result.estado_al_cierre
            panel.tarifa_actual_cents = result.tarifa_cents
            await panel.save(update_fields=["estado_actual", "tarifa_actual_cents", "updated_at"])

    if update_summary:
        await recalculate_summary(month_key)
    return billing


async def recalculate_panels(
    panel_ids: List[str],
    month_key: str,
    *,
    batch_size: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Recalculate many panels for one month without touching the summary,
    `batch_size` panels at a time. Failures are collected, not raised.
    """
    batch_size = batch_size or config.RECALC_BATCH_SIZE
    processed = 0
    errors: List[Dict[str, str]] = []

    for i in range(0, len(panel_ids), batch_size):
        batch = panel_ids[i : i + batch_size]
        results = await asyncio.gather(
            *(recalculate_panel_month(pid, month_key, update_summary=False) for pid in batch),
            return_exceptions=True,
        )
        for pid, res in zip(batch, results):
            if isinstance(res, Exception):
                logger.warning(f"[recalculate_panels] {pid}/{month_key} failed: {res}")
                errors.append({"panel_id": pid, "error": str(res)})
            else:
                processed += 1
        logger.info(f"[recalculate_panels] {month_key}: {processed}/{len(panel_ids)} processed")

    return {"processed": processed, "failed": len(errors), "errors": errors}


async def billable_panel_ids(month_key: str) -> List[str]:
    """Panels that existed in `month_key` (registered on or before it)."""
    year, month = parse_month_key(month_key)
    rows = await Panel.all().order_by("id").values("id", "fecha_alta")
    return [
        r["id"] for r in rows
        if r["fecha_alta"] is None or (r["fecha_alta"].year, r["fecha_alta"].month) <= (year, month)
    ]
