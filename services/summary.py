# services/summary.py
from __future__ import annotations
import logging
from typing import Optional

from models import BillingMonthlyPanel, BillingSummary, PanelEvent
from services.errors import MonthLockedError
from services.money import cents_to_euros, sum_importes_cents

logger = logging.getLogger(__name__)

FULL_MONTH_DAYS = 30


async def is_month_locked(month_key: str) -> bool:
    summary = await BillingSummary.get_or_none(month_key=month_key)
    return bool(summary and summary.is_locked)


async def assert_month_unlocked(month_key: str, message: Optional[str] = None) -> None:
    if await is_month_locked(month_key):
        raise MonthLockedError(month_key, message)


async def recalculate_summary(month_key: str) -> BillingSummary:
    """
    Rebuild billing_summary[month_key] from a full scan of the month's panel rows.

    Totals are overwritten, never incremented, so running this twice on the same
    rows yields the same summary. is_locked/locked_at are preserved.
    """
    rows = await BillingMonthlyPanel.filter(month_key=month_key).values(
        "total_dias_facturables", "total_importe_cents"
    )

    total_cents = sum_importes_cents(r["total_importe_cents"] or 0 for r in rows)
    facturables = sum(1 for r in rows if (r["total_importe_cents"] or 0) > 0)
    activos = sum(1 for r in rows if (r["total_dias_facturables"] or 0) >= FULL_MONTH_DAYS)
    parciales = sum(1 for r in rows if 0 < (r["total_dias_facturables"] or 0) < FULL_MONTH_DAYS)
    total_eventos = await PanelEvent.filter(month_key=month_key, is_deleted=False).count()

    values = dict(
        total_importe_mes_cents=total_cents,
        total_paneles_facturables=facturables,
        paneles_activos=activos,
        paneles_parciales=parciales,
        total_eventos=total_eventos,
    )
    summary = await BillingSummary.get_or_none(month_key=month_key)
    if summary is None:
        summary = await BillingSummary.create(month_key=month_key, is_locked=False, **values)
    else:
        for k, v in values.items():
            setattr(summary, k, v)
        await summary.save()

    logger.info(
        f"[recalculate_summary] {month_key}: {len(rows)} panels, {cents_to_euros(total_cents)} EUR, "
        f"{facturables} billable, {activos} active, {parciales} partial, {total_eventos} events"
    )
    return summary
