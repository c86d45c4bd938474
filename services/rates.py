# services/rates.py
from __future__ import annotations
import logging
from typing import Any, Dict

from tortoise.transactions import in_transaction

from models import BillingMonthlyPanel, YearlyRate
from services.billing_rules import make_month_key
from services.errors import InvalidArgumentError, RateNotConfiguredError
from services.money import cents_to_euros, euros_to_cents

logger = logging.getLogger(__name__)


async def get_standard_rate_cents(year: int | str) -> int:
    rate = await YearlyRate.get_or_none(year=int(year))
    if rate is None:
        raise RateNotConfiguredError(int(year))
    return rate.importe_cents


async def update_yearly_rate(year: int | str, amount: float, actor: str | None = None) -> Dict[str, Any]:
    """
    Upsert the standard rate for `year` and push it into that year's January,
    which is the month that opens the year at the standard price.
    """
    # local import: recalculation depends on this module for the standard rate
    from services.recalculation import recalculate_panel_month
    from services.summary import is_month_locked, recalculate_summary

    try:
        year_i = int(year)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"Year must be a 4-digit number, got {year!r}")
    if not 1000 <= year_i <= 9999:
        raise InvalidArgumentError(f"Year must be a 4-digit number, got {year!r}")
    if amount is None or amount <= 0:
        raise InvalidArgumentError("Rate amount must be positive")

    cents = euros_to_cents(amount)
    async with in_transaction():
        rate, created = await YearlyRate.get_or_create(
            year=year_i, defaults={"importe_cents": cents, "updated_by": actor}
        )
        if not created:
            rate.importe_cents = cents
            rate.updated_by = actor
            await rate.save()
    logger.info(f"[update_yearly_rate] {year_i} -> {cents_to_euros(cents)} EUR by {actor}")

    january = make_month_key(year_i, 1)
    panels_updated = 0
    if await is_month_locked(january):
        logger.warning(f"[update_yearly_rate] {january} is locked, rate not propagated")
    else:
        panel_ids = await BillingMonthlyPanel.filter(month_key=january).values_list("panel_id", flat=True)
        for panel_id in panel_ids:
            await recalculate_panel_month(panel_id, january, rate_override_cents=cents, update_summary=False)
            panels_updated += 1
        if panels_updated:
            await recalculate_summary(january)
            logger.info(f"[update_yearly_rate] propagated to {panels_updated} panels of {january}")

    return {
        "year": year_i,
        "amount": cents_to_euros(cents),
        "amount_cents": cents,
        "propagated_month": january,
        "panels_updated": panels_updated,
        "updated_by": actor,
    }
