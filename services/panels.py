# services/panels.py
from __future__ import annotations
import logging
import unicodedata
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from tortoise.transactions import in_transaction

from models import AuditLog, BillingMonthlyPanel, BillingSummary, Panel, PanelEvent
from services.billing_rules import ACTIVO, ALTA_INICIAL, calculate_billable_days, get_month_key
from services.errors import AlreadyExistsError, InvalidArgumentError, MonthLockedError, NotFoundError
from services.money import calculate_importe_cents, cents_to_euros
from services.rates import get_standard_rate_cents
from services.recalculation import recalculate_panel_month
from services.summary import assert_month_unlocked, recalculate_summary

logger = logging.getLogger(__name__)


def make_panel_id(municipio: str, codigo: str) -> str:
    return f"{municipio}_{codigo}"


def _clean(value: Optional[str], name: str) -> str:
    v = (value or "").strip()
    if not v:
        raise InvalidArgumentError(f"{name} is required")
    return v


async def create_panel(
    codigo: str,
    municipio: str,
    fecha_alta: date,
    *,
    ubicacion: Optional[str] = None,
    tipo: str = "PIV",
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Register a panel: panel row, ALTA_INICIAL event and the first month's
    billing (prorated from the registration day).
    """
    codigo = _clean(codigo, "codigo")
    municipio = _clean(municipio, "municipio")
    if not 2000 <= fecha_alta.year <= 2100:
        raise InvalidArgumentError(f"Year {fecha_alta.year} must be between 2000 and 2100")

    if await Panel.exists(codigo=codigo):
        raise AlreadyExistsError(f"Panel code {codigo!r} is already registered", codigo=codigo)
    panel_id = make_panel_id(municipio, codigo)
    if await Panel.exists(id=panel_id):
        raise AlreadyExistsError(f"Panel {panel_id!r} already exists", panel_id=panel_id)

    month_key = get_month_key(fecha_alta)
    await assert_month_unlocked(month_key, f"Month {month_key} is locked; panels cannot be registered in it")
    rate = await get_standard_rate_cents(fecha_alta.year)
    dias = calculate_billable_days(ALTA_INICIAL, fecha_alta.day)

    async with in_transaction():
        await Panel.create(
            id=panel_id,
            codigo=codigo,
            municipio=municipio,
            ubicacion=(ubicacion or municipio).strip(),
            tipo=tipo,
            estado_actual=ACTIVO,
            tarifa_actual_cents=rate,
            fecha_alta=fecha_alta,
            created_by=actor,
        )
        await PanelEvent.create(
            id=uuid.uuid4(),
            panel_id=panel_id,
            action=ALTA_INICIAL,
            effective_date=fecha_alta,
            month_key=month_key,
            dias_facturables=dias,
            importe_cents=calculate_importe_cents(dias, rate),
            motivo=f"Initial registration on {fecha_alta.isoformat()}",
            snapshot_before={},
            snapshot_after={"codigo": codigo, "estadoActual": ACTIVO, "tarifaBaseMes": cents_to_euros(rate)},
            created_by=actor,
            updated_by=actor,
        )

    billing = await recalculate_panel_month(panel_id, month_key)
    logger.info(f"[create_panel] {panel_id} registered by {actor}: {dias} days, {cents_to_euros(billing.total_importe_cents)} EUR")
    return {
        "success": True,
        "panel_id": panel_id,
        "codigo": codigo,
        "month_key": month_key,
        "dias_facturables": billing.total_dias_facturables,
        "importe": cents_to_euros(billing.total_importe_cents),
        "tarifa": cents_to_euros(rate),
    }


async def delete_panel(panel_id: str, confirm_code: str, *, actor: Optional[str] = None) -> Dict[str, Any]:
    """
    Hard delete of a panel with its events and billing rows. The caller must
    echo the panel code; no month touched by the panel may be locked.
    """
    panel = await Panel.get_or_none(id=panel_id)
    if panel is None:
        raise NotFoundError(f"Panel {panel_id} not found", panel_id=panel_id)
    if (confirm_code or "").strip() != panel.codigo:
        raise InvalidArgumentError(f"Confirmation code mismatch: type {panel.codigo!r} to confirm")

    billing_months = await BillingMonthlyPanel.filter(panel_id=panel_id).values_list("month_key", flat=True)
    event_months = await PanelEvent.filter(panel_id=panel_id).values_list("month_key", flat=True)
    affected = sorted(set(billing_months) | set(event_months))

    locked = await BillingSummary.filter(month_key__in=affected, is_locked=True).values_list("month_key", flat=True)
    if locked:
        raise MonthLockedError(
            sorted(locked)[0], f"Cannot delete panel: month(s) {', '.join(sorted(locked))} are locked"
        )

    async with in_transaction():
        events_deleted = await PanelEvent.filter(panel_id=panel_id).delete()
        billing_deleted = await BillingMonthlyPanel.filter(panel_id=panel_id).delete()
        await panel.delete()
        await AuditLog.create(
            action="DELETE_PANEL",
            actor=actor,
            payload={
                "panel_id": panel_id,
                "codigo": panel.codigo,
                "municipio": panel.municipio,
                "affected_months": affected,
                "events_deleted": events_deleted,
                "billing_docs_deleted": billing_deleted,
            },
        )

    for month_key in affected:
        await recalculate_summary(month_key)

    logger.info(f"[delete_panel] {panel_id} deleted by {actor}; months {affected}")
    return {
        "success": True,
        "panel_id": panel_id,
        "codigo": panel.codigo,
        "events_deleted": events_deleted,
        "billing_docs_deleted": billing_deleted,
        "affected_months": affected,
    }


def _collation_key(s: str) -> str:
    # case- and accent-insensitive, so "Álava" sorts with "alava"
    decomposed = unicodedata.normalize("NFKD", s)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


async def get_unique_locations() -> List[str]:
    values = await Panel.all().values_list("ubicacion", flat=True)
    unique = {v.strip() for v in values if isinstance(v, str) and v.strip()}
    return sorted(unique, key=lambda s: (_collation_key(s), s))
