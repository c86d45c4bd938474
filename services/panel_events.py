# services/panel_events.py
"""
Event commands. Each command checks the month lock, writes the event and
rebuilds the panel month synchronously so the caller gets fresh totals back.
"""
from __future__ import annotations
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import InvalidOperation
from typing import Any, Dict, Optional

from tortoise.transactions import in_transaction

from models import BillingMonthlyPanel, Panel, PanelEvent
from services.billing_rules import (
    ACTIVO, ADJUSTMENT_ACTIONS, EVENT_ACTIONS, INTERVENCION, REINSTALACION, TIPOS_INTERVENCION,
    calculate_billable_days, get_day_of_month, get_month_key, get_previous_month_key, snapshot_cents,
    validate_snapshot,
)
from services.errors import InvalidArgumentError, NotFoundError, PreconditionFailedError
from services.money import calculate_importe_cents, cents_to_euros, euros_to_cents
from services.recalculation import billing_id, check_month_key, opening_state, recalculate_panel_month
from services.rates import get_standard_rate_cents
from services.summary import assert_month_unlocked

logger = logging.getLogger(__name__)
UTC = timezone.utc

UPDATABLE_FIELDS = ("motivo", "dias_facturables", "importe", "snapshot_before", "snapshot_after")


def billing_totals(billing: Optional[BillingMonthlyPanel]) -> Optional[Dict[str, Any]]:
    if billing is None:
        return None
    return {
        "total_dias_facturables": billing.total_dias_facturables,
        "total_importe": cents_to_euros(billing.total_importe_cents),
        "total_importe_cents": billing.total_importe_cents,
        "estado_al_cierre": billing.estado_al_cierre,
        "tarifa_aplicada": cents_to_euros(billing.tarifa_aplicada_cents),
    }


async def _get_panel(panel_id: str) -> Panel:
    panel = await Panel.get_or_none(id=panel_id)
    if panel is None:
        raise NotFoundError(f"Panel {panel_id} not found", panel_id=panel_id)
    return panel


async def _get_live_event(event_id: uuid.UUID | str, deleted_message: str) -> PanelEvent:
    try:
        event_uuid = event_id if isinstance(event_id, uuid.UUID) else uuid.UUID(str(event_id))
    except ValueError:
        raise NotFoundError(f"Event {event_id} not found", event_id=str(event_id))
    event = await PanelEvent.get_or_none(id=event_uuid)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found", event_id=str(event_id))
    if event.is_deleted:
        raise PreconditionFailedError(deleted_message, event_id=str(event_id))
    return event


async def request_panel_change(
    panel_id: str,
    action: str,
    effective_date: date,
    *,
    month_key: Optional[str] = None,
    motivo: Optional[str] = None,
    snapshot_before: Optional[dict] = None,
    snapshot_after: Optional[dict] = None,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    if action not in EVENT_ACTIONS:
        raise InvalidArgumentError(f"Unknown action {action!r}", allowed=list(EVENT_ACTIONS))
    event_month = get_month_key(effective_date)
    if month_key is not None and check_month_key(month_key) != event_month:
        raise InvalidArgumentError(
            f"effective_date {effective_date} is outside month {month_key}", month_key=month_key
        )

    validate_snapshot(snapshot_after)

    await assert_month_unlocked(event_month, f"Month {event_month} is locked; no new events can be created")
    panel = await _get_panel(panel_id)
    if panel.fecha_alta and effective_date < panel.fecha_alta:
        raise InvalidArgumentError(
            f"effective_date {effective_date} is before the panel registration ({panel.fecha_alta})"
        )

    _, prev_rate = await opening_state(panel_id, event_month)
    if action == REINSTALACION:
        prev_billing = await BillingMonthlyPanel.get_or_none(
            id=billing_id(panel_id, get_previous_month_key(event_month))
        )
        state = prev_billing.estado_al_cierre if prev_billing else (panel.estado_actual or ACTIVO)
        if state == ACTIVO:
            raise PreconditionFailedError(
                f"Cannot reinstall: panel closed {get_previous_month_key(event_month)} as ACTIVO; "
                f"it must be DESMONTADO or BAJA first",
                panel_id=panel_id,
            )

    # the month rebuild needs the standard rate of the year even when a previous rate is inherited
    standard_rate = await get_standard_rate_cents(effective_date.year)
    rate = prev_rate or standard_rate
    dias = calculate_billable_days(action, get_day_of_month(effective_date))
    event_id = uuid.uuid4()

    async with in_transaction():
        event = await PanelEvent.create(
            id=event_id,
            panel_id=panel_id,
            action=action,
            effective_date=effective_date,
            month_key=event_month,
            dias_facturables=dias,
            importe_cents=calculate_importe_cents(dias, rate),
            motivo=motivo or "",
            snapshot_before=snapshot_before or {},
            snapshot_after=snapshot_after or {},
            created_by=actor,
            updated_by=actor,
        )
        billing = await recalculate_panel_month(panel_id, event_month)
    logger.info(f"[request_panel_change] event {event_id} ({action}) created for {panel_id} by {actor}")

    return {
        "status": "ok",
        "event_id": str(event.id),
        "idempotency_key": str(event.id),
        "month_key": event_month,
        "totals": billing_totals(billing),
    }


async def create_intervencion(
    panel_id: str,
    effective_date: date,
    tipo_intervencion: str,
    concepto: str,
    importe: float,
    *,
    evidencia_url: Optional[str] = None,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    """One-off charge or credit on a panel; does not change its state."""
    if tipo_intervencion not in TIPOS_INTERVENCION:
        raise InvalidArgumentError(
            f"Unknown intervention type {tipo_intervencion!r}", allowed=list(TIPOS_INTERVENCION)
        )
    concepto = (concepto or "").strip()
    if not concepto or len(concepto) > 500:
        raise InvalidArgumentError("concepto is required (max 500 characters)")
    try:
        importe_cents = euros_to_cents(importe)
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidArgumentError("importe must be a finite number")
    if importe_cents == 0:
        raise InvalidArgumentError("Intervention amount cannot be 0")

    month_key = get_month_key(effective_date)
    await assert_month_unlocked(month_key, f"Month {month_key} is locked; no new interventions can be created")
    panel = await _get_panel(panel_id)
    if panel.fecha_alta and effective_date < panel.fecha_alta:
        raise InvalidArgumentError(
            f"effective_date {effective_date} is before the panel registration ({panel.fecha_alta})"
        )

    await get_standard_rate_cents(effective_date.year)

    async with in_transaction():
        event = await PanelEvent.create(
            id=uuid.uuid4(),
            panel_id=panel_id,
            action=INTERVENCION,
            effective_date=effective_date,
            month_key=month_key,
            dias_facturables=0,
            importe_cents=importe_cents,
            tipo_intervencion=tipo_intervencion,
            concepto=concepto,
            evidencia_url=evidencia_url,
            snapshot_before=None,
            snapshot_after={
                "importeAjuste": cents_to_euros(importe_cents),
                "codigo": panel.codigo,
                "ubicacion": panel.ubicacion or panel.municipio,
            },
            created_by=actor,
            updated_by=actor,
        )
        billing = await recalculate_panel_month(panel_id, month_key)
    logger.info(
        f"[create_intervencion] {tipo_intervencion} on {panel.codigo} ({effective_date}) "
        f"-> {cents_to_euros(importe_cents)} EUR by {actor}"
    )
    return {
        "status": "ok",
        "event_id": str(event.id),
        "idempotency_key": str(event.id),
        "month_key": month_key,
        "totals": billing_totals(billing),
    }


async def update_panel_event(
    event_id: uuid.UUID | str,
    updates: Dict[str, Any],
    *,
    actor: Optional[str] = None,
) -> Dict[str, Any]:
    updates = {k: v for k, v in (updates or {}).items() if k in UPDATABLE_FIELDS}
    if not updates:
        raise InvalidArgumentError("At least one field must be provided", allowed=list(UPDATABLE_FIELDS))
    if "dias_facturables" in updates and not 0 <= int(updates["dias_facturables"]) <= 31:
        raise InvalidArgumentError("dias_facturables must be between 0 and 31")
    validate_snapshot(updates.get("snapshot_after"))
    importe_cents = None
    if updates.get("importe") is not None:
        try:
            importe_cents = euros_to_cents(updates["importe"])
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidArgumentError("importe must be a finite number")

    event = await _get_live_event(event_id, "Cannot update a deleted event")
    await assert_month_unlocked(event.month_key, f"Month {event.month_key} is locked; events cannot be updated")

    is_adjustment = event.action in ADJUSTMENT_ACTIONS
    # adjustments carry credits, everything else is a charge
    if importe_cents is not None and importe_cents < 0 and not is_adjustment:
        raise InvalidArgumentError("importe must be >= 0")

    for k, v in updates.items():
        if k == "importe":
            if importe_cents is not None:
                event.importe_cents = importe_cents
        else:
            setattr(event, k, v)

    if is_adjustment:
        # the replay reads snapshot_after.importeAjuste; keep it and importe_cents in step
        snapshot_after = dict(event.snapshot_after or {})
        if importe_cents is not None:
            snapshot_after["importeAjuste"] = cents_to_euros(importe_cents)
            event.snapshot_after = snapshot_after
        elif "snapshot_after" in updates:
            adjustment = snapshot_cents(snapshot_after, "importeAjuste")
            if adjustment is not None:
                event.importe_cents = adjustment

    event.updated_by = actor
    async with in_transaction():
        await event.save()
        billing = await recalculate_panel_month(event.panel_id, event.month_key)
    logger.info(f"[update_panel_event] {event.id} updated by {actor}: {', '.join(updates)}")

    return {"success": True, "event_id": str(event.id), "totals": billing_totals(billing)}


async def delete_panel_event(event_id: uuid.UUID | str, *, actor: Optional[str] = None) -> Dict[str, Any]:
    """Soft delete: the row stays for auditing, recalculation ignores it."""
    event = await _get_live_event(event_id, "Event is already deleted")
    await assert_month_unlocked(event.month_key, f"Month {event.month_key} is locked; events cannot be deleted")

    event.is_deleted = True
    event.deleted_at = datetime.now(tz=UTC)
    event.deleted_by = actor
    event.updated_by = actor
    async with in_transaction():
        await event.save()
        billing = await recalculate_panel_month(event.panel_id, event.month_key)
    logger.info(f"[delete_panel_event] {event.id} marked deleted by {actor}")

    return {"success": True, "event_id": str(event.id), "totals": billing_totals(billing)}


async def delete_all_panel_events(panel_id: str, month_key: str, *, actor: Optional[str] = None) -> Dict[str, Any]:
    check_month_key(month_key)
    await assert_month_unlocked(month_key, f"Month {month_key} is locked; events cannot be deleted")
    await _get_panel(panel_id)

    now = datetime.now(tz=UTC)
    async with in_transaction():
        deleted = await PanelEvent.filter(panel_id=panel_id, month_key=month_key, is_deleted=False).update(
            is_deleted=True, deleted_at=now, deleted_by=actor, updated_by=actor, updated_at=now
        )
        billing = await recalculate_panel_month(panel_id, month_key)
    logger.info(f"[delete_all_panel_events] {deleted} events of {panel_id}/{month_key} deleted by {actor}")

    return {
        "success": True,
        "panel_id": panel_id,
        "month_key": month_key,
        "deleted": deleted,
        "totals": billing_totals(billing),
    }
