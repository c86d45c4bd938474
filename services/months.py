# services/months.py
from __future__ import annotations
import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from tortoise.transactions import in_transaction

from models import AuditLog, BillingMonthlyPanel, BillingSummary, Panel, PanelEvent
from services.billing_rules import (
    ACTIVO, ALTA_INICIAL, get_month_key, get_next_month_key, get_previous_month_key,
)
from services.errors import (
    AlreadyExistsError, InvalidArgumentError, MonthLockedError, NotFoundError, PreconditionFailedError,
)
from services.money import cents_to_euros, euros_to_cents
from services.panels import make_panel_id
from services.recalculation import (
    billable_panel_ids, billing_id, check_month_key, recalculate_panels,
)
from services.summary import assert_month_unlocked, recalculate_summary

logger = logging.getLogger(__name__)
UTC = timezone.utc


def summary_totals(summary: BillingSummary) -> Dict[str, Any]:
    return {
        "total_importe_mes": cents_to_euros(summary.total_importe_mes_cents),
        "total_importe_mes_cents": summary.total_importe_mes_cents,
        "total_paneles_facturables": summary.total_paneles_facturables,
        "paneles_activos": summary.paneles_activos,
        "paneles_parciales": summary.paneles_parciales,
        "total_eventos": summary.total_eventos,
    }


async def _get_summary(month_key: str) -> BillingSummary:
    check_month_key(month_key)
    summary = await BillingSummary.get_or_none(month_key=month_key)
    if summary is None:
        raise NotFoundError(f"Month {month_key} does not exist", month_key=month_key)
    return summary


# ---------- lock / close ----------

async def toggle_month_lock(month_key: str, is_locked: bool, *, actor: Optional[str] = None) -> Dict[str, Any]:
    summary = await _get_summary(month_key)

    if not is_locked and summary.is_locked:
        next_key = get_next_month_key(month_key)
        if await BillingSummary.exists(month_key=next_key):
            logger.warning(
                f"[toggle_month_lock] reopening {month_key} while {next_key} exists; "
                f"changes will not flow into {next_key} until it is resynced"
            )

    summary.is_locked = is_locked
    summary.locked_at = datetime.now(tz=UTC) if is_locked else None
    summary.locked_by = actor if is_locked else None
    await summary.save(update_fields=["is_locked", "locked_at", "locked_by", "updated_at"])
    logger.info(f"[toggle_month_lock] {month_key} {'locked' if is_locked else 'unlocked'} by {actor}")
    return {"success": True, "month_key": month_key, "is_locked": is_locked}


async def close_month(month_key: str, *, actor: Optional[str] = None) -> Dict[str, Any]:
    """Final summary recompute, then lock. Closing a closed month is a no-op."""
    summary = await _get_summary(month_key)
    if summary.is_locked:
        logger.info(f"[close_month] {month_key} already locked")
        return {"success": True, "month_key": month_key, "is_locked": True, "already_locked": True}

    summary = await recalculate_summary(month_key)
    await toggle_month_lock(month_key, True, actor=actor)
    return {
        "success": True,
        "month_key": month_key,
        "is_locked": True,
        "already_locked": False,
        "summary": summary_totals(summary),
    }


# ---------- month (re)builds ----------

async def create_next_month(month_key: str, *, actor: Optional[str] = None) -> Dict[str, Any]:
    """
    Open `month_key`: every panel inherits its closing state from the previous
    month and is rebuilt. Failed panels are retried once.
    """
    check_month_key(month_key)
    if await BillingSummary.exists(month_key=month_key):
        raise AlreadyExistsError(f"Month {month_key} already exists", month_key=month_key)
    previous_key = get_previous_month_key(month_key)
    if not await BillingSummary.exists(month_key=previous_key):
        raise NotFoundError(
            f"Previous month {previous_key} does not exist; cannot create {month_key}", month_key=previous_key
        )

    panel_ids = await billable_panel_ids(month_key)
    if not panel_ids:
        raise PreconditionFailedError("No panels found")

    await BillingSummary.create(month_key=month_key, is_locked=False)
    logger.info(f"[create_next_month] {month_key}: rebuilding {len(panel_ids)} panels (by {actor})")

    result = await recalculate_panels(panel_ids, month_key)
    errors = result["errors"]
    if errors:
        logger.warning(f"[create_next_month] retrying {len(errors)} failed panels")
        retry = await recalculate_panels([e["panel_id"] for e in errors], month_key)
        result["processed"] += retry["processed"]
        errors = retry["errors"]

    summary = await recalculate_summary(month_key)
    billing_docs = await BillingMonthlyPanel.filter(month_key=month_key).count()
    if billing_docs < result["processed"]:
        logger.warning(
            f"[create_next_month] {month_key}: {result['processed']} processed but only {billing_docs} billing rows"
        )

    return {
        "success": True,
        "month_key": month_key,
        "previous_month_key": previous_key,
        "total_panels": len(panel_ids),
        "panels_processed": result["processed"],
        "panels_failed": len(errors),
        "billing_documents_created": billing_docs,
        "summary": summary_totals(summary),
        "errors": errors or None,
    }


async def regenerate_month_billing(month_key: str) -> Dict[str, Any]:
    check_month_key(month_key)
    await assert_month_unlocked(month_key, f"Month {month_key} is locked; unlock it before regenerating")

    panel_ids = await billable_panel_ids(month_key)
    if not panel_ids:
        raise PreconditionFailedError("No panels found")

    result = await recalculate_panels(panel_ids, month_key)
    summary = await recalculate_summary(month_key)
    logger.info(f"[regenerate_month_billing] {month_key}: {result['processed']}/{len(panel_ids)} panels")
    return {
        "success": True,
        "month_key": month_key,
        "total_panels": len(panel_ids),
        "processed": result["processed"],
        "errors": result["errors"] or None,
        "summary": summary_totals(summary),
    }


async def resync_month_from_previous(month_key: str) -> Dict[str, Any]:
    """
    Rebuild the panels whose opening state no longer matches the previous
    month's closing state (after the previous month was corrected).
    """
    await _get_summary(month_key)
    await assert_month_unlocked(month_key, f"Month {month_key} is locked; unlock it before resyncing")
    previous_key = get_previous_month_key(month_key)

    previous_rows = await BillingMonthlyPanel.filter(month_key=previous_key).values("panel_id", "estado_al_cierre")
    if not previous_rows:
        raise NotFoundError(f"No billing data for previous month {previous_key}", month_key=previous_key)
    current_rows = await BillingMonthlyPanel.filter(month_key=month_key).values(
        "panel_id", "total_dias_facturables", "total_importe_cents", "estado_al_cierre"
    )
    if not current_rows:
        raise NotFoundError(f"No billing data for {month_key}", month_key=month_key)

    carried = {r["panel_id"] for r in previous_rows}
    before = {
        r["panel_id"]: (r["total_dias_facturables"], r["total_importe_cents"], r["estado_al_cierre"])
        for r in current_rows
        if r["panel_id"] in carried
    }

    to_rebuild = sorted(before)
    result = await recalculate_panels(to_rebuild, month_key) if to_rebuild else {"processed": 0, "errors": []}

    after_rows = await BillingMonthlyPanel.filter(month_key=month_key, panel_id__in=to_rebuild).values(
        "panel_id", "total_dias_facturables", "total_importe_cents", "estado_al_cierre"
    )
    changed = sorted(
        r["panel_id"] for r in after_rows
        if before.get(r["panel_id"]) != (r["total_dias_facturables"], r["total_importe_cents"], r["estado_al_cierre"])
    )

    summary = await recalculate_summary(month_key)
    logger.info(
        f"[resync_month_from_previous] {month_key}: {len(to_rebuild)} panels rebuilt from {previous_key}, "
        f"{len(changed)} changed"
    )
    return {
        "success": True,
        "month_key": month_key,
        "previous_month_key": previous_key,
        "panels_recalculated": result["processed"],
        "panels_updated": len(changed),
        "changed_panel_ids": changed,
        "errors": result["errors"] or None,
        "summary": summary_totals(summary),
    }


# ---------- destructive ----------

async def delete_month(month_key: str, *, actor: Optional[str] = None) -> Dict[str, Any]:
    summary = await _get_summary(month_key)
    if summary.is_locked:
        raise MonthLockedError(month_key, f"Month {month_key} is locked; unlock it before deleting")

    async with in_transaction():
        billing_deleted = await BillingMonthlyPanel.filter(month_key=month_key).delete()
        events_deleted = await PanelEvent.filter(month_key=month_key).delete()
        await summary.delete()
        await AuditLog.create(
            action="DELETE_MONTH",
            actor=actor,
            payload={"month_key": month_key, "billing_deleted": billing_deleted, "events_deleted": events_deleted},
        )
    logger.info(f"[delete_month] {month_key} deleted by {actor}: {billing_deleted} billing rows, {events_deleted} events")
    return {
        "success": True,
        "month_key": month_key,
        "deleted": {"panels": billing_deleted, "events": events_deleted, "summary": 1},
    }


# ---------- bulk import ----------

async def import_base_month(month_key: str, rows: List[Dict[str, Any]], *, actor: Optional[str] = None) -> Dict[str, Any]:
    """
    Seed a starting month from already-parsed rows. Billed days and amounts
    are taken as given (they come from the previous billing system).
    """
    check_month_key(month_key)
    if not rows:
        raise InvalidArgumentError("At least one panel is required")
    if await BillingSummary.exists(month_key=month_key):
        raise AlreadyExistsError(f"Month {month_key} already exists", month_key=month_key)

    codes = [str(r["codigo"]).strip() for r in rows]
    dupes = sorted({c for c in codes if codes.count(c) > 1})
    existing = await Panel.filter(codigo__in=codes).values_list("codigo", flat=True)
    if dupes or existing:
        raise AlreadyExistsError(
            "Duplicate panel codes in import", duplicated=dupes, already_registered=sorted(existing)
        )

    async with in_transaction():
        for r in rows:
            codigo = str(r["codigo"]).strip()
            municipio = str(r["municipio"]).strip()
            fecha_alta: date = r["fecha_alta"]
            rate_cents = euros_to_cents(r["tarifa_base_mes"])
            dias = int(r["dias_facturables"])
            importe_cents = euros_to_cents(r["importe_a_facturar"])
            panel_id = make_panel_id(municipio, codigo)

            await Panel.create(
                id=panel_id,
                codigo=codigo,
                municipio=municipio,
                ubicacion=(r.get("ubicacion") or municipio).strip(),
                tipo=r.get("tipo") or "PIV",
                estado_actual=ACTIVO,
                tarifa_actual_cents=rate_cents,
                fecha_alta=fecha_alta,
                created_by=actor,
            )
            await PanelEvent.create(
                id=uuid.uuid4(),
                panel_id=panel_id,
                action=ALTA_INICIAL,
                effective_date=fecha_alta,
                month_key=get_month_key(fecha_alta),
                dias_facturables=dias,
                importe_cents=importe_cents,
                motivo="Bulk initial import",
                snapshot_before={},
                snapshot_after={"codigo": codigo, "estadoActual": ACTIVO, "tarifaBaseMes": cents_to_euros(rate_cents)},
                created_by=actor,
                updated_by=actor,
            )
            await BillingMonthlyPanel.create(
                id=billing_id(panel_id, month_key),
                panel_id=panel_id,
                month_key=month_key,
                codigo=codigo,
                municipio=municipio,
                total_dias_facturables=dias,
                total_importe_cents=importe_cents,
                estado_al_cierre=ACTIVO,
                tarifa_aplicada_cents=rate_cents,
            )

    summary = await recalculate_summary(month_key)
    logger.info(
        f"[import_base_month] {len(rows)} panels imported into {month_key} by {actor}: "
        f"{cents_to_euros(summary.total_importe_mes_cents)} EUR"
    )
    return {"success": True, "panels_created": len(rows), "month_key": month_key, **summary_totals(summary)}
