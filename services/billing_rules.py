# services/billing_rules.py
from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from services.errors import InvalidArgumentError
from services.money import DAYS_PER_MONTH, calculate_importe_cents, euros_to_cents

# ---------- states & actions ----------
ACTIVO = "ACTIVO"
DESMONTADO = "DESMONTADO"
BAJA = "BAJA"
PANEL_STATES = (ACTIVO, DESMONTADO, BAJA)

ALTA_INICIAL = "ALTA_INICIAL"
ALTA = "ALTA"
REINSTALACION = "REINSTALACION"
DESMONTAJE = "DESMONTAJE"
CAMBIO_TARIFA = "CAMBIO_TARIFA"
AJUSTE_MANUAL = "AJUSTE_MANUAL"
INTERVENCION = "INTERVENCION"

ACTIVATING_ACTIONS = frozenset({ALTA_INICIAL, ALTA, REINSTALACION})
# DESMONTADO is the legacy spelling of DESMONTAJE still present in old events
DEACTIVATING_ACTIONS = frozenset({DESMONTAJE, DESMONTADO, BAJA})
ADJUSTMENT_ACTIONS = frozenset({AJUSTE_MANUAL, INTERVENCION})
EVENT_ACTIONS = tuple(sorted(ACTIVATING_ACTIONS | DEACTIVATING_ACTIONS | ADJUSTMENT_ACTIONS | {CAMBIO_TARIFA}))

TIPOS_INTERVENCION = ("REPARACION", "INSTALACION", "MANTENIMIENTO", "VANDALISMO", "OTRO")

# ---------- month keys ----------
_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month_key(month_key: str) -> tuple[int, int]:
    m = _MONTH_KEY_RE.match(month_key or "")
    if not m:
        raise ValueError(f"invalid month key {month_key!r}, expected YYYY-MM")
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"invalid month in {month_key!r}")
    return year, month


def make_month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def get_month_key(d: date) -> str:
    return make_month_key(d.year, d.month)


def get_previous_month_key(month_key: str) -> str:
    year, month = parse_month_key(month_key)
    return make_month_key(year - 1, 12) if month == 1 else make_month_key(year, month - 1)


def get_next_month_key(month_key: str) -> str:
    year, month = parse_month_key(month_key)
    return make_month_key(year + 1, 1) if month == 12 else make_month_key(year, month + 1)


def get_day_of_month(d: date | str) -> int:
    if isinstance(d, str):
        d = date.fromisoformat(d[:10])
    return d.day


def current_month_key(tz: str = "UTC", now: Optional[datetime] = None) -> str:
    zone = ZoneInfo(tz)
    now = now.astimezone(zone) if now and now.tzinfo else (now or datetime.now(tz=zone))
    return get_month_key(now)


# ---------- per-event rules ----------
def calculate_billable_days(action: str, day_of_month: int) -> int:
    """
    Days billed by a single event in a 30-day month.
    Activating on day d bills d..30, deactivating on day d bills 1..d.
    """
    if action in ACTIVATING_ACTIONS:
        return max(0, min(DAYS_PER_MONTH, DAYS_PER_MONTH + 1 - day_of_month))
    if action in DEACTIVATING_ACTIONS:
        return max(0, min(day_of_month, DAYS_PER_MONTH))
    return 0


def get_new_panel_state(action: str, current: str) -> str:
    if action in ACTIVATING_ACTIONS:
        return ACTIVO
    if action == BAJA:
        return BAJA
    if action in DEACTIVATING_ACTIONS:
        return DESMONTADO
    return current


def snapshot_cents(snapshot: Optional[dict], key: str, *, positive: bool = False) -> Optional[int]:
    if not snapshot:
        return None
    v = snapshot.get(key)
    if v is None or v == "":
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float, str, Decimal)):
        raise InvalidArgumentError(f"snapshot_after.{key} must be a number", field=key)
    try:
        cents = euros_to_cents(v)
    except (InvalidOperation, ValueError):
        # also covers NaN / Infinity, which cannot be quantized
        raise InvalidArgumentError(f"snapshot_after.{key} must be a finite number", field=key)
    if positive and cents <= 0:
        raise InvalidArgumentError(f"snapshot_after.{key} must be greater than 0", field=key)
    return cents


def validate_snapshot(snapshot: Optional[dict]) -> Optional[dict]:
    """Reject snapshot amounts the month replay could not use."""
    if snapshot is None:
        return None
    if not isinstance(snapshot, dict):
        raise InvalidArgumentError("snapshot must be an object")
    snapshot_cents(snapshot, "tarifaBaseMes", positive=True)
    snapshot_cents(snapshot, "importeAjuste")
    return snapshot


# ---------- month replay ----------
@dataclass
class EventInput:
    action: str
    effective_date: date
    snapshot_after: Optional[dict] = None
    created_at: Optional[datetime] = None


@dataclass
class MonthBilling:
    dias_facturables: int
    importe_cents: int
    estado_al_cierre: str
    tarifa_cents: int
    periods: list[tuple[int, int]] = field(default_factory=list)


def sort_events(events: Iterable[Any]) -> list[Any]:
    return sorted(
        events,
        key=lambda e: (e.effective_date, e.created_at.timestamp() if e.created_at else 0.0),
    )


def compute_month_billing(initial_state: str, rate_cents: int, events: Sequence[Any]) -> MonthBilling:
    """
    Replay one panel's non-deleted events for a month.

    The panel opens the month in `initial_state` (closing state of the previous
    month) at `rate_cents`. Active periods are collected between events; a panel
    still ACTIVO at the end bills through day 30.
    """
    state = initial_state if initial_state in PANEL_STATES else ACTIVO
    tarifa = int(rate_cents)
    adjustments = 0
    periods: list[tuple[int, int]] = []
    period_start = 1

    for ev in sort_events(events):
        day = get_day_of_month(ev.effective_date)
        if ev.action in ACTIVATING_ACTIONS:
            if state != ACTIVO:
                state = ACTIVO
                period_start = day
        elif ev.action in DEACTIVATING_ACTIONS:
            if state == ACTIVO and period_start <= day:
                periods.append((period_start, min(day, DAYS_PER_MONTH)))
            state = get_new_panel_state(ev.action, state)
            period_start = day + 1
        elif ev.action == CAMBIO_TARIFA:
            new_rate = snapshot_cents(ev.snapshot_after, "tarifaBaseMes", positive=True)
            if new_rate is not None:
                tarifa = new_rate
        elif ev.action in ADJUSTMENT_ACTIONS:
            adj = snapshot_cents(ev.snapshot_after, "importeAjuste")
            if adj is not None:
                adjustments += adj

    if state == ACTIVO and period_start <= DAYS_PER_MONTH:
        periods.append((period_start, DAYS_PER_MONTH))

    days = min(sum(end - start + 1 for start, end in periods if end >= start), DAYS_PER_MONTH)
    importe = calculate_importe_cents(days, tarifa) + adjustments
    return MonthBilling(
        dias_facturables=days,
        importe_cents=importe,
        estado_al_cierre=state,
        tarifa_cents=tarifa,
        periods=periods,
    )
