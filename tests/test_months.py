from datetime import date

import pytest

from models import AuditLog, BillingMonthlyPanel, BillingSummary
from services.errors import AlreadyExistsError, MonthLockedError, NotFoundError, PreconditionFailedError
from services.months import (
    close_month, create_next_month, delete_month, import_base_month,
    regenerate_month_billing, resync_month_from_previous, toggle_month_lock,
)
from services.panel_events import request_panel_change
from services.summary import recalculate_summary

BASE_ROWS = [
    {
        "codigo": "P-1",
        "municipio": "Madrid",
        "tarifa_base_mes": 36.5,
        "fecha_alta": date(2024, 1, 1),
        "dias_facturables": 30,
        "importe_a_facturar": 36.5,
        "ubicacion": "Gran Via",
    },
    {
        "codigo": "P-2",
        "municipio": "Toledo",
        "tarifa_base_mes": 36.5,
        "fecha_alta": date(2024, 12, 16),
        "dias_facturables": 15,
        "importe_a_facturar": 18.25,
    },
]


async def _row(panel_id, month_key):
    return await BillingMonthlyPanel.get_or_none(id=f"{panel_id}_{month_key}")


async def _summary(month_key):
    return await BillingSummary.get_or_none(month_key=month_key)


async def _audit_count(action):
    return await AuditLog.filter(action=action).count()


@pytest.fixture
def base_month(run):
    return run(import_base_month, "2024-12", BASE_ROWS, actor="importer")


def test_import_base_month(run, base_month):
    assert base_month["panels_created"] == 2
    assert base_month["total_importe_mes_cents"] == 3650 + 1825
    assert base_month["paneles_activos"] == 1
    assert base_month["paneles_parciales"] == 1

    row = run(_row, "Toledo_P-2", "2024-12")
    assert (row.total_dias_facturables, row.total_importe_cents, row.tarifa_aplicada_cents) == (15, 1825, 3650)


def test_import_refuses_existing_month_and_duplicates(run, base_month):
    with pytest.raises(AlreadyExistsError):
        run(import_base_month, "2024-12", BASE_ROWS)
    with pytest.raises(AlreadyExistsError):
        run(import_base_month, "2024-11", [dict(BASE_ROWS[0], codigo="P-9"), dict(BASE_ROWS[0], codigo="P-9")])
    with pytest.raises(AlreadyExistsError):
        # P-1 is already registered
        run(import_base_month, "2024-11", [BASE_ROWS[0]])


def test_create_next_month_inherits_state_and_rate(run, base_month):
    result = run(create_next_month, "2025-01", actor="admin")
    assert result["total_panels"] == 2
    assert result["panels_processed"] == 2
    assert result["panels_failed"] == 0
    assert result["billing_documents_created"] == 2
    # imported rate 36.50 is kept over the 2025 standard 37.70
    assert result["summary"]["total_importe_mes_cents"] == 2 * 3650
    assert result["summary"]["paneles_activos"] == 2

    row = run(_row, "Madrid_P-1", "2025-01")
    assert (row.estado_al_cierre, row.tarifa_aplicada_cents) == ("ACTIVO", 3650)


def test_create_next_month_preconditions(run, base_month):
    run(create_next_month, "2025-01")
    with pytest.raises(AlreadyExistsError):
        run(create_next_month, "2025-01")
    with pytest.raises(NotFoundError):
        run(create_next_month, "2025-06")


def test_create_next_month_without_panels(run):
    run(recalculate_summary, "2025-05")
    with pytest.raises(PreconditionFailedError):
        run(create_next_month, "2025-06")


def test_dismantled_panel_opens_next_month_inactive_and_can_be_reinstalled(run, base_month):
    run(request_panel_change, "Madrid_P-1", "DESMONTAJE", date(2024, 12, 10), actor="ed")
    run(create_next_month, "2025-01")

    row = run(_row, "Madrid_P-1", "2025-01")
    assert (row.total_dias_facturables, row.total_importe_cents, row.estado_al_cierre) == (0, 0, "DESMONTADO")

    result = run(request_panel_change, "Madrid_P-1", "REINSTALACION", date(2025, 1, 15), actor="ed")
    # 16 days at the 2024 rate carried over: 16 * 3650 / 30 = 1946.67
    assert result["totals"]["total_dias_facturables"] == 16
    assert result["totals"]["total_importe_cents"] == 1947


def test_reinstall_requires_inactive_previous_month(run, base_month):
    run(create_next_month, "2025-01")
    with pytest.raises(PreconditionFailedError):
        run(request_panel_change, "Madrid_P-1", "REINSTALACION", date(2025, 1, 15))


def test_resync_after_correcting_previous_month(run, base_month):
    run(create_next_month, "2025-01")
    # late correction of December
    run(request_panel_change, "Madrid_P-1", "DESMONTAJE", date(2024, 12, 10), actor="ed")
    dec = run(_row, "Madrid_P-1", "2024-12")
    assert (dec.total_dias_facturables, dec.total_importe_cents) == (10, 1217)

    result = run(resync_month_from_previous, "2025-01")
    assert result["panels_recalculated"] == 2
    assert result["panels_updated"] == 1
    assert result["changed_panel_ids"] == ["Madrid_P-1"]

    jan = run(_row, "Madrid_P-1", "2025-01")
    assert (jan.total_dias_facturables, jan.total_importe_cents, jan.estado_al_cierre) == (0, 0, "DESMONTADO")
    assert result["summary"]["total_importe_mes_cents"] == 3650


def test_lock_toggle_and_close(run, base_month):
    with pytest.raises(NotFoundError):
        run(toggle_month_lock, "2030-01", True)

    result = run(close_month, "2024-12", actor="admin")
    assert result["is_locked"] is True
    assert result["already_locked"] is False
    summary = run(_summary, "2024-12")
    assert summary.locked_by == "admin"
    assert summary.locked_at is not None

    run(toggle_month_lock, "2024-12", False, actor="admin")
    summary = run(_summary, "2024-12")
    assert (summary.is_locked, summary.locked_at, summary.locked_by) == (False, None, None)


def test_summary_recompute_is_idempotent_and_keeps_the_lock(run, base_month):
    run(close_month, "2024-12")
    first = run(recalculate_summary, "2024-12")
    second = run(recalculate_summary, "2024-12")
    assert first.total_importe_mes_cents == second.total_importe_mes_cents == 3650 + 1825
    assert second.is_locked is True


def test_regenerate_month(run, base_month):
    result = run(regenerate_month_billing, "2024-12")
    assert result["processed"] == 2
    # rebuilt from events at the 2024 standard rate: P-2 registered on the 16th bills 15 days
    assert result["summary"]["total_importe_mes_cents"] == 3650 + 1825

    run(close_month, "2024-12")
    with pytest.raises(MonthLockedError):
        run(regenerate_month_billing, "2024-12")
    with pytest.raises(MonthLockedError):
        run(resync_month_from_previous, "2024-12")


def test_delete_month(run, base_month):
    run(create_next_month, "2025-01")
    run(close_month, "2025-01")
    with pytest.raises(MonthLockedError):
        run(delete_month, "2025-01")

    run(toggle_month_lock, "2025-01", False)
    result = run(delete_month, "2025-01", actor="admin")
    assert result["deleted"]["panels"] == 2
    assert run(_summary, "2025-01") is None
    assert run(_row, "Madrid_P-1", "2025-01") is None
    assert run(_audit_count, "DELETE_MONTH") == 1

    with pytest.raises(NotFoundError):
        run(delete_month, "2025-01")


def test_months_api_is_admin_only(client, make_user, base_month):
    editor = make_user("editor", "editor")
    assert client.post("/months/2025-01/create", headers=editor).status_code == 403
    assert client.put("/months/2024-12/lock", json={"is_locked": True}, headers=editor).status_code == 403


def test_import_through_the_api(client, admin_headers):
    payload = {
        "month_key": "2024-12",
        "panels": [
            {
                "codigo": "P-7",
                "municipio": "Madrid",
                "tarifa_base_mes": 36.5,
                "fecha_alta": "2024-06-01",
                "dias_facturables": 30,
                "importe_a_facturar": 36.5,
            }
        ],
    }
    resp = client.post("/months/import", json=payload, headers=admin_headers)
    assert resp.status_code == 201, resp.text
    assert resp.json()["total_importe_mes"] == 36.5

    assert client.post("/months/import", json=payload, headers=admin_headers).status_code == 409
    assert client.post("/months/bad-key/create", headers=admin_headers).status_code == 422
