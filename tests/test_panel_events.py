import json
from datetime import date

import pytest

from models import PanelEvent
from services import panel_events
from services.errors import InvalidArgumentError, RateNotConfiguredError
from services.panel_events import request_panel_change

PANEL = "Madrid_P-1"


@pytest.fixture
def editor(make_user):
    return make_user("editor", "editor")


@pytest.fixture
def panel(create_panel):
    # registered on the 20th: 11 days, 13.82 EUR at 37.70
    return create_panel("P-1", "2025-03-20")


def post_event(client, headers, action, effective_date, **extra):
    return client.post(
        "/panel-events",
        json={"panel_id": PANEL, "action": action, "effective_date": effective_date, **extra},
        headers=headers,
    )


def test_dismantle_recalculates_the_month(client, editor, panel, admin_headers):
    resp = post_event(client, editor, "DESMONTAJE", "2025-03-25", motivo="Obras")
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "ok"
    assert body["month_key"] == "2025-03"
    assert body["idempotency_key"] == body["event_id"]
    assert body["totals"]["total_dias_facturables"] == 6
    assert body["totals"]["total_importe_cents"] == 754
    assert body["totals"]["estado_al_cierre"] == "DESMONTADO"

    summary = client.get("/billing/summaries/2025-03", headers=admin_headers).json()
    assert summary["total_importe_mes_cents"] == 754
    assert summary["total_eventos"] == 2
    assert summary["paneles_parciales"] == 1


@pytest.mark.parametrize(
    "action, effective_date, extra",
    [
        ("EXPLOTAR", "2025-03-25", {}),
        ("DESMONTAJE", "2025-03-10", {}),  # before registration
        ("DESMONTAJE", "2025-03-25", {"month_key": "2025-04"}),
    ],
)
def test_invalid_events_rejected(client, editor, panel, action, effective_date, extra):
    resp = post_event(client, editor, action, effective_date, **extra)
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid-argument"


def test_unknown_panel_is_404(client, editor):
    resp = post_event(client, editor, "DESMONTAJE", "2025-03-25")
    assert resp.status_code == 404


def test_viewer_cannot_create_events(client, make_user, panel):
    viewer = make_user("viewer", "user")
    assert post_event(client, viewer, "DESMONTAJE", "2025-03-25").status_code == 403


def test_intervention_adds_its_amount(client, editor, panel):
    resp = client.post(
        "/panel-events/intervencion",
        json={
            "panel_id": PANEL,
            "effective_date": "2025-03-27",
            "tipo_intervencion": "REPARACION",
            "concepto": "Cristal roto",
            "importe": 25.5,
        },
        headers=editor,
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["totals"]["total_importe_cents"] == 1382 + 2550
    # does not change the panel state
    assert resp.json()["totals"]["estado_al_cierre"] == "ACTIVO"


def test_zero_intervention_rejected(client, editor, panel):
    resp = client.post(
        "/panel-events/intervencion",
        json={
            "panel_id": PANEL,
            "effective_date": "2025-03-27",
            "tipo_intervencion": "OTRO",
            "concepto": "Nada",
            "importe": 0,
        },
        headers=editor,
    )
    assert resp.status_code == 422


def test_list_update_and_soft_delete(client, editor, panel):
    event_id = post_event(client, editor, "DESMONTAJE", "2025-03-25").json()["event_id"]

    listed = client.get("/panel-events", params={"filter": json.dumps({"panel_id": PANEL})}, headers=editor)
    assert listed.status_code == 200
    assert {e["action"] for e in listed.json()} == {"ALTA_INICIAL", "DESMONTAJE"}

    resp = client.patch(f"/panel-events/{event_id}", json={"motivo": "Obras municipales"}, headers=editor)
    assert resp.status_code == 200
    assert client.get(f"/panel-events/{event_id}", headers=editor).json()["motivo"] == "Obras municipales"

    assert client.patch(f"/panel-events/{event_id}", json={}, headers=editor).status_code == 422

    resp = client.delete(f"/panel-events/{event_id}", headers=editor)
    assert resp.status_code == 200
    # back to the registration-only month
    assert resp.json()["totals"]["total_importe_cents"] == 1382

    deleted = client.get(f"/panel-events/{event_id}", headers=editor).json()
    assert deleted["is_deleted"] is True
    assert deleted["deleted_by"] == "editor"

    assert client.delete(f"/panel-events/{event_id}", headers=editor).status_code == 412
    assert client.patch(f"/panel-events/{event_id}", json={"motivo": "x"}, headers=editor).status_code == 412

    hidden = client.get("/panel-events", params={"filter": json.dumps({"panel_id": PANEL})}, headers=editor)
    assert len(hidden.json()) == 1
    shown = client.get(
        "/panel-events",
        params={"filter": json.dumps({"panel_id": PANEL, "include_deleted": True})},
        headers=editor,
    )
    assert len(shown.json()) == 2


def test_bad_event_id_is_404(client, editor):
    assert client.delete("/panel-events/not-a-uuid", headers=editor).status_code == 404


def test_bulk_delete_for_a_panel_month(client, editor, panel):
    post_event(client, editor, "DESMONTAJE", "2025-03-25")
    resp = client.post("/panel-events/bulk-delete", json={"panel_id": PANEL, "month_key": "2025-03"}, headers=editor)
    assert resp.status_code == 200
    body = resp.json()
    assert body["deleted"] == 2
    # with no registration event left the panel is taken as active all month
    assert body["totals"]["total_dias_facturables"] == 30


class TestMonthLock:
    def test_locked_month_rejects_every_write(self, client, editor, panel, admin_headers):
        event_id = post_event(client, editor, "DESMONTAJE", "2025-03-25").json()["event_id"]
        resp = client.post("/months/2025-03/close", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["is_locked"] is True

        resp = post_event(client, editor, "DESMONTAJE", "2025-03-26")
        assert resp.status_code == 412
        assert resp.json()["code"] == "failed-precondition"
        assert client.patch(f"/panel-events/{event_id}", json={"motivo": "x"}, headers=editor).status_code == 412
        assert client.delete(f"/panel-events/{event_id}", headers=editor).status_code == 412
        assert client.post(
            "/panel-events/bulk-delete", json={"panel_id": PANEL, "month_key": "2025-03"}, headers=editor
        ).status_code == 412

        summary = client.get("/billing/summaries/2025-03", headers=admin_headers).json()
        assert summary["total_importe_mes_cents"] == 754
        assert summary["locked_by"] == "admin"

    def test_unlock_restores_writes(self, client, editor, panel, admin_headers):
        event_id = post_event(client, editor, "DESMONTAJE", "2025-03-25").json()["event_id"]
        client.post("/months/2025-03/close", headers=admin_headers)
        assert client.delete(f"/panel-events/{event_id}", headers=editor).status_code == 412

        resp = client.put("/months/2025-03/lock", json={"is_locked": False}, headers=admin_headers)
        assert resp.status_code == 200
        assert client.delete(f"/panel-events/{event_id}", headers=editor).status_code == 200

    def test_closing_twice_is_a_noop(self, client, panel, admin_headers):
        client.post("/months/2025-03/close", headers=admin_headers)
        resp = client.post("/months/2025-03/close", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["already_locked"] is True

    def test_other_months_stay_writable(self, client, editor, panel, admin_headers):
        client.post("/months/2025-03/close", headers=admin_headers)
        assert client.post("/months/2025-04/create", headers=admin_headers).status_code == 201
        assert post_event(client, editor, "DESMONTAJE", "2025-04-10").status_code == 201


async def _event_count(panel_id, month_key):
    return await PanelEvent.filter(panel_id=panel_id, month_key=month_key, is_deleted=False).count()


async def _event(event_id):
    return await PanelEvent.get(id=event_id)


class TestSnapshots:
    def test_rate_change_reprices_the_month(self, client, editor, panel):
        resp = post_event(client, editor, "CAMBIO_TARIFA", "2025-03-22", snapshot_after={"tarifaBaseMes": 40.0})
        assert resp.status_code == 201, resp.text
        totals = resp.json()["totals"]
        # 11 days at 40.00: 11 * 4000 / 30 = 1466.67
        assert totals["total_importe_cents"] == 1467
        assert totals["tarifa_aplicada"] == 40.0
        assert totals["estado_al_cierre"] == "ACTIVO"

    def test_manual_adjustment_is_added(self, client, editor, panel):
        resp = post_event(client, editor, "AJUSTE_MANUAL", "2025-03-22", snapshot_after={"importeAjuste": -2.5})
        assert resp.status_code == 201, resp.text
        assert resp.json()["totals"]["total_importe_cents"] == 1382 - 250

    def test_extra_snapshot_keys_are_stored(self, client, editor, panel, run):
        resp = post_event(
            client, editor, "CAMBIO_TARIFA", "2025-03-22",
            snapshot_before={"tarifaBaseMes": 37.7}, snapshot_after={"tarifaBaseMes": 40.0, "nota": "contrato"},
        )
        event = run(_event, resp.json()["event_id"])
        assert event.snapshot_after == {"tarifaBaseMes": 40.0, "nota": "contrato"}
        assert event.snapshot_before == {"tarifaBaseMes": 37.7}

    @pytest.mark.parametrize(
        "action, snapshot_after",
        [
            ("CAMBIO_TARIFA", {"tarifaBaseMes": "abc"}),
            ("CAMBIO_TARIFA", {"tarifaBaseMes": 0}),
            ("CAMBIO_TARIFA", {"tarifaBaseMes": -5}),
            ("CAMBIO_TARIFA", {"tarifaBaseMes": [40]}),
            ("CAMBIO_TARIFA", {"tarifaBaseMes": True}),
            ("AJUSTE_MANUAL", {"importeAjuste": "abc"}),
            ("AJUSTE_MANUAL", {"importeAjuste": False}),
        ],
    )
    def test_bad_amounts_rejected_and_nothing_saved(self, client, editor, panel, run, action, snapshot_after):
        resp = post_event(client, editor, action, "2025-03-22", snapshot_after=snapshot_after)
        assert resp.status_code == 422
        assert run(_event_count, PANEL, "2025-03") == 1

        # the month is still usable afterwards
        resp = post_event(client, editor, "DESMONTAJE", "2025-03-25")
        assert resp.status_code == 201
        assert resp.json()["totals"]["total_importe_cents"] == 754

    def test_nan_amount_rejected(self, client, editor, panel, run):
        body = (
            '{"panel_id": "Madrid_P-1", "action": "AJUSTE_MANUAL", "effective_date": "2025-03-22", '
            '"snapshot_after": {"importeAjuste": NaN}}'
        )
        resp = client.post("/panel-events", content=body, headers={**editor, "Content-Type": "application/json"})
        assert resp.status_code == 422
        assert run(_event_count, PANEL, "2025-03") == 1

    @pytest.mark.parametrize(
        "action, snapshot_after",
        [
            ("CAMBIO_TARIFA", {"tarifaBaseMes": "abc"}),
            ("CAMBIO_TARIFA", {"tarifaBaseMes": 0}),
            ("AJUSTE_MANUAL", {"importeAjuste": float("nan")}),
            ("AJUSTE_MANUAL", {"importeAjuste": "Infinity"}),
            ("AJUSTE_MANUAL", {"importeAjuste": True}),
        ],
    )
    def test_service_rejects_bad_amounts_before_saving(self, panel, run, action, snapshot_after):
        with pytest.raises(InvalidArgumentError):
            run(request_panel_change, PANEL, action, date(2025, 3, 22), snapshot_after=snapshot_after)
        assert run(_event_count, PANEL, "2025-03") == 1

    def test_patch_with_bad_snapshot_rejected(self, client, editor, panel, run):
        event_id = post_event(
            client, editor, "CAMBIO_TARIFA", "2025-03-22", snapshot_after={"tarifaBaseMes": 40.0}
        ).json()["event_id"]
        resp = client.patch(
            f"/panel-events/{event_id}", json={"snapshot_after": {"tarifaBaseMes": "abc"}}, headers=editor
        )
        assert resp.status_code == 422
        assert run(_event, event_id).snapshot_after == {"tarifaBaseMes": 40.0}


class TestEventWritesAreAtomic:
    def test_year_without_rate_saves_nothing(self, client, editor, create_panel, run):
        # 2026 has a rate, 2027 does not; January inherits December's rate
        create_panel("P-9", "2026-12-01")
        resp = client.post(
            "/panel-events",
            json={"panel_id": "Madrid_P-9", "action": "DESMONTAJE", "effective_date": "2027-01-05"},
            headers=editor,
        )
        assert resp.status_code == 412
        assert resp.json()["code"] == "failed-precondition"
        assert run(_event_count, "Madrid_P-9", "2027-01") == 0

        resp = client.post(
            "/panel-events/intervencion",
            json={
                "panel_id": "Madrid_P-9",
                "effective_date": "2027-01-05",
                "tipo_intervencion": "REPARACION",
                "concepto": "Cristal roto",
                "importe": 25.5,
            },
            headers=editor,
        )
        assert resp.status_code == 412
        assert run(_event_count, "Madrid_P-9", "2027-01") == 0

    def test_failed_rebuild_rolls_back_the_event(self, panel, run, monkeypatch):
        async def failing_rebuild(panel_id, month_key, **kwargs):
            raise RateNotConfiguredError("no rate")

        monkeypatch.setattr(panel_events, "recalculate_panel_month", failing_rebuild)
        with pytest.raises(RateNotConfiguredError):
            run(request_panel_change, PANEL, "DESMONTAJE", date(2025, 3, 25))
        assert run(_event_count, PANEL, "2025-03") == 1


class TestAdjustmentUpdates:
    def _intervention(self, client, headers):
        resp = client.post(
            "/panel-events/intervencion",
            json={
                "panel_id": PANEL,
                "effective_date": "2025-03-27",
                "tipo_intervencion": "REPARACION",
                "concepto": "Cristal roto",
                "importe": 25.5,
            },
            headers=headers,
        )
        assert resp.json()["totals"]["total_importe_cents"] == 1382 + 2550
        return resp.json()["event_id"]

    def test_importe_drives_the_adjustment(self, client, editor, panel, run):
        event_id = self._intervention(client, editor)

        resp = client.patch(f"/panel-events/{event_id}", json={"importe": 10}, headers=editor)
        assert resp.status_code == 200, resp.text
        assert resp.json()["totals"]["total_importe_cents"] == 1382 + 1000
        event = run(_event, event_id)
        assert event.importe_cents == 1000
        assert event.snapshot_after["importeAjuste"] == 10.0
        assert event.snapshot_after["codigo"] == "P-1"

        # credits are allowed on adjustments
        resp = client.patch(f"/panel-events/{event_id}", json={"importe": -5}, headers=editor)
        assert resp.status_code == 200, resp.text
        assert resp.json()["totals"]["total_importe_cents"] == 1382 - 500

    def test_snapshot_amount_drives_importe(self, client, editor, panel, run):
        event_id = self._intervention(client, editor)
        resp = client.patch(
            f"/panel-events/{event_id}", json={"snapshot_after": {"importeAjuste": 3.0}}, headers=editor
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["totals"]["total_importe_cents"] == 1382 + 300
        assert run(_event, event_id).importe_cents == 300

    def test_negative_importe_only_for_adjustments(self, client, editor, panel):
        event_id = post_event(client, editor, "DESMONTAJE", "2025-03-25").json()["event_id"]
        resp = client.patch(f"/panel-events/{event_id}", json={"importe": -5}, headers=editor)
        assert resp.status_code == 422
        assert resp.json()["code"] == "invalid-argument"
