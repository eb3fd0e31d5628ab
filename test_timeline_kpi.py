# test_timeline_kpi.py
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from swms.errors import NotFoundError, ValidationError
from swms.models import Anomaly, AnomalyType, InventorySnapshot
from swms.schemas.events import ProcessEventIn
from swms.schemas.generations import GenerationIn, GenerationUpdate
from swms.schemas.weighings import WeighingIn
from swms.services import generation, kpi, recorder, timeline, weighing
from swms.util.timeutil import today


def _event(reference, flow_id, src, dst, at, qty="1", warehouse=None):
    return ProcessEventIn(site_id=reference.site, flow_id=flow_id, from_stage=src, to_stage=dst,
                          quantity=Decimal(qty), occurred_at=at, warehouse_id=warehouse)


# ===== Timeline =====
def test_append_event_enforces_pipeline_order(db, reference, day_at):
    flow = timeline.create_flow(db, reference.site, reference.copper)
    timeline.append_event(db, _event(reference, flow.id, "OUTBOUND", "SETTLEMENT_PENDING", day_at()))
    with pytest.raises(ValidationError):
        timeline.append_event(db, _event(reference, flow.id, "INBOUND", "STORAGE", day_at()))
    with pytest.raises(ValidationError):
        timeline.append_event(db, _event(reference, flow.id, "INBOUND", "SORT", day_at(), qty="-1"))


def test_sort_dwell_joins_on_flow(db, reference, day_at):
    slow = timeline.create_flow(db, reference.site)
    fast = timeline.create_flow(db, reference.site)
    timeline.append_event(db, _event(reference, slow.id, "INBOUND", "SORT", day_at(3, 0)))
    timeline.append_event(db, _event(reference, slow.id, "SORT", "STORAGE", day_at(2, 6)))    # 30h
    timeline.append_event(db, _event(reference, fast.id, "INBOUND", "SORT", day_at(3, 0)))
    timeline.append_event(db, _event(reference, fast.id, "SORT", "STORAGE", day_at(3, 2)))    # 2h

    assert timeline.dwell_hours(db, slow.id) == pytest.approx(30.0)
    stats = timeline.sort_dwell_stats(db, reference.site, 30, threshold_hours=12)
    assert stats["samples"] == 2
    assert stats["avgHours"] == pytest.approx(16.0)
    assert stats["p90Hours"] == pytest.approx(30.0)
    assert stats["isBottleneck"] is True


def test_dwell_without_pair_is_none(db, reference, day_at):
    flow = timeline.create_flow(db, reference.site)
    timeline.append_event(db, _event(reference, flow.id, "INBOUND", "SORT", day_at()))
    assert timeline.dwell_hours(db, flow.id) is None
    stats = timeline.sort_dwell_stats(db, reference.site, 30)
    assert stats["samples"] == 0 and stats["avgHours"] is None and stats["isBottleneck"] is False


def test_percentile_disc():
    assert timeline.percentile_disc([], 0.9) is None
    assert timeline.percentile_disc([float(i) for i in range(10, 0, -1)], 0.9) == 9.0
    assert timeline.percentile_disc([4.0], 0.9) == 4.0


def test_flow_links_drop_zero_values(db, reference, day_at):
    flow = timeline.create_flow(db, reference.site)
    timeline.append_event(db, _event(reference, flow.id, "INBOUND", "SORT", day_at(), qty="5"))
    timeline.append_event(db, _event(reference, flow.id, "SORT", "STORAGE", day_at(), qty="4", warehouse=reference.yard))
    timeline.append_event(db, _event(reference, flow.id, "STORAGE", "OUTBOUND", day_at(), qty="0"))

    graph = timeline.flow_links(db, reference.site, 30)
    assert {n["name"] for n in graph["nodes"]} == {"입고", "선별", "보관:Yard A"}
    assert sorted(l["value"] for l in graph["links"]) == [4.0, 5.0]


@pytest.mark.parametrize("mode,suffix", [
    ("status", ""), ("category", "(SCRAP/A)"), ("material", "(Copper/A)"), ("bogus", ""),
])
def test_sankey_mode_splits_nodes(db, reference, day_at, mode, suffix):
    flow = timeline.create_flow(db, reference.site, reference.copper)
    ev = _event(reference, flow.id, "INBOUND", "SORT", day_at(), qty="5")
    timeline.append_event(db, ev.model_copy(update={"material_type_id": reference.copper}))
    timeline.append_event(db, _event(reference, flow.id, "INBOUND", "SORT", day_at(), qty="2"))

    chart = kpi.sankey(db, reference.site, 30, mode=mode)
    assert chart["mode"] == ("status" if mode == "bogus" else mode)
    names = {n["name"] for n in chart["nodes"]}
    if suffix:
        # the event without a material lands in its own bucket
        assert f"입고{suffix}" in names and f"선별{suffix}" in names
        assert len(names) == 4
    else:
        assert names == {"입고", "선별"}
        assert [l["value"] for l in chart["links"]] == [7.0]


# ===== KPI helpers =====
def test_pct_change_guard():
    assert kpi.pct_change(12, 10) == 20.0
    assert kpi.pct_change(Decimal("12.000"), Decimal("10.000")) == 20.0
    assert kpi.pct_change(5, 0) is None


@pytest.mark.parametrize("raw,expected", [
    (None, 30), ("abc", 30), ("0", 1), ("-5", 1), ("1000", 365), ("7", 7), ("7.9", 7), ("nan", 30), ("inf", 30),
])
def test_clamp_int(raw, expected):
    assert kpi.clamp_int(raw, 1, 365, 30) == expected


def test_aging_labels():
    assert kpi.aging_labels([30, 60, 90]) == ["0-30", "31-60", "61-90", "90+"]


# ===== KPI read models =====
def test_kpi_day_over_day(db, reference, tx, day_at):
    recorder.create_outbound(db, tx(10, created_at=day_at(1)))
    recorder.create_outbound(db, tx(12, created_at=day_at(0)))
    recorder.create_inbound(db, tx(4, created_at=day_at(0)))

    k = kpi.kpi(db, reference.site, today())
    assert k["flow"]["outboundQty"] == 12.0
    assert k["flow"]["outboundDeltaPct"] == 20.0
    assert k["flow"]["inboundQty"] == 4.0
    assert k["flow"]["inboundDeltaPct"] is None
    assert k["inventory"]["totalQty"] == -18.0
    assert k["anomalies"]["openCritical"] == 1


def test_kpi_month_sales_and_backlog(db, reference, tx, day_at):
    recorder.create_inbound(db, tx(10))
    recorder.create_outbound(db, tx(1, unit_price=Decimal("100"), created_at=day_at(0)))
    approved = recorder.create_outbound(db, tx(2, unit_price=Decimal("100"), created_at=day_at(0)))
    recorder.approve_outbound(db, approved.id)

    k = kpi.kpi(db, reference.site, today())
    assert k["sales"]["expected"] == 300.0
    assert k["sales"]["confirmed"] == 0.0
    assert k["settlement"] == {"pendingCount": 1, "pendingAmount": 200.0}


def test_outbound_by_hour_zero_filled(db, reference, tx, day_at):
    assert [h["hour"] for h in kpi.outbound_by_hour(db, reference.site, today())] == [f"{i:02d}" for i in range(24)]

    recorder.create_outbound(db, tx(3, created_at=day_at(0, 9, 30)))
    recorder.create_outbound(db, tx(2, created_at=day_at(0, 9, 10)))
    recorder.create_outbound(db, tx(7, created_at=day_at(1, 9, 0)))
    hours = kpi.outbound_by_hour(db, reference.site, today())
    assert len(hours) == 24
    assert hours[9] == {"hour": "09", "quantity": 5.0}
    assert sum(h["quantity"] for h in hours) == 5.0


def test_price_margin_has_period_plus_one_days(db, reference, tx, day_at):
    recorder.create_outbound(db, tx(1, unit_price=Decimal("1200"), created_at=day_at(0)))
    series = kpi.price_margin(db, reference.site, 7)
    assert len(series) == 8
    assert series[-1]["date"] == today().isoformat()
    assert series[-1]["avgPrice"] == 1200.0
    assert series[-1]["avgMargin"] == 200.0
    assert series[0] == {"date": (today() - timedelta(days=7)).isoformat(), "avgPrice": 0.0, "avgMargin": 0.0}


def test_portfolio_always_has_both_types(db, reference, tx):
    assert kpi.portfolio(db, reference.site, 30) == [{"type": "SCRAP", "quantity": 0.0},
                                                     {"type": "WASTE", "quantity": 0.0}]
    recorder.create_outbound(db, tx(4))
    recorder.create_outbound(db, tx(1, material_type_id=reference.sludge))
    assert kpi.portfolio(db, reference.site, 30) == [{"type": "SCRAP", "quantity": 4.0},
                                                     {"type": "WASTE", "quantity": 1.0}]


def test_flow_funnel_stages(db, reference, tx):
    recorder.create_inbound(db, tx(10))
    recorder.create_outbound(db, tx(4))
    stages = kpi.flow_funnel(db, reference.site, 30)
    assert [s["quantity"] for s in stages] == [10.0, 6.0, 4.0, 0.0]


def test_inventory_heatmap_defaults_grade(db, reference, tx):
    recorder.create_inbound(db, tx(3))
    recorder.create_inbound(db, tx(5, grade="B"))
    recorder.create_inbound(db, tx(5, material_type_id=reference.sludge))
    cells = kpi.inventory_heatmap(db, reference.site, 2)
    assert cells == [{"material": "Copper", "grade": "B", "quantity": 5.0},
                     {"material": "Sludge", "grade": "A", "quantity": 5.0}]


def test_zone_heatmap_fill_rate_and_age(db, reference, tx, day_at):
    recorder.create_inbound(db, tx(10, created_at=day_at(12)))
    zones = {z["warehouseName"]: z for z in kpi.zone_heatmap(db, reference.site)["zones"]}
    assert zones["Yard A"]["fillRatePct"] == 10.0
    assert zones["Yard A"]["maxAgeDays"] == 12
    assert zones["Shed B"]["fillRatePct"] is None
    assert zones["Shed B"]["maxAgeDays"] is None


def test_inventory_aging_buckets(db, reference, tx, day_at):
    empty = kpi.inventory_aging(db, reference.site)
    assert [b["bucket"] for b in empty] == ["0-30", "31-60", "61-90", "90+"]
    assert all(b["quantity"] == 0.0 for b in empty)

    recorder.create_inbound(db, tx(1, created_at=day_at(0)))
    recorder.create_inbound(db, tx(2, created_at=day_at(45)))
    recorder.create_inbound(db, tx(4, created_at=day_at(120)))
    assert [b["quantity"] for b in kpi.inventory_aging(db, reference.site)] == [1.0, 2.0, 0.0, 4.0]


def test_work_queue_lists_pending_and_drafts(db, reference, tx, day_at):
    recorder.create_inbound(db, tx(1, status="PENDING", created_at=day_at(0)))
    recorder.create_outbound(db, tx(1, vendor_id=reference.buyer, created_at=day_at(0)))
    recorder.create_outbound(db, tx(1, created_at=day_at(1)))
    q = kpi.work_queue(db, reference.site, today())
    assert len(q["outboundPlanned"]) == 1
    assert q["outboundPlanned"][0]["vendor_name"] == "Hanil Metal"
    assert q["outboundPlanned"][0]["material_name"] == "Copper"
    assert len(q["inspectionWaiting"]) == 1
    assert q["settlementWaiting"] == []


def test_risk_counts(db, reference, tx):
    recorder.create_outbound(db, tx(1))
    r = kpi.risk(db, reference.site, 30)
    assert r["negativeInventoryCount"] == 1
    assert r["anomalies"] == {"total": 1, "critical": 1, "warn": 0}


# ===== Weighing =====
def _weigh(reference, gross, tare="0", vehicle="12가3456", direction="OUT", at=None):
    return WeighingIn(site_id=reference.site, vehicle_number=vehicle, gross_weight=Decimal(gross),
                      tare_weight=Decimal(tare), direction=direction, weighed_at=at)


def _flagged(db):
    return [a.entity_id for a in db.scalars(select(Anomaly).where(Anomaly.anomaly_type == AnomalyType.WEIGHING_DEVIATION))]


def test_weighing_net_and_deviation(db, reference, day_at):
    first = weighing.record_weighing(db, _weigh(reference, "25", "15", at=day_at(3)))
    assert Decimal(str(first.net_weight)) == Decimal("10")
    weighing.record_weighing(db, _weigh(reference, "10", at=day_at(2)))
    assert db.scalars(select(Anomaly)).all() == []

    odd = weighing.record_weighing(db, _weigh(reference, "15", at=day_at(1)))
    assert _flagged(db) == [odd.id]


def test_weighing_baseline_is_earlier_same_direction(db, reference, day_at):
    # heavy inbound loads and later outliers are not part of the baseline
    weighing.record_weighing(db, _weigh(reference, "40", direction="IN", at=day_at(4)))
    weighing.record_weighing(db, _weigh(reference, "10", at=day_at(3)))
    weighing.record_weighing(db, _weigh(reference, "90", at=day_at(1)))
    late_entry = weighing.record_weighing(db, _weigh(reference, "11", at=day_at(2)))
    assert late_entry.id not in _flagged(db)


def test_weighing_update_recomputes_and_rechecks(db, reference, day_at):
    weighing.record_weighing(db, _weigh(reference, "10", at=day_at(2)))
    w = weighing.record_weighing(db, _weigh(reference, "11", at=day_at(1)))
    assert _flagged(db) == []

    updated = weighing.update_weighing(db, w.id, _weigh(reference, "30", "5", at=day_at(1)))
    assert Decimal(str(updated.net_weight)) == Decimal("25")
    assert _flagged(db) == [w.id]

    weighing.delete_weighing(db, w.id)
    assert w.id not in [x.id for x in weighing.list_weighings(db, reference.site)]
    with pytest.raises(NotFoundError):
        weighing.delete_weighing(db, w.id)


def test_weighing_rejects_tare_over_gross(db, reference):
    with pytest.raises(ValidationError):
        weighing.record_weighing(db, _weigh(reference, "5", "6"))
    with pytest.raises(ValidationError):
        weighing.record_weighing(db, _weigh(reference, "5.0001"))


# ===== Generation log =====
def test_generation_crud(db, reference):
    g = generation.create_generation(db, GenerationIn(site_id=reference.site, material_type_id=reference.sludge,
                                                      process_name="도장", quantity=Decimal("1.5")), actor="kim")
    assert g.generation_date == today()
    assert g.unit == "톤"
    assert g.created_by == "kim"

    changed = generation.update_generation(db, g.id, GenerationUpdate(quantity=Decimal("2"), notes="re-measured"))
    assert Decimal(str(changed.quantity)) == Decimal("2")
    assert changed.process_name == "도장"
    assert [x.id for x in generation.list_generations(db, reference.site)] == [g.id]
    # generation is informational only
    assert db.scalars(select(InventorySnapshot)).all() == []

    with pytest.raises(ValidationError):
        generation.update_generation(db, g.id, GenerationUpdate(quantity=None))
    generation.delete_generation(db, g.id)
    assert generation.list_generations(db) == []
    with pytest.raises(NotFoundError):
        generation.update_generation(db, g.id, GenerationUpdate(notes="x"))


def test_generation_requires_positive_quantity(db, reference):
    with pytest.raises(ValidationError):
        generation.create_generation(db, GenerationIn(site_id=reference.site, quantity=Decimal("0")))
