# test_inventory_ledger.py
from decimal import Decimal
from itertools import permutations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from swms.errors import IdempotencyConflictError, NotFoundError, TransactionFailure, ValidationError
from swms.models import (
    Anomaly, AnomalyType, Flow, InboundTransaction, InventorySnapshot, Severity, TxStatus,
)
from swms.schemas.transactions import AdjustmentIn
from swms.services import inventory, recorder
from swms.services.inventory import Applied, SnapshotKey, Skipped


def _key(reference, grade=""):
    return SnapshotKey(reference.site, reference.yard, reference.copper, grade)


def _qty(db, key):
    return inventory.snapshot_quantity(db, key)


# ===== Accumulator guard =====
def test_apply_delta_skips_missing_key_without_creating_a_row(db, reference):
    res = inventory.apply_delta(db, reference.site, None, reference.copper, None, Decimal("5"))
    db.commit()
    assert isinstance(res, Skipped) and not res.applied
    assert res.reason == inventory.SKIP_MISSING_KEY
    assert db.scalar(select(func.count(InventorySnapshot.id))) == 0


def test_apply_delta_skips_zero_delta(db, reference):
    res = inventory.apply_delta(db, reference.site, reference.yard, reference.copper, None, 0)
    db.commit()
    assert isinstance(res, Skipped)
    assert res.reason == inventory.SKIP_ZERO_DELTA
    assert _qty(db, _key(reference)) is None


def test_apply_delta_accumulates_and_allows_negative(db, reference):
    first = inventory.apply_delta(db, reference.site, reference.yard, reference.copper, None, Decimal("3"))
    inventory.apply_delta(db, reference.site, reference.yard, reference.copper, "", Decimal("-5"))
    db.commit()
    assert isinstance(first, Applied) and first.key == _key(reference)
    # None and "" grade are the same key
    assert db.scalar(select(func.count(InventorySnapshot.id))) == 1
    assert _qty(db, _key(reference)) == Decimal("-2")


# ===== Recorder + reversal =====
def test_inbound_outbound_delete_scenario_keeps_zero_row(db, reference, tx):
    inb = recorder.create_inbound(db, tx(10))
    assert _qty(db, _key(reference)) == Decimal("10")

    out = recorder.create_outbound(db, tx(4))
    assert _qty(db, _key(reference)) == Decimal("6")

    recorder.delete_outbound(db, out.id)
    assert _qty(db, _key(reference)) == Decimal("10")

    recorder.delete_inbound(db, inb.id)
    snap = inventory.get_snapshot(db, _key(reference))
    assert snap is not None, "snapshot row must persist at zero"
    assert Decimal(str(snap.quantity)) == 0
    assert inventory.reconcile(db) == []


def test_reversal_is_order_independent(db, reference, tx):
    a = recorder.create_inbound(db, tx(5))
    b = recorder.create_inbound(db, tx(3))
    c = recorder.create_outbound(db, tx(2))
    recorder.create_inbound(db, tx(7, grade="B"))

    recorder.delete_inbound(db, b.id)
    assert _qty(db, _key(reference)) == Decimal("3")   # as if only a and c happened
    recorder.delete_inbound(db, a.id)
    recorder.delete_outbound(db, c.id)
    assert _qty(db, _key(reference)) == Decimal("0")
    assert _qty(db, _key(reference, "B")) == Decimal("7")
    assert inventory.reconcile(db) == []


def test_final_quantity_is_the_same_for_every_order(db, reference, tx):
    def adjust(grade):
        return AdjustmentIn(site_id=reference.site, warehouse_id=reference.yard, material_type_id=reference.copper,
                            grade=grade, quantity=Decimal("-1"), adjustment_type="LOSS")

    steps = ("inbound", "outbound", "adjustment", "delete")
    for i, order in enumerate(permutations(steps)):
        grade = f"P{i}"
        earlier = recorder.create_inbound(db, tx(4, grade=grade))
        for step in order:
            if step == "inbound":
                recorder.create_inbound(db, tx(5, grade=grade))
            elif step == "outbound":
                recorder.create_outbound(db, tx(2, grade=grade))
            elif step == "adjustment":
                recorder.create_adjustment(db, adjust(grade))
            else:
                recorder.delete_inbound(db, earlier.id)
        assert _qty(db, _key(reference, grade)) == Decimal("2"), order
    assert inventory.reconcile(db) == []


def test_reconcile_reports_drift(db, reference, tx):
    recorder.create_inbound(db, tx(4))
    # out-of-band write that bypasses the ledger
    inventory.apply_delta(db, reference.site, reference.yard, reference.copper, None, Decimal("1"))
    db.commit()
    drifts = inventory.reconcile(db, reference.site)
    assert len(drifts) == 1
    assert drifts[0].expected == Decimal("4")
    assert drifts[0].difference == Decimal("1")


def test_total_amount_and_default_statuses(db, reference, tx):
    inb = recorder.create_inbound(db, tx(Decimal("2.5"), unit_price=Decimal("1000")), actor="kim")
    out = recorder.create_outbound(db, tx(1))
    assert Decimal(str(inb.total_amount)) == Decimal("2500.00")
    assert Decimal(str(out.total_amount)) == 0
    assert inb.status == TxStatus.CONFIRMED
    assert out.status == TxStatus.PENDING
    assert inb.created_by == "kim"


def test_inbound_opens_a_flow_unless_given(db, reference, tx):
    inb = recorder.create_inbound(db, tx(1))
    assert inb.flow_id is not None
    again = recorder.create_inbound(db, tx(1, flow_id=inb.flow_id))
    assert again.flow_id == inb.flow_id
    assert db.scalar(select(func.count(Flow.id))) == 1


@pytest.mark.parametrize("override", [
    {"warehouse_id": None},
    {"site_id": "  "},
    {"material_type_id": None},
    {"quantity": None},
    {"quantity": Decimal("0")},
    {"quantity": Decimal("-1")},
    {"quantity": Decimal("0.0001")},
    {"unit_price": Decimal("1.005")},
])
def test_create_rejects_invalid_input(db, reference, tx, override):
    with pytest.raises(ValidationError):
        recorder.create_inbound(db, tx(**{"quantity": 1, **override}))
    assert db.scalar(select(func.count(InboundTransaction.id))) == 0


def test_delete_missing_transaction_is_not_found(db, reference):
    with pytest.raises(NotFoundError):
        recorder.delete_outbound(db, "does-not-exist")


def test_persistence_failure_rolls_back_row_and_delta(db, reference, tx, monkeypatch):
    def boom(*a, **kw):
        raise SQLAlchemyError("disk full")
    monkeypatch.setattr(recorder, "apply_delta", boom)

    with pytest.raises(TransactionFailure):
        recorder.create_inbound(db, tx(10))
    assert db.scalar(select(func.count(InboundTransaction.id))) == 0
    assert db.scalar(select(func.count(Flow.id))) == 0
    assert _qty(db, _key(reference)) is None


# ===== Idempotency =====
def test_idempotent_replay_applies_delta_once(db, reference, tx):
    first = recorder.create_inbound(db, tx(10, idempotency_key="k-1"))
    second = recorder.create_inbound(db, tx(10, idempotency_key="k-1"))
    assert first.id == second.id
    assert _qty(db, _key(reference)) == Decimal("10")


def test_idempotency_key_reused_for_other_payload_conflicts(db, reference, tx):
    recorder.create_inbound(db, tx(10, idempotency_key="k-2"))
    with pytest.raises(IdempotencyConflictError):
        recorder.create_inbound(db, tx(11, idempotency_key="k-2"))
    assert _qty(db, _key(reference)) == Decimal("10")


@pytest.mark.parametrize("field", ["unit_price", "vendor_id", "project_id", "status"])
def test_idempotency_key_conflicts_on_any_changed_field(db, reference, tx, field):
    changed = {"unit_price": Decimal("999"), "vendor_id": reference.buyer, "project_id": "P-2",
               "status": "PENDING"}[field]
    first = recorder.create_inbound(db, tx(10, unit_price=Decimal("100"), idempotency_key="k-3"))
    with pytest.raises(IdempotencyConflictError):
        recorder.create_inbound(db, tx(10, **{"unit_price": Decimal("100"), "idempotency_key": "k-3",
                                              field: changed}))
    # an omitted flow_id replays onto the flow the first call opened
    again = recorder.create_inbound(db, tx(10, unit_price=Decimal("100.00"), idempotency_key="k-3"))
    assert again.id == first.id
    assert Decimal(str(again.total_amount)) == Decimal("1000.00")


def test_adjustment_idempotency_compares_reason(db, reference):
    def adj(reason):
        return AdjustmentIn(site_id=reference.site, warehouse_id=reference.yard, material_type_id=reference.copper,
                            quantity=Decimal("3"), reason=reason, idempotency_key="adj-1")

    first = recorder.create_adjustment(db, adj("stocktake"))
    assert recorder.create_adjustment(db, adj("stocktake")).id == first.id
    with pytest.raises(IdempotencyConflictError):
        recorder.create_adjustment(db, adj("found on yard"))
    assert _qty(db, _key(reference)) == Decimal("3")


def test_quantity_finer_than_column_scale_is_rejected(db, reference, tx):
    with pytest.raises(ValidationError):
        recorder.create_inbound(db, tx(Decimal("0.0001")))
    with pytest.raises(ValidationError):
        recorder.create_adjustment(db, AdjustmentIn(site_id=reference.site, warehouse_id=reference.yard,
                                                    material_type_id=reference.copper, quantity=Decimal("-0.0004")))
    assert db.scalar(select(func.count(InventorySnapshot.id))) == 0

    ok = recorder.create_inbound(db, tx(Decimal("0.125")))
    assert Decimal(str(ok.quantity)) == Decimal("0.125")


# ===== Adjustments & approval =====
def test_adjustment_applies_signed_delta(db, reference, tx):
    recorder.create_inbound(db, tx(10))
    adj = recorder.create_adjustment(db, AdjustmentIn(site_id=reference.site, warehouse_id=reference.yard,
                                                      material_type_id=reference.copper, quantity=Decimal("-2"),
                                                      reason="stocktake", adjustment_type="LOSS"))
    assert adj.adjustment_date is not None
    assert _qty(db, _key(reference)) == Decimal("8")
    assert inventory.reconcile(db) == []


def test_zero_adjustment_rejected(db, reference):
    with pytest.raises(ValidationError):
        recorder.create_adjustment(db, AdjustmentIn(site_id=reference.site, warehouse_id=reference.yard,
                                                    material_type_id=reference.copper, quantity=Decimal("0")))


def test_approve_outbound_only_from_pending(db, reference, tx):
    recorder.create_inbound(db, tx(5))
    out = recorder.create_outbound(db, tx(2))
    approved = recorder.approve_outbound(db, out.id)
    assert approved.status == TxStatus.APPROVED
    assert _qty(db, _key(reference)) == Decimal("3")   # approval has no inventory effect
    with pytest.raises(ValidationError):
        recorder.approve_outbound(db, out.id)


# ===== Negative inventory =====
def test_oversized_outbound_succeeds_and_flags_once(db, reference, tx):
    recorder.create_inbound(db, tx(2))
    recorder.create_outbound(db, tx(5))
    assert _qty(db, _key(reference)) == Decimal("-3")

    anomalies = list(db.scalars(select(Anomaly)))
    assert len(anomalies) == 1
    assert anomalies[0].anomaly_type == AnomalyType.NEGATIVE_INVENTORY
    assert anomalies[0].severity == Severity.CRITICAL

    recorder.create_outbound(db, tx(1))
    assert db.scalar(select(func.count(Anomaly.id))) == 1


def test_failing_anomaly_check_does_not_block_write(db, reference, tx, monkeypatch):
    from swms.services import anomaly

    def broken(db, key):
        raise RuntimeError("rule crashed")
    monkeypatch.setattr(anomaly, "check_snapshot", broken)

    out = recorder.create_outbound(db, tx(5))
    assert out.id
    assert _qty(db, _key(reference)) == Decimal("-5")
