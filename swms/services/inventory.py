"""
Inventory accumulator and reversal.

The snapshot for a (site, warehouse, material, grade) key is a running sum of
every delta ever applied to it. Deltas are applied with one store-level
``quantity = quantity + :delta`` upsert, so concurrent writers on the same key
serialize on the row lock and never lose an update, while writers on other
keys don't contend at all.

Invariant: for every key,

    snapshot.quantity == Σ inbound.quantity − Σ outbound.quantity + Σ adjustment.quantity

``reconcile`` checks exactly that. A negative quantity is legal (physical
movement and recording can be skewed in time); it is flagged by the anomaly
detector, never clamped or rejected here.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from swms.logging_config import get_logger
from swms.models.common import utcnow
from swms.models.core import (
    InboundTransaction, OutboundTransaction, InventoryAdjustment, InventorySnapshot,
)

logger = get_logger("inventory")

SKIP_MISSING_KEY = "missing_key"
SKIP_ZERO_DELTA = "zero_delta"


def normalize_grade(grade: str | None) -> str:
    return (grade or "").strip()


def to_decimal(v) -> Decimal:
    if v is None:
        return Decimal("0")
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


@dataclass(frozen=True)
class SnapshotKey:
    site_id: str
    warehouse_id: str
    material_type_id: str
    grade: str = ""

    @classmethod
    def of(cls, obj) -> "SnapshotKey":
        return cls(obj.site_id, obj.warehouse_id, obj.material_type_id, normalize_grade(obj.grade))


@dataclass(frozen=True)
class Applied:
    key: SnapshotKey
    delta: Decimal
    applied: bool = True


@dataclass(frozen=True)
class Skipped:
    reason: str
    delta: Decimal
    applied: bool = False


DeltaResult = Union[Applied, Skipped]


def apply_delta(db: Session, site_id: str | None, warehouse_id: str | None,
                material_type_id: str | None, grade: str | None, delta) -> DeltaResult:
    """
    Add ``delta`` to the snapshot for the key, creating the row on first use.

    Runs inside the caller's transaction and never commits. A call with a
    missing key component or a zero delta is a no-op that returns ``Skipped``;
    no row is created and nothing is raised.
    """
    delta = to_decimal(delta)
    if not (site_id and warehouse_id and material_type_id):
        logger.info("delta_skipped", extra={"reason": SKIP_MISSING_KEY, "site_id": site_id,
                                            "warehouse_id": warehouse_id, "material_type_id": material_type_id})
        return Skipped(SKIP_MISSING_KEY, delta)
    if delta == 0:
        logger.debug("delta_skipped", extra={"reason": SKIP_ZERO_DELTA, "site_id": site_id})
        return Skipped(SKIP_ZERO_DELTA, delta)

    key = SnapshotKey(site_id, warehouse_id, material_type_id, normalize_grade(grade))
    _increment(db, key, delta)
    logger.debug("delta_applied", extra={"site_id": key.site_id, "warehouse_id": key.warehouse_id,
                                         "material_type_id": key.material_type_id, "grade": key.grade,
                                         "delta": delta})
    return Applied(key, delta)


def _increment(db: Session, key: SnapshotKey, delta: Decimal) -> None:
    t = InventorySnapshot.__table__
    now = utcnow()
    values = dict(id=str(uuid.uuid4()), site_id=key.site_id, warehouse_id=key.warehouse_id,
                  material_type_id=key.material_type_id, grade=key.grade, quantity=delta,
                  last_updated_at=now)
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        ins = (pg_insert if dialect == "postgresql" else sqlite_insert)(t).values(**values)
        stmt = ins.on_conflict_do_update(
            index_elements=[t.c.site_id, t.c.warehouse_id, t.c.material_type_id, t.c.grade],
            set_={"quantity": t.c.quantity + ins.excluded.quantity,
                  "last_updated_at": ins.excluded.last_updated_at},
        )
        db.execute(stmt)
        return

    # generic path: atomic increment first, insert only if the key was new
    res = db.execute(
        update(t)
        .where(t.c.site_id == key.site_id, t.c.warehouse_id == key.warehouse_id,
               t.c.material_type_id == key.material_type_id, t.c.grade == key.grade)
        .values(quantity=t.c.quantity + delta, last_updated_at=now)
    )
    if res.rowcount == 0:
        db.execute(insert(t).values(**values))


# ── Reversal ────────────────────────────────────────────────────────────────
def delta_for(row) -> Decimal:
    """The signed delta a ledger row contributed when it was recorded."""
    q = to_decimal(row.quantity)
    if isinstance(row, OutboundTransaction):
        return -q
    return q


def reverse_delta(db: Session, row) -> DeltaResult:
    """Apply the additive inverse of ``row``'s original delta."""
    return apply_delta(db, row.site_id, row.warehouse_id, row.material_type_id, row.grade, -delta_for(row))


# ── Reads ───────────────────────────────────────────────────────────────────
def get_snapshot(db: Session, key: SnapshotKey) -> InventorySnapshot | None:
    stmt = (
        select(InventorySnapshot)
        .where(InventorySnapshot.site_id == key.site_id,
               InventorySnapshot.warehouse_id == key.warehouse_id,
               InventorySnapshot.material_type_id == key.material_type_id,
               InventorySnapshot.grade == normalize_grade(key.grade))
        # upserts bypass the identity map
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def snapshot_quantity(db: Session, key: SnapshotKey) -> Decimal | None:
    snap = get_snapshot(db, key)
    return None if snap is None else to_decimal(snap.quantity)


def list_snapshots(db: Session, site_id: str | None = None) -> list[InventorySnapshot]:
    stmt = select(InventorySnapshot).execution_options(populate_existing=True)
    if site_id:
        stmt = stmt.where(InventorySnapshot.site_id == site_id)
    stmt = stmt.order_by(InventorySnapshot.site_id, InventorySnapshot.warehouse_id,
                         InventorySnapshot.material_type_id, InventorySnapshot.grade)
    return list(db.scalars(stmt))


def _sum_by_key(db: Session, model, site_id: str | None) -> dict[SnapshotKey, Decimal]:
    grade = func.coalesce(model.grade, "")
    stmt = (
        select(model.site_id, model.warehouse_id, model.material_type_id, grade,
               func.coalesce(func.sum(model.quantity), 0))
        .group_by(model.site_id, model.warehouse_id, model.material_type_id, grade)
    )
    if site_id:
        stmt = stmt.where(model.site_id == site_id)
    out = {}
    for s, w, m, g, total in db.execute(stmt):
        if not (s and w and m):
            continue
        out[SnapshotKey(s, w, m, normalize_grade(g))] = to_decimal(total)
    return out


def expected_quantities(db: Session, site_id: str | None = None) -> dict[SnapshotKey, Decimal]:
    """Recompute every key's on-hand quantity from the transaction history."""
    expected: dict[SnapshotKey, Decimal] = {}
    for model, sign in ((InboundTransaction, 1), (OutboundTransaction, -1), (InventoryAdjustment, 1)):
        for key, total in _sum_by_key(db, model, site_id).items():
            expected[key] = expected.get(key, Decimal("0")) + sign * total
    return expected


@dataclass(frozen=True)
class Drift:
    key: SnapshotKey
    snapshot: Decimal | None
    expected: Decimal

    @property
    def difference(self) -> Decimal:
        return (self.snapshot or Decimal("0")) - self.expected


def reconcile(db: Session, site_id: str | None = None) -> list[Drift]:
    """Every key whose snapshot disagrees with its history. Empty means consistent."""
    expected = expected_quantities(db, site_id)
    actual = {SnapshotKey.of(s): to_decimal(s.quantity) for s in list_snapshots(db, site_id)}
    drifts = []
    for key in sorted(set(expected) | set(actual), key=lambda k: (k.site_id, k.warehouse_id, k.material_type_id, k.grade)):
        exp = expected.get(key, Decimal("0"))
        act = actual.get(key)
        if (act if act is not None else Decimal("0")) != exp:
            drifts.append(Drift(key, act, exp))
    if drifts:
        logger.error("inventory_drift_detected", extra={"site_id": site_id, "keys": len(drifts)})
    return drifts
