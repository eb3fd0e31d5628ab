"""
Advisory anomaly rules.

Detection only ever appends ``swms_anomalies`` rows. The ``advise_*`` entry
points run after the triggering write has committed, in their own unit of
work, and swallow (but log) their failures so a broken rule can never undo
or block ledger writes.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from swms.config import settings
from swms.db import unit_of_work
from swms.errors import NotFoundError, ValidationError
from swms.logging_config import get_logger
from swms.models.common import utcnow
from swms.models.core import (
    Anomaly, AnomalyStatus, AnomalyType, InventorySnapshot, Settlement, SettlementDocument,
    SettlementStatus, Severity, Weighing,
)
from swms.services.inventory import SnapshotKey, get_snapshot, to_decimal
from swms.util.timeutil import as_utc

logger = get_logger("anomaly")

ENTITY_INVENTORY = "INVENTORY"
ENTITY_WEIGHING = "WEIGHING"
ENTITY_SETTLEMENT = "SETTLEMENT"


def _open_exists(db: Session, anomaly_type: AnomalyType, entity_type: str, entity_id: str) -> bool:
    stmt = select(Anomaly.id).where(
        Anomaly.anomaly_type == anomaly_type,
        Anomaly.entity_type == entity_type,
        Anomaly.entity_id == entity_id,
        Anomaly.status == AnomalyStatus.OPEN,
    )
    return db.scalar(stmt.limit(1)) is not None


def _emit(db: Session, site_id: str, anomaly_type: AnomalyType, severity: Severity, title: str,
          description: str, entity_type: str, entity_id: str) -> Anomaly | None:
    if _open_exists(db, anomaly_type, entity_type, entity_id):
        return None
    a = Anomaly(site_id=site_id, anomaly_type=anomaly_type, severity=severity, title=title,
                description=description, entity_type=entity_type, entity_id=entity_id,
                status=AnomalyStatus.OPEN, detected_at=utcnow())
    db.add(a)
    db.flush()
    logger.warning("anomaly_detected", extra={"anomaly_type": anomaly_type.value, "severity": severity.value,
                                              "site_id": site_id, "entity_id": entity_id})
    return a


# ── Rules ───────────────────────────────────────────────────────────────────
def check_snapshot(db: Session, key: SnapshotKey) -> Anomaly | None:
    snap = get_snapshot(db, key)
    if snap is None:
        return None
    return _check_negative(db, snap)


def _check_negative(db: Session, snap: InventorySnapshot) -> Anomaly | None:
    qty = to_decimal(snap.quantity)
    if qty >= 0:
        return None
    return _emit(db, snap.site_id, AnomalyType.NEGATIVE_INVENTORY, Severity.CRITICAL,
                 "재고 음수 발생",
                 f"warehouse={snap.warehouse_id} material={snap.material_type_id} "
                 f"grade={snap.grade or '-'} quantity={qty}",
                 ENTITY_INVENTORY, snap.id)


def check_weighing(db: Session, w: Weighing) -> Anomaly | None:
    """Flag a net weight far from the vehicle's earlier weighings in the same direction."""
    avg, n = db.execute(
        select(func.avg(Weighing.net_weight), func.count(Weighing.id))
        .where(Weighing.vehicle_number == w.vehicle_number,
               Weighing.direction == w.direction,
               Weighing.weighed_at < as_utc(w.weighed_at),
               Weighing.id != w.id)
    ).one()
    if not n or avg is None:
        return None
    avg = to_decimal(avg)
    if avg == 0:
        return None
    deviation = abs(to_decimal(w.net_weight) - avg) / avg * Decimal("100")
    if deviation <= Decimal(str(settings.WEIGHING_DEVIATION_PCT)):
        return None
    return _emit(db, w.site_id, AnomalyType.WEIGHING_DEVIATION, Severity.WARN,
                 "계근 편차 초과",
                 f"vehicle={w.vehicle_number} net={w.net_weight} avg={avg:.3f} "
                 f"deviation={deviation:.1f}% samples={n}",
                 ENTITY_WEIGHING, w.id)


def check_settlement(db: Session, s: Settlement) -> Anomaly | None:
    docs = db.scalar(select(func.count(SettlementDocument.id)).where(SettlementDocument.settlement_id == s.id))
    if docs:
        return None
    return _emit(db, s.site_id, AnomalyType.DOC_MISSING, Severity.WARN,
                 "정산 증빙 누락",
                 f"settlement={s.id} tax_invoice_no={s.tax_invoice_no or '-'}",
                 ENTITY_SETTLEMENT, s.id)


def scan_site(db: Session, site_id: str) -> list[Anomaly]:
    """Run every rule for one site; returns the anomalies newly opened."""
    found: list[Anomaly] = []
    since = utcnow() - timedelta(days=settings.ANOMALY_WINDOW_DAYS)
    with unit_of_work(db, "anomaly_scan"):
        negatives = list(db.scalars(select(InventorySnapshot).where(InventorySnapshot.site_id == site_id,
                                                                  InventorySnapshot.quantity < 0)))
        weighings = list(db.scalars(select(Weighing).where(Weighing.site_id == site_id, Weighing.weighed_at >= since)))
        confirmed = list(db.scalars(select(Settlement).where(Settlement.site_id == site_id,
                                                             Settlement.status == SettlementStatus.CONFIRMED)))
        for snap in negatives:
            found.append(_check_negative(db, snap))
        for w in weighings:
            found.append(check_weighing(db, w))
        for s in confirmed:
            found.append(check_settlement(db, s))
    found = [a for a in found if a is not None]
    logger.info("anomaly_scan_finished", extra={"site_id": site_id, "opened": len(found)})
    return found


# ── Post-commit hooks ───────────────────────────────────────────────────────
def _advise(op: str, db: Session, rule, target):
    try:
        with unit_of_work(db, op):
            return rule(db, target)
    except Exception:
        logger.warning("anomaly_check_failed", extra={"op": op}, exc_info=True)
        return None


def advise_snapshot(db: Session, key: SnapshotKey) -> Anomaly | None:
    return _advise("anomaly_snapshot", db, check_snapshot, key)


def advise_weighing(db: Session, w: Weighing) -> Anomaly | None:
    return _advise("anomaly_weighing", db, check_weighing, w)


def advise_settlement(db: Session, s: Settlement) -> Anomaly | None:
    return _advise("anomaly_settlement", db, check_settlement, s)


# ── Reads / triage ──────────────────────────────────────────────────────────
def list_anomalies(db: Session, site_id: str | None = None, status: str | None = None,
                   anomaly_type: str | None = None, limit: int = 50) -> list[Anomaly]:
    stmt = select(Anomaly)
    if site_id:
        stmt = stmt.where(Anomaly.site_id == site_id)
    if status:
        stmt = stmt.where(Anomaly.status == AnomalyStatus(status))
    if anomaly_type:
        stmt = stmt.where(Anomaly.anomaly_type == AnomalyType(anomaly_type))
    return list(db.scalars(stmt.order_by(Anomaly.detected_at.desc()).limit(limit)))


def resolve_anomaly(db: Session, anomaly_id: str) -> Anomaly:
    with unit_of_work(db, "anomaly_resolve"):
        a = db.get(Anomaly, anomaly_id)
        if a is None:
            raise NotFoundError(Anomaly.__tablename__, anomaly_id)
        if a.status != AnomalyStatus.OPEN:
            raise ValidationError("anomaly is already resolved", anomaly_id=anomaly_id)
        a.status = AnomalyStatus.RESOLVED
    logger.info("anomaly_resolved", extra={"anomaly_id": anomaly_id})
    return a
