from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.orm import Session

from swms.db import unit_of_work
from swms.errors import IdempotencyConflictError, NotFoundError, ValidationError
from swms.logging_config import get_logger
from swms.models.common import utcnow
from swms.models.core import (
    InboundTransaction, OutboundTransaction, InventoryAdjustment, SettlementItem, TxStatus,
)
from swms.schemas.transactions import AdjustmentIn, TransactionIn
from swms.services import anomaly, timeline
from swms.services.inventory import (
    SnapshotKey, apply_delta, normalize_grade, reverse_delta, to_decimal,
)
from swms.util.timeutil import as_utc

logger = get_logger("recorder")

_KEY_FIELDS = ("site_id", "warehouse_id", "material_type_id")

# scales of the Numeric(15, 3) quantity and Numeric(15, 2) price columns
QTY_PLACES = 3
PRICE_PLACES = 2


def _money(x) -> Decimal:
    return Decimal(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_total(quantity, unit_price) -> Decimal:
    if unit_price is None:
        return _money(0)
    return _money(to_decimal(quantity) * to_decimal(unit_price))


def check_scale(field: str, value: Decimal | None, places: int = QTY_PLACES) -> None:
    """Reject values the Numeric column would round away."""
    if value is None:
        return
    step = Decimal(1).scaleb(-places)
    if value != value.quantize(step, rounding=ROUND_DOWN):
        raise ValidationError(f"{field} has more than {places} decimal places", **{field: str(value)})


def _missing_keys(data) -> list[str]:
    return [f for f in _KEY_FIELDS if not (getattr(data, f, None) or "").strip()]


def _validate_tx(data: TransactionIn) -> None:
    missing = _missing_keys(data)
    if data.quantity is None:
        missing.append("quantity")
    if missing:
        raise ValidationError("missing required fields", fields=missing)
    check_scale("quantity", data.quantity)
    if data.quantity <= 0:
        raise ValidationError("quantity must be positive", quantity=str(data.quantity))
    if data.unit_price is not None:
        check_scale("unit_price", data.unit_price, PRICE_PLACES)
        if data.unit_price < 0:
            raise ValidationError("unit_price must not be negative", unit_price=str(data.unit_price))


def _dec(v) -> Decimal | None:
    return None if v is None else to_decimal(v)


def _same_key(row, data) -> bool:
    return (row.site_id == data.site_id and row.warehouse_id == data.warehouse_id
            and row.material_type_id == data.material_type_id
            and normalize_grade(row.grade) == normalize_grade(data.grade)
            and to_decimal(row.quantity) == to_decimal(data.quantity))


def _same_tx(row, data: TransactionIn, default_status: TxStatus) -> bool:
    # an omitted flow_id matches the flow the first call opened
    return (_same_key(row, data)
            and row.project_id == data.project_id
            and _dec(row.unit_price) == _dec(data.unit_price)
            and row.vendor_id == data.vendor_id
            and row.status == (TxStatus(data.status) if data.status else default_status)
            and (data.flow_id is None or row.flow_id == data.flow_id))


def _same_adjustment(row, data: AdjustmentIn) -> bool:
    return (_same_key(row, data)
            and row.reason == data.reason
            and row.adjustment_type == data.adjustment_type
            and (data.adjustment_date is None or row.adjustment_date == data.adjustment_date))


def _replay(db: Session, model, data, same) -> object | None:
    """Row previously recorded under the same idempotency key, if any."""
    if not data.idempotency_key:
        return None
    row = db.scalars(select(model).where(model.idempotency_key == data.idempotency_key)).first()
    if row is None:
        return None
    if not same(row, data):
        raise IdempotencyConflictError(data.idempotency_key, row.id)
    logger.info("idempotent_replay", extra={"table": model.__tablename__, "tx_id": row.id})
    return row


def _record(db: Session, model, data: TransactionIn, sign: int, default_status: TxStatus,
            actor: str | None, op: str):
    _validate_tx(data)
    existing = _replay(db, model, data, lambda row, d: _same_tx(row, d, default_status))
    if existing is not None:
        return existing

    with unit_of_work(db, op):
        flow_id = data.flow_id
        if model is InboundTransaction and not flow_id:
            flow_id = timeline.open_flow(db, data.site_id, data.material_type_id).id
        row = model(
            site_id=data.site_id,
            project_id=data.project_id,
            warehouse_id=data.warehouse_id,
            material_type_id=data.material_type_id,
            grade=data.grade,
            quantity=data.quantity,
            unit_price=data.unit_price,
            total_amount=compute_total(data.quantity, data.unit_price),
            vendor_id=data.vendor_id,
            flow_id=flow_id,
            status=TxStatus(data.status) if data.status else default_status,
            idempotency_key=data.idempotency_key,
            created_by=actor,
            created_at=as_utc(data.created_at) if data.created_at else utcnow(),
        )
        db.add(row)
        db.flush()
        apply_delta(db, row.site_id, row.warehouse_id, row.material_type_id, row.grade, sign * row.quantity)

    logger.info(f"{op}_recorded", extra={"tx_id": row.id, "site_id": row.site_id, "quantity": row.quantity})
    anomaly.advise_snapshot(db, SnapshotKey.of(row))
    return row


def create_inbound(db: Session, data: TransactionIn, actor: str | None = None) -> InboundTransaction:
    return _record(db, InboundTransaction, data, +1, TxStatus.CONFIRMED, actor, "inbound")


def create_outbound(db: Session, data: TransactionIn, actor: str | None = None) -> OutboundTransaction:
    return _record(db, OutboundTransaction, data, -1, TxStatus.PENDING, actor, "outbound")


def _delete(db: Session, model, tx_id: str, op: str):
    with unit_of_work(db, op):
        # row lock: a concurrent delete of the same id waits, then finds nothing
        row = db.get(model, tx_id, with_for_update=True)
        if row is None:
            raise NotFoundError(model.__tablename__, tx_id)
        if model is OutboundTransaction:
            linked = db.scalar(select(SettlementItem.settlement_id).where(SettlementItem.outbound_id == tx_id))
            if linked:
                raise ValidationError("outbound is linked to a settlement", settlement_id=linked)
        reverse_delta(db, row)
        db.delete(row)

    logger.info(f"{op}_deleted", extra={"tx_id": tx_id, "site_id": row.site_id, "quantity": row.quantity})
    anomaly.advise_snapshot(db, SnapshotKey.of(row))
    return row


def delete_inbound(db: Session, tx_id: str) -> InboundTransaction:
    return _delete(db, InboundTransaction, tx_id, "inbound_delete")


def delete_outbound(db: Session, tx_id: str) -> OutboundTransaction:
    return _delete(db, OutboundTransaction, tx_id, "outbound_delete")


def approve_outbound(db: Session, tx_id: str) -> OutboundTransaction:
    # status only; the inventory delta was taken when the outbound was recorded
    with unit_of_work(db, "outbound_approve"):
        row = db.get(OutboundTransaction, tx_id, with_for_update=True)
        if row is None:
            raise NotFoundError(OutboundTransaction.__tablename__, tx_id)
        if row.status != TxStatus.PENDING:
            raise ValidationError("only PENDING outbound can be approved", status=row.status.value)
        row.status = TxStatus.APPROVED
    logger.info("outbound_approved", extra={"tx_id": tx_id})
    return row


def create_adjustment(db: Session, data: AdjustmentIn, actor: str | None = None) -> InventoryAdjustment:
    missing = _missing_keys(data)
    if data.quantity is None:
        missing.append("quantity")
    if missing:
        raise ValidationError("missing required fields", fields=missing)
    check_scale("quantity", data.quantity)
    if data.quantity == 0:
        raise ValidationError("adjustment delta must be non-zero")

    existing = _replay(db, InventoryAdjustment, data, _same_adjustment)
    if existing is not None:
        return existing

    with unit_of_work(db, "adjustment"):
        row = InventoryAdjustment(
            site_id=data.site_id,
            warehouse_id=data.warehouse_id,
            material_type_id=data.material_type_id,
            grade=data.grade,
            quantity=data.quantity,
            reason=data.reason,
            adjustment_type=data.adjustment_type,
            adjustment_date=data.adjustment_date or utcnow().date(),
            idempotency_key=data.idempotency_key,
            created_by=actor,
        )
        db.add(row)
        db.flush()
        apply_delta(db, row.site_id, row.warehouse_id, row.material_type_id, row.grade, row.quantity)

    logger.info("adjustment_recorded", extra={"adjustment_id": row.id, "site_id": row.site_id,
                                              "quantity": row.quantity, "adjustment_type": row.adjustment_type})
    anomaly.advise_snapshot(db, SnapshotKey.of(row))
    return row


# ── Reads ───────────────────────────────────────────────────────────────────
def _list(db: Session, model, site_id: str | None):
    stmt = select(model)
    if site_id:
        stmt = stmt.where(model.site_id == site_id)
    return list(db.scalars(stmt.order_by(model.created_at.desc(), model.id.desc())))


def list_inbounds(db: Session, site_id: str | None = None) -> list[InboundTransaction]:
    return _list(db, InboundTransaction, site_id)


def list_outbounds(db: Session, site_id: str | None = None) -> list[OutboundTransaction]:
    return _list(db, OutboundTransaction, site_id)


def list_adjustments(db: Session, site_id: str | None = None) -> list[InventoryAdjustment]:
    return _list(db, InventoryAdjustment, site_id)
