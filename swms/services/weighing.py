from sqlalchemy import select
from sqlalchemy.orm import Session

from swms.db import unit_of_work
from swms.errors import NotFoundError, ValidationError
from swms.logging_config import get_logger
from swms.models.common import utcnow
from swms.models.core import Direction, Weighing
from swms.schemas.weighings import WeighingIn
from swms.services import anomaly
from swms.services.recorder import check_scale
from swms.util.timeutil import as_utc

logger = get_logger("weighing")


def _validate(data: WeighingIn) -> None:
    if not data.vehicle_number.strip():
        raise ValidationError("vehicle_number is required")
    check_scale("gross_weight", data.gross_weight)
    check_scale("tare_weight", data.tare_weight)
    if data.gross_weight < 0 or data.tare_weight < 0:
        raise ValidationError("weights must not be negative")
    if data.tare_weight > data.gross_weight:
        raise ValidationError("tare_weight exceeds gross_weight",
                              gross_weight=str(data.gross_weight), tare_weight=str(data.tare_weight))


def _fill(w: Weighing, data: WeighingIn) -> None:
    w.site_id = data.site_id
    w.vehicle_number = data.vehicle_number.strip()
    w.material_type_id = data.material_type_id
    w.vendor_id = data.vendor_id
    w.direction = Direction(data.direction)
    w.gross_weight = data.gross_weight
    w.tare_weight = data.tare_weight
    w.net_weight = data.gross_weight - data.tare_weight


def record_weighing(db: Session, data: WeighingIn) -> Weighing:
    _validate(data)
    with unit_of_work(db, "weighing"):
        w = Weighing(weighed_at=as_utc(data.weighed_at) if data.weighed_at else utcnow())
        _fill(w, data)
        db.add(w)
    logger.info("weighing_recorded", extra={"weighing_id": w.id, "vehicle_number": w.vehicle_number,
                                            "net_weight": w.net_weight})
    anomaly.advise_weighing(db, w)
    return w


def update_weighing(db: Session, weighing_id: str, data: WeighingIn) -> Weighing:
    """Replace a weighing; net weight is recomputed and the deviation rule re-run."""
    _validate(data)
    with unit_of_work(db, "weighing_update"):
        w = db.get(Weighing, weighing_id, with_for_update=True)
        if w is None:
            raise NotFoundError(Weighing.__tablename__, weighing_id)
        _fill(w, data)
        if data.weighed_at:
            w.weighed_at = as_utc(data.weighed_at)
    logger.info("weighing_updated", extra={"weighing_id": w.id, "net_weight": w.net_weight})
    anomaly.advise_weighing(db, w)
    return w


def delete_weighing(db: Session, weighing_id: str) -> Weighing:
    with unit_of_work(db, "weighing_delete"):
        w = db.get(Weighing, weighing_id, with_for_update=True)
        if w is None:
            raise NotFoundError(Weighing.__tablename__, weighing_id)
        db.delete(w)
    logger.info("weighing_deleted", extra={"weighing_id": weighing_id})
    return w


def list_weighings(db: Session, site_id: str | None = None, direction: str | None = None,
                   vehicle_number: str | None = None) -> list[Weighing]:
    stmt = select(Weighing)
    if site_id:
        stmt = stmt.where(Weighing.site_id == site_id)
    if direction:
        stmt = stmt.where(Weighing.direction == Direction(direction))
    if vehicle_number:
        stmt = stmt.where(Weighing.vehicle_number == vehicle_number)
    return list(db.scalars(stmt.order_by(Weighing.weighed_at.desc())))
