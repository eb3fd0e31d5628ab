"""
Waste generation log.

Records how much waste a process produced on a given day. Entries are
informational: they are editable and never touch inventory snapshots.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from swms.db import unit_of_work
from swms.errors import NotFoundError, ValidationError
from swms.logging_config import get_logger
from swms.models.core import Generation, MaterialType
from swms.schemas.generations import GenerationIn, GenerationUpdate
from swms.services.recorder import check_scale
from swms.util.timeutil import today

logger = get_logger("generation")

DEFAULT_UNIT = "톤"


def _check_quantity(quantity) -> None:
    check_scale("quantity", quantity)
    if quantity <= 0:
        raise ValidationError("quantity must be positive", quantity=str(quantity))


def _unit_for(db: Session, material_type_id: str | None) -> str:
    m = db.get(MaterialType, material_type_id) if material_type_id else None
    return m.unit if m is not None and m.unit else DEFAULT_UNIT


def create_generation(db: Session, data: GenerationIn, actor: str | None = None) -> Generation:
    if not data.site_id.strip():
        raise ValidationError("missing required fields", fields=["site_id"])
    _check_quantity(data.quantity)
    with unit_of_work(db, "generation"):
        g = Generation(
            site_id=data.site_id,
            project_id=data.project_id,
            generation_date=data.generation_date or today(),
            material_type_id=data.material_type_id,
            process_name=data.process_name,
            quantity=data.quantity,
            unit=data.unit or _unit_for(db, data.material_type_id),
            location=data.location,
            notes=data.notes,
            created_by=actor,
        )
        db.add(g)
    logger.info("generation_recorded", extra={"generation_id": g.id, "site_id": g.site_id, "quantity": g.quantity})
    return g


def update_generation(db: Session, generation_id: str, data: GenerationUpdate) -> Generation:
    """Partial update: only fields present in the request change."""
    changes = data.model_dump(exclude_unset=True)
    for field in ("generation_date", "quantity"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be cleared", field=field)
    if "quantity" in changes:
        _check_quantity(changes["quantity"])
    with unit_of_work(db, "generation_update"):
        g = db.get(Generation, generation_id)
        if g is None:
            raise NotFoundError(Generation.__tablename__, generation_id)
        for field, value in changes.items():
            setattr(g, field, value)
    logger.info("generation_updated", extra={"generation_id": generation_id, "fields": sorted(changes)})
    return g


def delete_generation(db: Session, generation_id: str) -> Generation:
    with unit_of_work(db, "generation_delete"):
        g = db.get(Generation, generation_id)
        if g is None:
            raise NotFoundError(Generation.__tablename__, generation_id)
        db.delete(g)
    logger.info("generation_deleted", extra={"generation_id": generation_id})
    return g


def list_generations(db: Session, site_id: str | None = None) -> list[Generation]:
    stmt = select(Generation)
    if site_id:
        stmt = stmt.where(Generation.site_id == site_id)
    return list(db.scalars(stmt.order_by(Generation.generation_date.desc(), Generation.created_at.desc())))
