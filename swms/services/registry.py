from sqlalchemy import select
from sqlalchemy.orm import Session

from swms.models.core import MaterialType, Vendor, Warehouse

# Master data is owned by another service; the ledger only reads it.

WASTE_MARKERS = ("폐기", "waste")


def material_is_scrap(m: MaterialType | None) -> bool:
    """Explicit flag wins; otherwise a category naming waste means not scrap."""
    if m is None:
        return True
    if m.is_scrap is not None:
        return bool(m.is_scrap)
    cat = (m.category or "").lower()
    return not any(marker in cat for marker in WASTE_MARKERS)


def materials_by_id(db: Session) -> dict[str, MaterialType]:
    return {m.id: m for m in db.scalars(select(MaterialType))}


def warehouses_for_site(db: Session, site_id: str | None) -> list[Warehouse]:
    stmt = select(Warehouse).order_by(Warehouse.name.asc())
    if site_id:
        stmt = stmt.where(Warehouse.site_id == site_id)
    return list(db.scalars(stmt))


def vendor_names(db: Session) -> dict[str, str]:
    return {v.id: v.name for v in db.scalars(select(Vendor))}
