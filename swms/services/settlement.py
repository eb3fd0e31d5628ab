"""
Settlement aggregation.

A settlement batches APPROVED outbound rows for one vendor at one site. The
linked rows are authoritative: supplied totals are accepted while the
settlement is a DRAFT, but it can only be confirmed once its supply price
equals the sum of the linked outbound amounts.
"""

import time
from datetime import date
from decimal import Decimal, ROUND_FLOOR

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from swms.config import settings
from swms.db import unit_of_work
from swms.errors import NotFoundError, SettlementMismatchError, ValidationError
from swms.logging_config import get_logger
from swms.models.core import (
    OutboundTransaction, Settlement, SettlementDocument, SettlementItem, SettlementStatus, TxStatus, Vendor,
)
from swms.schemas.settlements import SettlementTotals
from swms.services import anomaly
from swms.services.inventory import to_decimal
from swms.services.recorder import _money
from swms.util.timeutil import day_bounds

logger = get_logger("settlement")


def vat_for(supply) -> Decimal:
    rate = Decimal(str(settings.SETTLEMENT_VAT_RATE))
    return (to_decimal(supply) * rate).to_integral_value(rounding=ROUND_FLOOR)


def _load(db: Session, settlement_id: str, lock: bool = False) -> Settlement:
    s = db.get(Settlement, settlement_id, with_for_update=lock)
    if s is None:
        raise NotFoundError(Settlement.__tablename__, settlement_id)
    return s


def _require_draft(s: Settlement) -> None:
    if s.status != SettlementStatus.DRAFT:
        raise ValidationError("settlement is not a DRAFT", settlement_id=s.id, status=s.status.value)


def _require_vendor(db: Session, vendor_id: str) -> None:
    if db.get(Vendor, vendor_id) is None:
        raise ValidationError("unknown vendor", vendor_id=vendor_id)


def _link(db: Session, s: Settlement, outbound_id: str) -> tuple[OutboundTransaction, SettlementItem]:
    o = db.get(OutboundTransaction, outbound_id, with_for_update=True)
    if o is None:
        raise NotFoundError(OutboundTransaction.__tablename__, outbound_id)
    if o.site_id != s.site_id or o.vendor_id != s.vendor_id:
        raise ValidationError("outbound belongs to another site or vendor", outbound_id=outbound_id)
    linked = db.scalar(select(SettlementItem.settlement_id).where(SettlementItem.outbound_id == outbound_id))
    if linked:
        raise ValidationError("outbound already linked to a settlement", outbound_id=outbound_id,
                              settlement_id=linked)
    if o.status != TxStatus.APPROVED:
        raise ValidationError("only APPROVED outbound can be settled", outbound_id=outbound_id,
                              status=o.status.value)
    item = SettlementItem(settlement_id=s.id, outbound_id=o.id)
    db.add(item)
    o.status = TxStatus.SETTLED
    return o, item


def create_draft_settlement(db: Session, site_id: str, vendor_id: str, start_date: date | None,
                            end_date: date | None, totals: SettlementTotals) -> Settlement:
    supply, vat, total = _money(totals.total_supply_price), _money(totals.total_vat), _money(totals.total_amount)
    if supply < 0 or vat < 0:
        raise ValidationError("settlement totals must not be negative")
    if total != supply + vat:
        raise ValidationError("total_amount must equal total_supply_price + total_vat",
                              total_amount=str(total), expected=str(supply + vat))
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date is after end_date")

    with unit_of_work(db, "settlement_draft"):
        _require_vendor(db, vendor_id)
        s = Settlement(site_id=site_id, vendor_id=vendor_id, start_date=start_date, end_date=end_date,
                       total_supply_price=supply, total_vat=vat, total_amount=total,
                       status=SettlementStatus.DRAFT)
        db.add(s)
    logger.info("settlement_drafted", extra={"settlement_id": s.id, "site_id": site_id, "total_amount": total})
    return s


def attach_outbound(db: Session, settlement_id: str, outbound_id: str) -> SettlementItem:
    with unit_of_work(db, "settlement_attach"):
        s = _load(db, settlement_id, lock=True)
        _require_draft(s)
        _, item = _link(db, s, outbound_id)
    logger.info("settlement_item_attached", extra={"settlement_id": settlement_id, "outbound_id": outbound_id})
    return item


def create_settlement_from_outbounds(db: Session, site_id: str, vendor_id: str, start_date: date | None,
                                     end_date: date | None, outbound_ids: list[str]) -> Settlement:
    """Create a DRAFT whose totals are derived from the outbound rows it links."""
    ids = list(dict.fromkeys(outbound_ids))
    if not ids:
        raise ValidationError("outbound_ids must not be empty")

    with unit_of_work(db, "settlement_create"):
        _require_vendor(db, vendor_id)
        s = Settlement(site_id=site_id, vendor_id=vendor_id, start_date=start_date, end_date=end_date,
                       status=SettlementStatus.DRAFT)
        db.add(s)
        db.flush()
        supply = Decimal("0")
        for oid in ids:
            o, _ = _link(db, s, oid)
            supply += to_decimal(o.total_amount)
        s.total_supply_price = _money(supply)
        s.total_vat = _money(vat_for(supply))
        s.total_amount = s.total_supply_price + s.total_vat
    logger.info("settlement_created", extra={"settlement_id": s.id, "site_id": site_id, "items": len(ids),
                                             "total_amount": s.total_amount})
    return s


def linked_amount(db: Session, settlement_id: str) -> Decimal:
    stmt = (
        select(func.coalesce(func.sum(OutboundTransaction.total_amount), 0))
        .join(SettlementItem, SettlementItem.outbound_id == OutboundTransaction.id)
        .where(SettlementItem.settlement_id == settlement_id)
    )
    return _money(to_decimal(db.scalar(stmt)))


def settlement_balance(db: Session, settlement_id: str) -> dict:
    s = _load(db, settlement_id)
    supplied = _money(s.total_supply_price)
    linked = linked_amount(db, settlement_id)
    return {"supplied": supplied, "linked": linked, "difference": supplied - linked}


def confirm_settlement(db: Session, settlement_id: str) -> Settlement:
    with unit_of_work(db, "settlement_confirm"):
        s = _load(db, settlement_id, lock=True)
        _require_draft(s)
        supplied = _money(s.total_supply_price)
        linked = linked_amount(db, settlement_id)
        if supplied != linked:
            raise SettlementMismatchError(settlement_id, str(supplied), str(linked))
        s.status = SettlementStatus.CONFIRMED
        s.tax_invoice_no = f"TAX-{int(time.time() * 1000)}"
    logger.info("settlement_confirmed", extra={"settlement_id": s.id, "tax_invoice_no": s.tax_invoice_no})
    anomaly.advise_settlement(db, s)
    return s


def delete_settlement(db: Session, settlement_id: str) -> Settlement:
    """Remove a DRAFT settlement and release its outbound rows back to APPROVED."""
    with unit_of_work(db, "settlement_delete"):
        s = _load(db, settlement_id, lock=True)
        _require_draft(s)
        outbound_ids = list(db.scalars(select(SettlementItem.outbound_id)
                                       .where(SettlementItem.settlement_id == settlement_id)))
        for o in db.scalars(select(OutboundTransaction).where(OutboundTransaction.id.in_(outbound_ids))):
            o.status = TxStatus.APPROVED
        db.execute(delete(SettlementItem).where(SettlementItem.settlement_id == settlement_id))
        db.execute(delete(SettlementDocument).where(SettlementDocument.settlement_id == settlement_id))
        db.delete(s)
    logger.info("settlement_deleted", extra={"settlement_id": settlement_id, "released": len(outbound_ids)})
    return s


def attach_document(db: Session, settlement_id: str, doc_type: str, reference: str) -> SettlementDocument:
    if not doc_type.strip() or not reference.strip():
        raise ValidationError("doc_type and reference are required")
    with unit_of_work(db, "settlement_document"):
        _load(db, settlement_id)
        doc = SettlementDocument(settlement_id=settlement_id, doc_type=doc_type.strip(), reference=reference.strip())
        db.add(doc)
    logger.info("settlement_document_attached", extra={"settlement_id": settlement_id, "doc_type": doc.doc_type})
    return doc


# ── Reads ───────────────────────────────────────────────────────────────────
def get_settlement(db: Session, settlement_id: str) -> Settlement:
    return _load(db, settlement_id)


def settlement_items(db: Session, settlement_id: str) -> list[OutboundTransaction]:
    stmt = (
        select(OutboundTransaction)
        .join(SettlementItem, SettlementItem.outbound_id == OutboundTransaction.id)
        .where(SettlementItem.settlement_id == settlement_id)
        .order_by(OutboundTransaction.created_at.asc())
    )
    return list(db.scalars(stmt))


def document_count(db: Session, settlement_id: str) -> int:
    return db.scalar(select(func.count(SettlementDocument.id))
                     .where(SettlementDocument.settlement_id == settlement_id)) or 0


def list_settlements(db: Session, site_id: str | None = None, status: str | None = None) -> list[Settlement]:
    stmt = select(Settlement)
    if site_id:
        stmt = stmt.where(Settlement.site_id == site_id)
    if status:
        stmt = stmt.where(Settlement.status == SettlementStatus(status))
    return list(db.scalars(stmt.order_by(Settlement.created_at.desc())))


def list_candidates(db: Session, site_id: str, vendor_id: str, start_date: date | None = None,
                    end_date: date | None = None) -> list[OutboundTransaction]:
    """APPROVED outbound rows for the vendor that no settlement links yet."""
    linked = select(SettlementItem.outbound_id)
    stmt = select(OutboundTransaction).where(
        OutboundTransaction.site_id == site_id,
        OutboundTransaction.vendor_id == vendor_id,
        OutboundTransaction.status == TxStatus.APPROVED,
        OutboundTransaction.id.not_in(linked),
    )
    if start_date:
        stmt = stmt.where(OutboundTransaction.created_at >= day_bounds(start_date)[0])
    if end_date:
        stmt = stmt.where(OutboundTransaction.created_at < day_bounds(end_date)[1])
    return list(db.scalars(stmt.order_by(OutboundTransaction.created_at.asc())))
