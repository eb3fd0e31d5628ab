from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.schemas.common import DeletedOut
from swms.schemas.settlements import (
    SettlementDetailOut, SettlementDocumentIn, SettlementDraftIn, SettlementFromOutboundsIn,
    SettlementItemIn, SettlementOut,
)
from swms.schemas.transactions import TransactionOut
from swms.services import settlement as svc

router = APIRouter(prefix="/swms/settlements", tags=["settlements"])


def _detail(db: Session, s) -> SettlementDetailOut:
    out = SettlementDetailOut.model_validate(s)
    out.items = [TransactionOut.model_validate(o) for o in svc.settlement_items(db, s.id)]
    out.document_count = svc.document_count(db, s.id)
    out.linked_amount = float(svc.linked_amount(db, s.id))
    return out


@router.get("", response_model=list[SettlementOut])
def list_settlements(site_id: str | None = None, status: Literal["DRAFT", "CONFIRMED"] | None = None,
                     db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return svc.list_settlements(db, site_id, status)


@router.get("/candidates", response_model=list[TransactionOut])
def list_candidates(site_id: str, vendor_id: str, start_date: date | None = None, end_date: date | None = None,
                    db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return svc.list_candidates(db, site_id, vendor_id, start_date, end_date)


@router.post("", status_code=201, response_model=SettlementDetailOut)
def create_from_outbounds(body: SettlementFromOutboundsIn, db: Session = Depends(get_db),
                          sub: str = Depends(require_auth)):
    s = svc.create_settlement_from_outbounds(db, body.site_id, body.vendor_id, body.start_date, body.end_date,
                                             body.outbound_ids)
    return _detail(db, s)


@router.post("/draft", status_code=201, response_model=SettlementOut)
def create_draft(body: SettlementDraftIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return svc.create_draft_settlement(db, body.site_id, body.vendor_id, body.start_date, body.end_date, body.totals)


@router.get("/{settlement_id}", response_model=SettlementDetailOut)
def get_settlement(settlement_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _detail(db, svc.get_settlement(db, settlement_id))


@router.get("/{settlement_id}/balance")
def settlement_balance(settlement_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return {k: float(v) for k, v in svc.settlement_balance(db, settlement_id).items()}


@router.post("/{settlement_id}/items", status_code=201, response_model=SettlementDetailOut)
def attach_outbound(settlement_id: str, body: SettlementItemIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_auth)):
    svc.attach_outbound(db, settlement_id, body.outbound_id)
    return _detail(db, svc.get_settlement(db, settlement_id))


@router.post("/{settlement_id}/documents", status_code=201)
def attach_document(settlement_id: str, body: SettlementDocumentIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_auth)):
    doc = svc.attach_document(db, settlement_id, body.doc_type, body.reference)
    return {"id": doc.id, "settlement_id": doc.settlement_id, "doc_type": doc.doc_type, "reference": doc.reference}


@router.post("/{settlement_id}/confirm", response_model=SettlementOut)
def confirm_settlement(settlement_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return svc.confirm_settlement(db, settlement_id)


@router.delete("/{settlement_id}", response_model=DeletedOut)
def delete_settlement(settlement_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    svc.delete_settlement(db, settlement_id)
    return {"message": "Deleted", "id": settlement_id}
