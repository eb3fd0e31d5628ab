from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.schemas.common import DeletedOut
from swms.schemas.transactions import (
    AdjustmentIn, AdjustmentOut, InboundIn, OutboundIn, SnapshotOut, TransactionIn, TransactionOut,
)
from swms.services import inventory, recorder

router = APIRouter(prefix="/swms", tags=["ledger"])


def _with_key(body: TransactionIn | AdjustmentIn, idemp_key: str | None):
    # header wins over a key in the body
    if idemp_key:
        return body.model_copy(update={"idempotency_key": idemp_key})
    return body


# ── Inbound ─────────────────────────────────────────────────────────────────
@router.post("/inbounds", status_code=201, response_model=TransactionOut)
def create_inbound(body: InboundIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                   idemp_key: str | None = Header(default=None, alias="Idempotency-Key")):
    return recorder.create_inbound(db, _with_key(body, idemp_key), actor=sub)


@router.get("/inbounds", response_model=list[TransactionOut])
def list_inbounds(site_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return recorder.list_inbounds(db, site_id)


@router.delete("/inbounds/{tx_id}", response_model=DeletedOut)
def delete_inbound(tx_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    recorder.delete_inbound(db, tx_id)
    return {"message": "Deleted", "id": tx_id}


# ── Outbound ────────────────────────────────────────────────────────────────
@router.post("/outbounds", status_code=201, response_model=TransactionOut)
def create_outbound(body: OutboundIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                    idemp_key: str | None = Header(default=None, alias="Idempotency-Key")):
    return recorder.create_outbound(db, _with_key(body, idemp_key), actor=sub)


@router.get("/outbounds", response_model=list[TransactionOut])
def list_outbounds(site_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return recorder.list_outbounds(db, site_id)


@router.delete("/outbounds/{tx_id}", response_model=DeletedOut)
def delete_outbound(tx_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    recorder.delete_outbound(db, tx_id)
    return {"message": "Deleted", "id": tx_id}


@router.post("/outbounds/{tx_id}/approve", response_model=TransactionOut)
def approve_outbound(tx_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return recorder.approve_outbound(db, tx_id)


# ── Inventory ───────────────────────────────────────────────────────────────
@router.post("/inventory/adjustments", status_code=201, response_model=AdjustmentOut)
def create_adjustment(body: AdjustmentIn, db: Session = Depends(get_db), sub: str = Depends(require_auth),
                      idemp_key: str | None = Header(default=None, alias="Idempotency-Key")):
    return recorder.create_adjustment(db, _with_key(body, idemp_key), actor=sub)


@router.get("/inventory/adjustments", response_model=list[AdjustmentOut])
def list_adjustments(site_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return recorder.list_adjustments(db, site_id)


@router.get("/inventory", response_model=list[SnapshotOut])
def list_inventory(site_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return inventory.list_snapshots(db, site_id)


@router.get("/inventory/reconcile")
def reconcile(site_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    drifts = inventory.reconcile(db, site_id)
    return {
        "consistent": not drifts,
        "drifts": [{
            "site_id": d.key.site_id,
            "warehouse_id": d.key.warehouse_id,
            "material_type_id": d.key.material_type_id,
            "grade": d.key.grade,
            "snapshot": float(d.snapshot) if d.snapshot is not None else None,
            "expected": float(d.expected),
            "difference": float(d.difference),
        } for d in drifts],
    }
