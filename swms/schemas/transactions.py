from pydantic import BaseModel, ConfigDict
from typing import Optional, Literal
from datetime import date, datetime
from decimal import Decimal

from swms.models.core import TxStatus

TxStatusLiteral = Literal["CONFIRMED", "PENDING", "APPROVED", "SETTLED"]

class TransactionIn(BaseModel):
    # key fields are optional here so the recorder owns the presence check
    site_id: Optional[str] = None
    project_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    material_type_id: Optional[str] = None
    grade: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    vendor_id: Optional[str] = None
    flow_id: Optional[str] = None
    status: Optional[TxStatusLiteral] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None   # back-dated entry; defaults to now

class InboundIn(TransactionIn):
    pass

class OutboundIn(TransactionIn):
    pass

class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    project_id: Optional[str] = None
    warehouse_id: str
    material_type_id: str
    grade: Optional[str] = None
    quantity: float
    unit_price: Optional[float] = None
    total_amount: float
    vendor_id: Optional[str] = None
    flow_id: Optional[str] = None
    status: TxStatus
    idempotency_key: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

class AdjustmentIn(BaseModel):
    site_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    material_type_id: Optional[str] = None
    grade: Optional[str] = None
    quantity: Optional[Decimal] = None   # signed delta
    reason: Optional[str] = None
    adjustment_type: Optional[str] = None
    adjustment_date: Optional[date] = None
    idempotency_key: Optional[str] = None

class AdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    warehouse_id: str
    material_type_id: str
    grade: Optional[str] = None
    quantity: float
    reason: Optional[str] = None
    adjustment_type: Optional[str] = None
    adjustment_date: Optional[date] = None
    created_at: datetime

class SnapshotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    warehouse_id: str
    material_type_id: str
    grade: str
    quantity: float
    last_updated_at: datetime
