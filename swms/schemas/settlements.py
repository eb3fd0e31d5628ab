from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal

from swms.models.core import SettlementStatus
from swms.schemas.transactions import TransactionOut


class SettlementTotals(BaseModel):
    total_supply_price: Decimal
    total_vat: Decimal = Decimal("0")
    total_amount: Decimal

class SettlementDraftIn(BaseModel):
    site_id: str
    vendor_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    totals: SettlementTotals

class SettlementFromOutboundsIn(BaseModel):
    site_id: str
    vendor_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    outbound_ids: List[str]

class SettlementItemIn(BaseModel):
    outbound_id: str

class SettlementDocumentIn(BaseModel):
    doc_type: str
    reference: str

class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    vendor_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_supply_price: float
    total_vat: float
    total_amount: float
    status: SettlementStatus
    tax_invoice_no: Optional[str] = None
    created_at: datetime

class SettlementDetailOut(SettlementOut):
    items: List[TransactionOut] = []
    document_count: int = 0
    linked_amount: float = 0.0
