from pydantic import BaseModel, ConfigDict
from typing import Optional, Literal, Any
from datetime import datetime
from decimal import Decimal

from swms.models.core import Stage

StageLiteral = Literal["INBOUND", "SORT", "STORAGE", "OUTBOUND", "SETTLEMENT_CONFIRMED", "SETTLEMENT_PENDING"]

class FlowIn(BaseModel):
    site_id: str
    material_type_id: Optional[str] = None

class FlowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    material_type_id: Optional[str] = None
    created_at: datetime

class ProcessEventIn(BaseModel):
    site_id: str
    warehouse_id: Optional[str] = None
    material_type_id: Optional[str] = None
    grade: Optional[str] = None
    flow_id: Optional[str] = None
    from_stage: StageLiteral
    to_stage: StageLiteral
    quantity: Decimal = Decimal("0")
    occurred_at: Optional[datetime] = None
    meta: Optional[dict[str, Any]] = None

class ProcessEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    warehouse_id: Optional[str] = None
    material_type_id: Optional[str] = None
    grade: Optional[str] = None
    flow_id: Optional[str] = None
    from_stage: Stage
    to_stage: Stage
    quantity: float
    occurred_at: datetime
    meta: Optional[dict[str, Any]] = None
