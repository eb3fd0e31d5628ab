from pydantic import BaseModel, ConfigDict
from typing import Optional, Literal
from datetime import datetime
from decimal import Decimal

from swms.models.core import Direction

DirectionLiteral = Literal["IN", "OUT"]

class WeighingIn(BaseModel):
    site_id: str
    vehicle_number: str
    material_type_id: Optional[str] = None
    vendor_id: Optional[str] = None
    direction: DirectionLiteral = "IN"
    gross_weight: Decimal
    tare_weight: Decimal = Decimal("0")
    weighed_at: Optional[datetime] = None

class WeighingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    vehicle_number: str
    material_type_id: Optional[str] = None
    vendor_id: Optional[str] = None
    direction: Direction
    gross_weight: float
    tare_weight: float
    net_weight: float
    weighed_at: datetime
