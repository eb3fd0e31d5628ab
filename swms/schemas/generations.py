from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import date, datetime
from decimal import Decimal

class GenerationIn(BaseModel):
    site_id: str
    project_id: Optional[str] = None
    generation_date: Optional[date] = None   # defaults to today (site time zone)
    material_type_id: Optional[str] = None
    process_name: Optional[str] = None
    quantity: Decimal
    unit: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None

class GenerationUpdate(BaseModel):
    generation_date: Optional[date] = None
    material_type_id: Optional[str] = None
    process_name: Optional[str] = None
    quantity: Optional[Decimal] = None
    location: Optional[str] = None
    notes: Optional[str] = None

class GenerationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    project_id: Optional[str] = None
    generation_date: date
    material_type_id: Optional[str] = None
    material_name: Optional[str] = None
    process_name: Optional[str] = None
    quantity: float
    unit: str
    location: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
