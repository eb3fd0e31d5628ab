from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

from swms.models.core import AnomalyType, Severity, AnomalyStatus

class AnomalyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    site_id: str
    anomaly_type: AnomalyType
    severity: Severity
    title: str
    description: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    status: AnomalyStatus
    detected_at: datetime
