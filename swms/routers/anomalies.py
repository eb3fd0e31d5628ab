from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.schemas.anomalies import AnomalyOut
from swms.services import anomaly
from swms.services.kpi import clamp_int

router = APIRouter(prefix="/swms/anomalies", tags=["anomalies"])


@router.get("", response_model=list[AnomalyOut])
def list_anomalies(site_id: str | None = None, status: Literal["OPEN", "RESOLVED"] | None = None,
                   anomaly_type: Literal["WEIGHING_DEVIATION", "NEGATIVE_INVENTORY", "DOC_MISSING"] | None = None,
                   limit: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return anomaly.list_anomalies(db, site_id, status, anomaly_type, clamp_int(limit, 1, 200, 50))


@router.post("/scan", response_model=list[AnomalyOut])
def scan(site_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return anomaly.scan_site(db, site_id)


@router.post("/{anomaly_id}/resolve", response_model=AnomalyOut)
def resolve(anomaly_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return anomaly.resolve_anomaly(db, anomaly_id)
