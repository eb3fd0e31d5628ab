from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.schemas.events import FlowIn, FlowOut, ProcessEventIn, ProcessEventOut
from swms.services import timeline

router = APIRouter(prefix="/swms", tags=["timeline"])


@router.post("/flows", status_code=201, response_model=FlowOut)
def create_flow(body: FlowIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return timeline.create_flow(db, body.site_id, body.material_type_id)


@router.get("/flows/{flow_id}/dwell")
def flow_dwell(flow_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return {"flow_id": flow_id, "sort_dwell_hours": timeline.dwell_hours(db, flow_id)}


@router.post("/events", status_code=201, response_model=ProcessEventOut)
def append_event(body: ProcessEventIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return timeline.append_event(db, body)


@router.get("/events", response_model=list[ProcessEventOut])
def list_events(flow_id: str | None = None, site_id: str | None = None,
                db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return timeline.list_events(db, flow_id=flow_id, site_id=site_id)
