from typing import Literal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.schemas.common import DeletedOut
from swms.schemas.weighings import WeighingIn, WeighingOut
from swms.services import weighing

router = APIRouter(prefix="/swms/weighings", tags=["weighings"])


@router.post("", status_code=201, response_model=WeighingOut)
def record_weighing(body: WeighingIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return weighing.record_weighing(db, body)


@router.get("", response_model=list[WeighingOut])
def list_weighings(site_id: str | None = None, direction: Literal["IN", "OUT"] | None = None,
                   vehicle_number: str | None = None, db: Session = Depends(get_db),
                   sub: str = Depends(require_auth)):
    return weighing.list_weighings(db, site_id, direction, vehicle_number)


@router.put("/{weighing_id}", response_model=WeighingOut)
def update_weighing(weighing_id: str, body: WeighingIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_auth)):
    return weighing.update_weighing(db, weighing_id, body)


@router.delete("/{weighing_id}", response_model=DeletedOut)
def delete_weighing(weighing_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    weighing.delete_weighing(db, weighing_id)
    return {"message": "Deleted", "id": weighing_id}
