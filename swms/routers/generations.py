from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from swms.db import get_db
from swms.deps import require_auth
from swms.schemas.common import DeletedOut
from swms.schemas.generations import GenerationIn, GenerationOut, GenerationUpdate
from swms.services import generation, registry

router = APIRouter(prefix="/swms/generations", tags=["generations"])


def _out(db: Session, g, materials=None) -> GenerationOut:
    materials = materials if materials is not None else registry.materials_by_id(db)
    out = GenerationOut.model_validate(g)
    m = materials.get(g.material_type_id)
    out.material_name = m.name if m else None
    return out


@router.get("", response_model=list[GenerationOut])
def list_generations(site_id: str | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    materials = registry.materials_by_id(db)
    return [_out(db, g, materials) for g in generation.list_generations(db, site_id)]


@router.post("", status_code=201, response_model=GenerationOut)
def create_generation(body: GenerationIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _out(db, generation.create_generation(db, body, actor=sub))


@router.put("/{generation_id}", response_model=GenerationOut)
def update_generation(generation_id: str, body: GenerationUpdate, db: Session = Depends(get_db),
                      sub: str = Depends(require_auth)):
    return _out(db, generation.update_generation(db, generation_id, body))


@router.delete("/{generation_id}", response_model=DeletedOut)
def delete_generation(generation_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    generation.delete_generation(db, generation_id)
    return {"message": "Deleted", "id": generation_id}
