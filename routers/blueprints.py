"""
Exam blueprint router (teacher-facing).
Preview pool capacity, assemble draft exams, configure, publish and close them.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from assessment.blueprints import BlueprintService
from assessment.schemas import (
    AssemblyPreview, AssemblyRequest, BlueprintConfig, BlueprintRecord, BlueprintStatus,
)
from routers.deps import Identity, get_blueprint_service, require_teacher

router = APIRouter(prefix="/blueprints", tags=["exam-blueprints"])


@router.post("/banks/{bank_id}/preview", response_model=AssemblyPreview)
def preview_assembly(
    bank_id: int,
    request: AssemblyRequest,
    teacher: Identity = Depends(require_teacher),
    service: BlueprintService = Depends(get_blueprint_service),
):
    """How many non-overlapping exams the bank could support for this request."""
    return service.preview_assembly_capacity(bank_id, request)


@router.post("/banks/{bank_id}/assemble", response_model=List[BlueprintRecord], status_code=201)
def assemble_blueprints(
    bank_id: int,
    request: AssemblyRequest,
    teacher: Identity = Depends(require_teacher),
    service: BlueprintService = Depends(get_blueprint_service),
):
    return service.assemble_blueprints(bank_id, request)


@router.get("/banks/{bank_id}", response_model=List[BlueprintRecord])
def list_blueprints(
    bank_id: int,
    status: Optional[List[BlueprintStatus]] = Query(None),
    teacher: Identity = Depends(require_teacher),
    service: BlueprintService = Depends(get_blueprint_service),
):
    return service.list(bank_id, status)


@router.get("/{blueprint_id}", response_model=BlueprintRecord)
def get_blueprint(blueprint_id: int, teacher: Identity = Depends(require_teacher), service: BlueprintService = Depends(get_blueprint_service)):
    return service.get(blueprint_id)


@router.put("/{blueprint_id}/config", response_model=BlueprintRecord)
def update_config(
    blueprint_id: int,
    request: BlueprintConfig,
    teacher: Identity = Depends(require_teacher),
    service: BlueprintService = Depends(get_blueprint_service),
):
    """Replace the configuration of a draft exam."""
    return service.update_config(blueprint_id, request)


@router.post("/{blueprint_id}/publish", response_model=BlueprintRecord)
def publish_blueprint(blueprint_id: int, teacher: Identity = Depends(require_teacher), service: BlueprintService = Depends(get_blueprint_service)):
    return service.publish(blueprint_id)


@router.post("/{blueprint_id}/close", response_model=BlueprintRecord)
def close_blueprint(blueprint_id: int, teacher: Identity = Depends(require_teacher), service: BlueprintService = Depends(get_blueprint_service)):
    return service.close(blueprint_id)
