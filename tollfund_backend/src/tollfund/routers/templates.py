from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, status

from ..dependencies import get_service
from ..schemas import TemplateOut, TemplateUpdate, TemplateUpsert
from ..service import TrackerService

router = APIRouter(
    prefix="/api/v1/templates",
    tags=["templates"],
)


# PUBLIC_INTERFACE
@router.get("/", response_model=List[TemplateOut], summary="List templates")
def list_templates(service: TrackerService = Depends(get_service)) -> List[TemplateOut]:
    return [TemplateOut(**t) for t in service.list_templates()]


# PUBLIC_INTERFACE
@router.put(
    "/",
    response_model=TemplateOut,
    summary="Create or update template by title",
    description=(
        "Templates are matched by title. A new reward only applies to days "
        "materialized afterwards; existing tasks keep their reward."
    ),
)
def upsert_template(payload: TemplateUpsert, service: TrackerService = Depends(get_service)) -> TemplateOut:
    template = service.upsert_template(
        title=payload.title,
        task_type=payload.task_type,
        amount=payload.reward_amount,
        is_active=payload.is_active,
    )
    return TemplateOut(**template)


# PUBLIC_INTERFACE
@router.post(
    "/seed",
    summary="Seed built-in templates",
    description="Create the built-in templates when none exist. Returns how many were created.",
)
def seed_templates(service: TrackerService = Depends(get_service)) -> Dict[str, int]:
    return {"created": service.seed_default_templates()}


# PUBLIC_INTERFACE
@router.get(
    "/{template_id}",
    response_model=TemplateOut,
    summary="Get template",
    responses={404: {"description": "Template not found"}},
)
def get_template(template_id: str, service: TrackerService = Depends(get_service)) -> TemplateOut:
    return TemplateOut(**service.get_template(template_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{template_id}",
    response_model=TemplateOut,
    summary="Edit template",
    responses={404: {"description": "Template not found"}, 409: {"description": "Title already used"}},
)
def update_template(
    template_id: str,
    payload: TemplateUpdate,
    service: TrackerService = Depends(get_service),
) -> TemplateOut:
    return TemplateOut(**service.update_template(template_id, payload.model_dump(exclude_unset=True)))


# PUBLIC_INTERFACE
@router.delete(
    "/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete template",
    description="Delete a template. Tasks it already produced are kept.",
    responses={404: {"description": "Template not found"}},
)
def delete_template(template_id: str, service: TrackerService = Depends(get_service)) -> None:
    service.delete_template(template_id)
    return None
