from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_service
from ..models import BigTaskStatus
from ..schemas import BigTaskCreate, BigTaskOut, BigTaskUpdate, ProgressUpdate
from ..service import TrackerService

router = APIRouter(
    prefix="/api/v1/big-tasks",
    tags=["big-tasks"],
)


# PUBLIC_INTERFACE
@router.get("/", response_model=List[BigTaskOut], summary="List challenges")
def list_big_tasks(
    status_filter: Optional[BigTaskStatus] = Query(None, alias="status", description="Filter by status"),
    service: TrackerService = Depends(get_service),
) -> List[BigTaskOut]:
    return [BigTaskOut(**t) for t in service.list_big_tasks(status_filter)]


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=BigTaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create challenge",
)
def create_big_task(payload: BigTaskCreate, service: TrackerService = Depends(get_service)) -> BigTaskOut:
    created = service.create_big_task(
        title=payload.title,
        reward_amount=payload.reward_amount,
        description=payload.description,
        target_date=payload.target_date,
    )
    return BigTaskOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=BigTaskOut,
    summary="Get challenge",
    responses={404: {"description": "Challenge not found"}},
)
def get_big_task(task_id: str, service: TrackerService = Depends(get_service)) -> BigTaskOut:
    return BigTaskOut(**service.get_big_task(task_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=BigTaskOut,
    summary="Edit challenge",
    description=(
        "Partial update. Without an explicit status, the status follows progress "
        "(0 = not started, 1 = completed, in progress otherwise)."
    ),
    responses={404: {"description": "Challenge not found"}},
)
def update_big_task(
    task_id: str,
    payload: BigTaskUpdate,
    service: TrackerService = Depends(get_service),
) -> BigTaskOut:
    return BigTaskOut(**service.update_big_task(task_id, payload.model_dump(exclude_unset=True)))


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}/progress",
    response_model=BigTaskOut,
    summary="Set challenge progress",
    description=(
        "Set progress while the user drags a slider. The change is visible "
        "immediately and saved after a short quiet period."
    ),
    responses={404: {"description": "Challenge not found"}},
)
def set_progress(
    task_id: str,
    payload: ProgressUpdate,
    service: TrackerService = Depends(get_service),
) -> BigTaskOut:
    return BigTaskOut(**service.set_big_task_progress(task_id, payload.progress))


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete challenge",
    responses={404: {"description": "Challenge not found"}},
)
def delete_big_task(task_id: str, service: TrackerService = Depends(get_service)) -> None:
    service.delete_big_task(task_id)
    return None
