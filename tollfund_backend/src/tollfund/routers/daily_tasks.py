from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_service
from ..schemas import (
    DailyTaskCreate,
    DailyTaskOut,
    DailyTaskUpdate,
    MaterializeOut,
    MaterializeRequest,
)
from ..service import TrackerService

router = APIRouter(
    prefix="/api/v1/daily-tasks",
    tags=["daily-tasks"],
)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=List[DailyTaskOut],
    summary="List tasks for a day",
    description="Tasks dated the given day (default today), fixed tasks first, then by creation time.",
)
def list_tasks_for_day(
    day: Optional[date] = Query(None, description="Calendar day (YYYY-MM-DD); defaults to today"),
    service: TrackerService = Depends(get_service),
) -> List[DailyTaskOut]:
    tasks = service.tasks_for_day(day if day is not None else service.today())
    return [DailyTaskOut.from_entity(t) for t in tasks]


# PUBLIC_INTERFACE
@router.post(
    "/materialize",
    response_model=MaterializeOut,
    summary="Materialize fixed tasks",
    description=(
        "Create today's (or the given day's) instance of every active template. "
        "Idempotent: calling it again for the same day creates nothing."
    ),
)
def materialize_day(
    payload: MaterializeRequest,
    service: TrackerService = Depends(get_service),
) -> MaterializeOut:
    day = payload.day if payload.day is not None else service.today()
    result = service.ensure_instances_for_day(day)
    return MaterializeOut(
        day=result.day,
        created=result.created,
        pruned=result.pruned,
        duplicates_removed=result.duplicates_removed,
        tasks=[DailyTaskOut.from_entity(t) for t in service.tasks_for_day(result.day)],
    )


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=DailyTaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create ad hoc task",
    responses={201: {"description": "Task created"}},
)
def create_ad_hoc_task(payload: DailyTaskCreate, service: TrackerService = Depends(get_service)) -> DailyTaskOut:
    created = service.create_ad_hoc_task(
        title=payload.title,
        task_type=payload.task_type,
        amount=payload.reward_amount,
        day=payload.task_date,
    )
    return DailyTaskOut.from_entity(created)


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=DailyTaskOut,
    summary="Get task",
    responses={404: {"description": "Task not found"}},
)
def get_task(task_id: str, service: TrackerService = Depends(get_service)) -> DailyTaskOut:
    return DailyTaskOut.from_entity(service.get_daily_task(task_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=DailyTaskOut,
    summary="Edit task",
    description="Change title, type or current reward. The original reward and the task date never change.",
    responses={404: {"description": "Task not found"}},
)
def update_task(
    task_id: str,
    payload: DailyTaskUpdate,
    service: TrackerService = Depends(get_service),
) -> DailyTaskOut:
    updated = service.update_daily_task(task_id, payload.model_dump(exclude_unset=True))
    return DailyTaskOut.from_entity(updated)


# PUBLIC_INTERFACE
@router.post(
    "/{task_id}/toggle",
    response_model=DailyTaskOut,
    summary="Toggle completion",
    description="Flip the completion flag; the completion timestamp is set or cleared accordingly.",
    responses={404: {"description": "Task not found"}},
)
def toggle_task(task_id: str, service: TrackerService = Depends(get_service)) -> DailyTaskOut:
    return DailyTaskOut.from_entity(service.toggle_task_completion(task_id))


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete task",
    description="Delete a task. Fixed tasks require confirm=true.",
    responses={
        204: {"description": "Task deleted"},
        404: {"description": "Task not found"},
        409: {"description": "Fixed task deletion not confirmed"},
    },
)
def delete_task(
    task_id: str,
    confirm: bool = Query(False, description="Confirm deletion of a fixed task"),
    service: TrackerService = Depends(get_service),
) -> None:
    service.delete_daily_task(task_id, confirmed=confirm)
    return None
