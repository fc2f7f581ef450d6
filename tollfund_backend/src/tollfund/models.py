from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional, TypedDict


class TaskType(str, Enum):
    """Kind of habit a daily task or template belongs to."""

    EXERCISE = "exercise"
    READING = "reading"
    MEDITATION = "meditation"
    STUDY = "study"
    WORK = "work"
    HEALTH = "health"
    HOBBY = "hobby"
    OTHER = "other"


class ExpenseCategory(str, Enum):
    """What a reward was spent on."""

    GAMES = "games"
    TOYS = "toys"
    BOOKS = "books"
    ENTERTAINMENT = "entertainment"
    ELECTRONICS = "electronics"
    CLOTHES = "clothes"
    FOOD = "food"
    OTHER = "other"


class BigTaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EntityKind(str, Enum):
    """Persisted record kinds; each maps to one collection/table in a store."""

    DAILY_TASK = "daily_tasks"
    TEMPLATE = "task_templates"
    BIG_TASK = "big_tasks"
    EXPENSE = "expenses"


# PUBLIC_INTERFACE
class DailyTaskEntity(TypedDict):
    """
    A task instance for one calendar day.

    Fields:
    - id: UUID4 string
    - title: Task title; for fixed tasks this is the join key against templates
    - task_type: TaskType value
    - reward_amount: Current reward, editable
    - original_reward_amount: Reward at creation time, never changed afterwards
    - is_completed: Completion flag
    - completed_date: Completion timestamp, set iff is_completed
    - is_fixed: True when materialized from a template
    - task_date: Day the task belongs to, normalized to 00:00
    - created_date: Creation timestamp
    - template_id: Template that materialized this instance, if any
    """

    id: str
    title: str
    task_type: str
    reward_amount: float
    original_reward_amount: float
    is_completed: bool
    completed_date: Optional[datetime]
    is_fixed: bool
    task_date: datetime
    created_date: datetime
    template_id: Optional[str]


# PUBLIC_INTERFACE
class TaskTemplateEntity(TypedDict):
    """A recurring task definition materialized once per day while active."""

    id: str
    title: str
    task_type: str
    reward_amount: float
    is_active: bool


# PUBLIC_INTERFACE
class BigTaskEntity(TypedDict):
    """A long-running challenge with fractional progress."""

    id: str
    title: str
    description: Optional[str]
    reward_amount: float
    progress: float
    status: str
    created_date: datetime
    target_date: Optional[datetime]
    completed_date: Optional[datetime]


# PUBLIC_INTERFACE
class ExpenseEntity(TypedDict):
    """Money spent from the reward balance."""

    id: str
    title: str
    amount: float
    category: str
    date: datetime


# Field name -> storage type for every persisted kind. Stores use this to build
# tables, convert rows and reject unknown filter/sort fields.
ENTITY_FIELDS: Dict[EntityKind, Dict[str, type]] = {
    EntityKind.DAILY_TASK: {
        "id": str,
        "title": str,
        "task_type": str,
        "reward_amount": float,
        "original_reward_amount": float,
        "is_completed": bool,
        "completed_date": datetime,
        "is_fixed": bool,
        "task_date": datetime,
        "created_date": datetime,
        "template_id": str,
    },
    EntityKind.TEMPLATE: {
        "id": str,
        "title": str,
        "task_type": str,
        "reward_amount": float,
        "is_active": bool,
    },
    EntityKind.BIG_TASK: {
        "id": str,
        "title": str,
        "description": str,
        "reward_amount": float,
        "progress": float,
        "status": str,
        "created_date": datetime,
        "target_date": datetime,
        "completed_date": datetime,
    },
    EntityKind.EXPENSE: {
        "id": str,
        "title": str,
        "amount": float,
        "category": str,
        "date": datetime,
    },
}


# PUBLIC_INTERFACE
def status_for_progress(progress: float) -> BigTaskStatus:
    """Derive a big task's status from its progress fraction."""
    if progress <= 0:
        return BigTaskStatus.NOT_STARTED
    if progress >= 1.0:
        return BigTaskStatus.COMPLETED
    return BigTaskStatus.IN_PROGRESS
