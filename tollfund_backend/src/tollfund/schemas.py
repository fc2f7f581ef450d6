from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import BigTaskStatus, ExpenseCategory, TaskType
from .utils import DayInput, start_of_day, to_naive


def _clean_title(v: Optional[str]) -> Optional[str]:
    """
    Strip whitespace and enforce 1..200 length. None passes through for partial updates.
    """
    if v is None:
        return v
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("title length must be between 1 and 200 characters")
    return s


def _parse_day(value: Optional[DayInput]) -> Optional[datetime]:
    if value is None:
        return None
    return start_of_day(value)


# ---------------------------------------------------------------------------
# Daily tasks
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class DailyTaskCreate(BaseModel):
    """
    Schema for creating an ad hoc daily task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Clean the desk",
                "task_type": "other",
                "reward_amount": 3,
                "task_date": "2025-02-01",
            }
        }
    )

    title: str = Field(..., description="Task title", min_length=1, max_length=200)
    task_type: TaskType = Field(default=TaskType.OTHER, description="Kind of habit")
    reward_amount: float = Field(..., ge=0, description="Reward earned on completion")
    task_date: Optional[datetime] = Field(
        default=None,
        description="Day the task belongs to. Accepts ISO8601 date or datetime; defaults to today",
    )

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("task_date", mode="before")
    @classmethod
    def parse_task_date(cls, v: Optional[DayInput]) -> Optional[datetime]:
        """
        Normalize task_date from str/date/datetime to the start of that day.
        """
        return _parse_day(v)


# PUBLIC_INTERFACE
class DailyTaskUpdate(BaseModel):
    """
    Schema for editing a daily task. The task date and the original reward are
    frozen and cannot be changed.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    task_type: Optional[TaskType] = None
    reward_amount: Optional[float] = Field(default=None, ge=0)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)


# PUBLIC_INTERFACE
class DailyTaskOut(BaseModel):
    """
    Schema returned by the API for a daily task.
    """

    id: str
    title: str
    task_type: TaskType
    reward_amount: float
    original_reward_amount: float
    is_completed: bool
    completed_date: Optional[datetime] = None
    is_fixed: bool
    task_date: datetime
    created_date: datetime
    template_id: Optional[str] = None
    requires_delete_confirmation: bool = Field(
        default=False, description="True for fixed tasks; deleting them must be confirmed"
    )

    @classmethod
    def from_entity(cls, entity: dict) -> "DailyTaskOut":
        return cls(**entity, requires_delete_confirmation=bool(entity["is_fixed"]))


# PUBLIC_INTERFACE
class MaterializeRequest(BaseModel):
    """Day to materialize fixed tasks for; defaults to today."""

    day: Optional[datetime] = Field(default=None, description="ISO8601 date or datetime")

    @field_validator("day", mode="before")
    @classmethod
    def parse_day(cls, v: Optional[DayInput]) -> Optional[datetime]:
        return _parse_day(v)


# PUBLIC_INTERFACE
class MaterializeOut(BaseModel):
    day: datetime
    created: int
    pruned: int
    duplicates_removed: int
    tasks: List[DailyTaskOut]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class TemplateUpsert(BaseModel):
    """
    Create a template, or update the template with the same title.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"title": "Run 30min", "task_type": "exercise", "reward_amount": 20, "is_active": True}
        }
    )

    title: str = Field(..., min_length=1, max_length=200)
    task_type: TaskType = TaskType.OTHER
    reward_amount: float = Field(..., ge=0)
    is_active: bool = True

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]


# PUBLIC_INTERFACE
class TemplateUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    task_type: Optional[TaskType] = None
    reward_amount: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)


# PUBLIC_INTERFACE
class TemplateOut(BaseModel):
    id: str
    title: str
    task_type: TaskType
    reward_amount: float
    is_active: bool


# ---------------------------------------------------------------------------
# Big tasks
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class BigTaskCreate(BaseModel):
    """
    Schema for creating a long-running challenge. New challenges start at 0% progress.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    reward_amount: float = Field(..., ge=0)
    target_date: Optional[datetime] = Field(default=None, description="Optional target day")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("target_date", mode="before")
    @classmethod
    def parse_target_date(cls, v: Optional[DayInput]) -> Optional[datetime]:
        return _parse_day(v)


# PUBLIC_INTERFACE
class BigTaskUpdate(BaseModel):
    """
    Partial update of a challenge.

    When status is omitted it is derived from progress; an explicit status
    (e.g. cancelled) wins.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    reward_amount: Optional[float] = Field(default=None, ge=0)
    progress: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    status: Optional[BigTaskStatus] = None
    target_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)

    @field_validator("target_date", mode="before")
    @classmethod
    def parse_target_date(cls, v: Optional[DayInput]) -> Optional[datetime]:
        return _parse_day(v)


# PUBLIC_INTERFACE
class ProgressUpdate(BaseModel):
    progress: float = Field(..., ge=0.0, le=1.0, description="Fraction complete, 0..1")


# PUBLIC_INTERFACE
class BigTaskOut(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    reward_amount: float
    progress: float
    status: BigTaskStatus
    created_date: datetime
    target_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class ExpenseCreate(BaseModel):
    """
    Schema for recording an expense.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"title": "New game", "amount": 60, "category": "games", "date": "2025-02-01T18:30:00"}
        }
    )

    title: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., gt=0, description="Amount spent; must be positive")
    category: ExpenseCategory = ExpenseCategory.OTHER
    date: Optional[datetime] = Field(default=None, description="When the money was spent; defaults to now")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("date")
    @classmethod
    def localize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Offset-aware timestamps are stored as naive local time."""
        return to_naive(v)


# PUBLIC_INTERFACE
class ExpenseUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[float] = Field(default=None, gt=0)
    category: Optional[ExpenseCategory] = None
    date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)

    @field_validator("date")
    @classmethod
    def localize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive(v)


# PUBLIC_INTERFACE
class ExpenseOut(BaseModel):
    id: str
    title: str
    amount: float
    category: ExpenseCategory
    date: datetime


# PUBLIC_INTERFACE
class ExpensePage(BaseModel):
    """
    Envelope for paginated expense lists.
    """

    items: List[ExpenseOut] = Field(..., description="Expenses on this page, newest first")
    total: int = Field(..., description="Total number of expenses matching the query")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


# ---------------------------------------------------------------------------
# Ledger projections
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class DashboardStats(BaseModel):
    """
    Headline numbers for the dashboard. Recomputed on every request.
    """

    total_balance: float
    total_income: float
    total_expense: float
    daily_tasks_completed: int
    big_tasks_completed: int
    expense_this_month: float
    income_this_month: float


# PUBLIC_INTERFACE
class CategoryExpense(BaseModel):
    category: ExpenseCategory
    amount: float
    percentage: float = Field(..., description="Share of total expense, 0..100")


# PUBLIC_INTERFACE
class MonthlyData(BaseModel):
    month: str = Field(..., description="Calendar month as YYYY-MM")
    start: datetime
    end: datetime
    income: float
    expense: float


# PUBLIC_INTERFACE
class CompletionRates(BaseModel):
    daily_tasks_total: int
    daily_tasks_completed: int
    daily_completion_rate: float = Field(..., description="0..1; 0 when there are no tasks")
    big_tasks_total: int
    big_tasks_completed: int
    big_task_completion_rate: float = Field(..., description="0..1; 0 when there are no challenges")


# PUBLIC_INTERFACE
class BalanceOut(BaseModel):
    total_income: float
    total_expense: float
    total_balance: float


# PUBLIC_INTERFACE
class WelcomeFlag(BaseModel):
    welcome_shown: bool
