from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_service
from ..models import ExpenseCategory
from ..schemas import ExpenseCreate, ExpenseOut, ExpensePage, ExpenseUpdate
from ..service import TrackerService
from ..utils import pagination_envelope

router = APIRouter(
    prefix="/api/v1/expenses",
    tags=["expenses"],
)


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=ExpensePage,
    summary="List expenses",
    description=(
        "List expenses newest first.\n\n"
        "Query parameters:\n"
        "- category: filter by category\n"
        "- start / end: half-open date range [start, end)\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)"
    ),
)
def list_expenses(
    category: Optional[ExpenseCategory] = Query(None, description="Filter by category"),
    start: Optional[datetime] = Query(None, description="Only expenses at or after this time"),
    end: Optional[datetime] = Query(None, description="Only expenses before this time"),
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    service: TrackerService = Depends(get_service),
) -> ExpensePage:
    items, total = service.list_expenses(category=category, start=start, end=end, limit=limit, offset=offset)
    envelope = pagination_envelope(
        items=[ExpenseOut(**e) for e in items],
        total=total,
        limit=limit,
        offset=offset,
    )
    return ExpensePage(**envelope)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=ExpenseOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record expense",
)
def record_expense(payload: ExpenseCreate, service: TrackerService = Depends(get_service)) -> ExpenseOut:
    created = service.record_expense(
        title=payload.title,
        amount=payload.amount,
        category=payload.category,
        date=payload.date,
    )
    return ExpenseOut(**created)


# PUBLIC_INTERFACE
@router.get(
    "/{expense_id}",
    response_model=ExpenseOut,
    summary="Get expense",
    responses={404: {"description": "Expense not found"}},
)
def get_expense(expense_id: str, service: TrackerService = Depends(get_service)) -> ExpenseOut:
    return ExpenseOut(**service.get_expense(expense_id))


# PUBLIC_INTERFACE
@router.patch(
    "/{expense_id}",
    response_model=ExpenseOut,
    summary="Edit expense",
    responses={404: {"description": "Expense not found"}},
)
def update_expense(
    expense_id: str,
    payload: ExpenseUpdate,
    service: TrackerService = Depends(get_service),
) -> ExpenseOut:
    return ExpenseOut(**service.update_expense(expense_id, payload.model_dump(exclude_unset=True)))


# PUBLIC_INTERFACE
@router.delete(
    "/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete expense",
    responses={404: {"description": "Expense not found"}},
)
def delete_expense(expense_id: str, service: TrackerService = Depends(get_service)) -> None:
    service.delete_expense(expense_id)
    return None
