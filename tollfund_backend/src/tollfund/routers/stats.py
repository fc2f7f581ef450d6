from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_service
from ..schemas import BalanceOut, CategoryExpense, CompletionRates, DashboardStats, MonthlyData
from ..service import TrackerService

router = APIRouter(
    prefix="/api/v1/stats",
    tags=["stats"],
)


# PUBLIC_INTERFACE
@router.get("/dashboard", response_model=DashboardStats, summary="Dashboard numbers")
def dashboard(service: TrackerService = Depends(get_service)) -> DashboardStats:
    return service.ledger.dashboard_stats()


# PUBLIC_INTERFACE
@router.get("/balance", response_model=BalanceOut, summary="Income, expense and balance")
def balance(service: TrackerService = Depends(get_service)) -> BalanceOut:
    income = service.ledger.total_income()
    expense = service.ledger.total_expense()
    return BalanceOut(total_income=income, total_expense=expense, total_balance=income - expense)


# PUBLIC_INTERFACE
@router.get(
    "/categories",
    response_model=List[CategoryExpense],
    summary="Expense by category",
    description="Per-category totals and percentages, largest first. Empty categories are omitted.",
)
def categories(service: TrackerService = Depends(get_service)) -> List[CategoryExpense]:
    return service.ledger.category_expenses()


# PUBLIC_INTERFACE
@router.get(
    "/monthly",
    response_model=List[MonthlyData],
    summary="Monthly income and expense",
    description="The most recent N calendar months including the current one, oldest first.",
)
def monthly(
    months: Optional[int] = Query(None, ge=1, le=120, description="Number of months; server default when omitted"),
    service: TrackerService = Depends(get_service),
) -> List[MonthlyData]:
    return service.ledger.monthly_rollup(months if months is not None else service.monthly_rollup_months)


# PUBLIC_INTERFACE
@router.get("/completion", response_model=CompletionRates, summary="Task completion rates")
def completion(service: TrackerService = Depends(get_service)) -> CompletionRates:
    return service.ledger.completion_rates()
