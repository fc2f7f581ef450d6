"""
Read-side projections over the store: income, expense, balance and their breakdowns.

Income is the reward of every completed daily task plus every completed big
task; expense is the sum of all expenses. Nothing here writes to the store or
caches results between calls.

Store failures never escape: a failed sub-query counts as an empty result, so
an unavailable store reads as a zero balance rather than an error page.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

import structlog

from .models import BigTaskStatus, EntityKind, ExpenseCategory
from .schemas import CategoryExpense, CompletionRates, DashboardStats, MonthlyData
from .store import Criteria, Entity, Store, StoreError
from .utils import month_bounds

logger = structlog.get_logger(__name__)

_COMPLETED_DAILY = {"is_completed": True}
_COMPLETED_BIG = {"status": BigTaskStatus.COMPLETED.value}


class LedgerAggregator:
    """Pure, pull-based aggregation queries."""

    def __init__(self, store: Store, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._clock = clock

    def _fetch_or_empty(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> List[Entity]:
        try:
            return self._store.fetch(kind, criteria)
        except StoreError as exc:
            logger.warning("ledger_query_failed", kind=kind.value, error=str(exc))
            return []

    def _count_or_zero(self, kind: EntityKind, criteria: Optional[Criteria] = None) -> int:
        try:
            return self._store.count(kind, criteria)
        except StoreError as exc:
            logger.warning("ledger_count_failed", kind=kind.value, error=str(exc))
            return 0

    def _sum(self, kind: EntityKind, field: str, criteria: Optional[Criteria] = None) -> float:
        return float(sum(row[field] for row in self._fetch_or_empty(kind, criteria)))

    # PUBLIC_INTERFACE
    def total_income(self) -> float:
        """Rewards of all completed daily tasks and completed big tasks."""
        daily = self._sum(EntityKind.DAILY_TASK, "reward_amount", Criteria(equals=_COMPLETED_DAILY))
        big = self._sum(EntityKind.BIG_TASK, "reward_amount", Criteria(equals=_COMPLETED_BIG))
        return daily + big

    # PUBLIC_INTERFACE
    def total_expense(self) -> float:
        return self._sum(EntityKind.EXPENSE, "amount")

    # PUBLIC_INTERFACE
    def total_balance(self) -> float:
        """Income minus expense; negative when more was spent than earned."""
        return self.total_income() - self.total_expense()

    # PUBLIC_INTERFACE
    def income_between(self, start: Optional[datetime], end: Optional[datetime]) -> float:
        """
        Rewards whose completion timestamp falls in [start, end), daily and big
        tasks computed separately and added.
        """
        daily = self._sum(
            EntityKind.DAILY_TASK,
            "reward_amount",
            Criteria(equals=_COMPLETED_DAILY, between=("completed_date", start, end)),
        )
        big = self._sum(
            EntityKind.BIG_TASK,
            "reward_amount",
            Criteria(equals=_COMPLETED_BIG, between=("completed_date", start, end)),
        )
        return daily + big

    # PUBLIC_INTERFACE
    def expense_between(self, start: Optional[datetime], end: Optional[datetime]) -> float:
        return self._sum(EntityKind.EXPENSE, "amount", Criteria(between=("date", start, end)))

    # PUBLIC_INTERFACE
    def dashboard_stats(self) -> DashboardStats:
        income = self.total_income()
        expense = self.total_expense()
        month_start, month_end = month_bounds(self._clock())
        return DashboardStats(
            total_balance=income - expense,
            total_income=income,
            total_expense=expense,
            daily_tasks_completed=self._count_or_zero(EntityKind.DAILY_TASK, Criteria(equals=_COMPLETED_DAILY)),
            big_tasks_completed=self._count_or_zero(EntityKind.BIG_TASK, Criteria(equals=_COMPLETED_BIG)),
            expense_this_month=self.expense_between(month_start, month_end),
            income_this_month=self.income_between(month_start, month_end),
        )

    # PUBLIC_INTERFACE
    def category_expenses(self) -> List[CategoryExpense]:
        """
        Expense totals per category with their share of all spending.

        Zero-amount categories are omitted. Sorted by amount, largest first;
        equal amounts keep category declaration order.
        """
        expenses = self._fetch_or_empty(EntityKind.EXPENSE)
        total = float(sum(e["amount"] for e in expenses))

        per_category = {category: 0.0 for category in ExpenseCategory}
        for expense in expenses:
            try:
                category = ExpenseCategory(expense["category"])
            except ValueError:
                category = ExpenseCategory.OTHER
            per_category[category] += expense["amount"]

        result = [
            CategoryExpense(
                category=category,
                amount=amount,
                percentage=(amount / total) * 100 if total > 0 else 0.0,
            )
            for category, amount in per_category.items()
            if amount > 0
        ]
        result.sort(key=lambda c: c.amount, reverse=True)
        return result

    # PUBLIC_INTERFACE
    def monthly_rollup(self, months_back: int) -> List[MonthlyData]:
        """
        Income and expense for the `months_back` most recent calendar months,
        including the current one, oldest first.
        """
        if months_back <= 0:
            return []
        now = self._clock()
        data: List[MonthlyData] = []
        for offset in range(-(months_back - 1), 1):
            start, end = month_bounds(now, offset)
            data.append(
                MonthlyData(
                    month=start.strftime("%Y-%m"),
                    start=start,
                    end=end,
                    income=self.income_between(start, end),
                    expense=self.expense_between(start, end),
                )
            )
        return data

    # PUBLIC_INTERFACE
    def completion_rates(self) -> CompletionRates:
        daily_total = self._count_or_zero(EntityKind.DAILY_TASK)
        daily_done = self._count_or_zero(EntityKind.DAILY_TASK, Criteria(equals=_COMPLETED_DAILY))
        big_total = self._count_or_zero(EntityKind.BIG_TASK)
        big_done = self._count_or_zero(EntityKind.BIG_TASK, Criteria(equals=_COMPLETED_BIG))
        return CompletionRates(
            daily_tasks_total=daily_total,
            daily_tasks_completed=daily_done,
            daily_completion_rate=daily_done / daily_total if daily_total else 0.0,
            big_tasks_total=big_total,
            big_tasks_completed=big_done,
            big_task_completion_rate=big_done / big_total if big_total else 0.0,
        )
