"""
Command side of the tracker: every write goes through TrackerService.

The service owns one store handle plus the recurrence engine and ledger built
on it, serializes multi-step writes, and persists through save(), which rolls
back and retries once before reporting SaveFailedError. Edits that arrive in
bursts (progress sliders) are committed through a debounced auto-save that is
flushed on close().
"""

from __future__ import annotations

import uuid
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from .debounce import Debouncer
from .ledger import LedgerAggregator
from .models import (
    BigTaskStatus,
    EntityKind,
    ExpenseCategory,
    TaskType,
    status_for_progress,
)
from .recurrence import MaterializationResult, PrunePolicy, RecurrenceEngine
from .settings import Settings
from .store import Criteria, DuplicateError, Entity, NotFoundError, Store, StoreError, plain
from .utils import DayInput, start_of_day

logger = structlog.get_logger(__name__)

_DAILY_TASK_EDITABLE = {"title", "task_type", "reward_amount"}
_TEMPLATE_EDITABLE = {"title", "task_type", "reward_amount", "is_active"}
_EXPENSE_EDITABLE = {"title", "amount", "category", "date"}
_BIG_TASK_EDITABLE = {"title", "description", "reward_amount", "progress", "status", "target_date"}


class ServiceError(Exception):
    """Base exception for rejected commands."""


class ConfirmationRequiredError(ServiceError):
    """Deleting a fixed task needs explicit confirmation."""


class SaveFailedError(StoreError):
    """
    Staged changes could not be persisted. The store was rolled back, so it is
    consistent but the caller's change is lost.
    """


def _check_fields(changes: Mapping[str, Any], allowed: set) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValueError(f"Fields cannot be changed: {sorted(unknown)}")


class TrackerService:
    """
    Query/command facade used by the HTTP layer and tests.

    Args:
        store: Store handle; owned by the caller, closed by close().
        settings: Prune policy, auto-save delay and rollup defaults.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        store: Store,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        settings = settings or Settings()
        self.store = store
        self._clock = clock
        self._lock = RLock()
        self.monthly_rollup_months = settings.monthly_rollup_months
        self.engine = RecurrenceEngine(
            store,
            prune_policy=PrunePolicy(settings.prune_policy),
            clock=clock,
            commit=self._persist,
        )
        self.ledger = LedgerAggregator(store, clock=clock)
        self._autosave = Debouncer(settings.autosave_delay_seconds, self._autosave_flush)
        # Progress edits staged for the debounced save: big task id -> progress
        self._pending_progress: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    # PUBLIC_INTERFACE
    def save(self) -> bool:
        """
        Commit staged changes.

        On failure the store is rolled back and the commit retried once. Progress
        edits still waiting for their debounced save are staged again after the
        rollback, so they go out with the retry. Returns True when the staged
        changes were persisted, False when the caller's changes had to be
        discarded to get the store committable again. Raises SaveFailedError if
        the retry fails too.
        """
        with self._lock:
            if not self.store.has_changes:
                return True
            try:
                self.store.commit()
                self._pending_progress.clear()
                return True
            except StoreError as exc:
                logger.error("save_failed", error=str(exc))
                self.store.rollback()
            try:
                self._restage_pending_progress()
                self.store.commit()
            except StoreError as exc:
                logger.error("save_retry_failed", error=str(exc))
                raise SaveFailedError(f"could not save changes: {exc}") from exc
            self._pending_progress.clear()
            logger.warning("save_rolled_back")
            return False

    def _restage_pending_progress(self) -> None:
        for task_id, progress in self._pending_progress.items():
            task = self.store.get(EntityKind.BIG_TASK, task_id)
            if task is None:
                continue
            self._apply_big_task_changes(task, {"progress": progress})
            self.store.update(EntityKind.BIG_TASK, task)
            logger.info("pending_progress_restaged", task_id=task_id, progress=progress)

    def _persist(self) -> None:
        if not self.save():
            raise SaveFailedError("changes were discarded after a failed commit")

    def _autosave_flush(self) -> None:
        # Runs on a timer thread with no caller to report to
        try:
            if not self.save():
                # Only the re-staged progress edits were in flight, and the retry wrote them
                logger.warning("autosave_recovered_after_rollback")
        except SaveFailedError as exc:
            logger.error("autosave_failed", error=str(exc))

    # PUBLIC_INTERFACE
    def close(self) -> None:
        """Flush any pending debounced save, then release the store."""
        if self._autosave.flush():
            logger.info("autosave_flushed_on_close")
        self.store.close()

    def today(self) -> datetime:
        return start_of_day(self._clock())

    def _require(self, kind: EntityKind, entity_id: str, label: str) -> Entity:
        entity = self.store.get(kind, entity_id)
        if entity is None:
            raise NotFoundError(f"{label} not found")
        return entity

    # ------------------------------------------------------------------
    # Daily tasks
    # ------------------------------------------------------------------

    # PUBLIC_INTERFACE
    def ensure_instances_for_day(self, day: DayInput) -> MaterializationResult:
        with self._lock:
            return self.engine.ensure_instances_for_day(day)

    # PUBLIC_INTERFACE
    def tasks_for_day(self, day: DayInput) -> List[Entity]:
        """Tasks dated `day`: fixed tasks first, then in creation order."""
        return self.store.fetch(
            EntityKind.DAILY_TASK,
            Criteria(equals={"task_date": start_of_day(day)}, sort="-is_fixed,created_date"),
        )

    # PUBLIC_INTERFACE
    def get_daily_task(self, task_id: str) -> Entity:
        return self._require(EntityKind.DAILY_TASK, task_id, "Task")

    # PUBLIC_INTERFACE
    def create_ad_hoc_task(
        self,
        title: str,
        task_type: TaskType,
        amount: float,
        day: Optional[DayInput] = None,
    ) -> Entity:
        if amount < 0:
            raise ValueError("reward amount must be >= 0")
        task_date = start_of_day(day if day is not None else self._clock())
        with self._lock:
            task = self.store.insert(
                EntityKind.DAILY_TASK,
                {
                    "id": str(uuid.uuid4()),
                    "title": title,
                    "task_type": plain(task_type),
                    "reward_amount": amount,
                    "original_reward_amount": amount,
                    "is_completed": False,
                    "completed_date": None,
                    "is_fixed": False,
                    "task_date": task_date,
                    "created_date": self._clock(),
                    "template_id": None,
                },
            )
            self._persist()
        logger.info("task_created", task_id=task["id"], title=title, day=task_date.date().isoformat())
        return task

    # PUBLIC_INTERFACE
    def update_daily_task(self, task_id: str, changes: Mapping[str, Any]) -> Entity:
        """Edit title, type or current reward. The original reward and date stay frozen."""
        _check_fields(changes, _DAILY_TASK_EDITABLE)
        with self._lock:
            task = self.get_daily_task(task_id)
            new_title = changes.get("title")
            if task["is_fixed"] and new_title is not None and new_title != task["title"]:
                raise ValueError("The title of a fixed task follows its template; rename the template instead")
            for name, value in changes.items():
                if value is not None:
                    task[name] = plain(value)
            self.store.update(EntityKind.DAILY_TASK, task)
            self._persist()
            return task

    # PUBLIC_INTERFACE
    def toggle_task_completion(self, task_id: str) -> Entity:
        with self._lock:
            task = self.get_daily_task(task_id)
            task["is_completed"] = not task["is_completed"]
            task["completed_date"] = self._clock() if task["is_completed"] else None
            self.store.update(EntityKind.DAILY_TASK, task)
            self._persist()
        logger.info("task_completion_toggled", task_id=task_id, is_completed=task["is_completed"])
        return task

    # PUBLIC_INTERFACE
    def delete_daily_task(self, task_id: str, confirmed: bool = False) -> None:
        with self._lock:
            task = self.get_daily_task(task_id)
            if task["is_fixed"] and not confirmed:
                raise ConfirmationRequiredError("Deleting a fixed task requires confirmation")
            self.store.delete(EntityKind.DAILY_TASK, task_id)
            self._persist()
        logger.info("task_deleted", task_id=task_id, is_fixed=task["is_fixed"])

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    # PUBLIC_INTERFACE
    def list_templates(self) -> List[Entity]:
        return self.store.fetch(EntityKind.TEMPLATE, Criteria(sort="title"))

    # PUBLIC_INTERFACE
    def get_template(self, template_id: str) -> Entity:
        return self._require(EntityKind.TEMPLATE, template_id, "Template")

    # PUBLIC_INTERFACE
    def upsert_template(self, title: str, task_type: TaskType, amount: float, is_active: bool = True) -> Entity:
        """
        Create the template named `title`, or update it if it exists.

        A changed reward only affects days materialized after this call.
        """
        if amount < 0:
            raise ValueError("reward amount must be >= 0")
        with self._lock:
            existing = self.store.fetch(EntityKind.TEMPLATE, Criteria(equals={"title": title}))
            if existing:
                template = existing[0]
                template.update(task_type=plain(task_type), reward_amount=amount, is_active=is_active)
                self.store.update(EntityKind.TEMPLATE, template)
            else:
                template = self.store.insert(
                    EntityKind.TEMPLATE,
                    {
                        "id": str(uuid.uuid4()),
                        "title": title,
                        "task_type": plain(task_type),
                        "reward_amount": amount,
                        "is_active": is_active,
                    },
                )
            self._persist()
        logger.info("template_upserted", template_id=template["id"], title=title, is_active=is_active)
        return template

    # PUBLIC_INTERFACE
    def update_template(self, template_id: str, changes: Mapping[str, Any]) -> Entity:
        _check_fields(changes, _TEMPLATE_EDITABLE)
        with self._lock:
            template = self.get_template(template_id)
            new_title = changes.get("title")
            if new_title is not None and new_title != template["title"]:
                if self.store.count(EntityKind.TEMPLATE, Criteria(equals={"title": new_title})):
                    raise DuplicateError(f"A template named {new_title!r} already exists")
            for name, value in changes.items():
                if value is not None:
                    template[name] = plain(value)
            self.store.update(EntityKind.TEMPLATE, template)
            self._persist()
            return template

    # PUBLIC_INTERFACE
    def delete_template(self, template_id: str) -> None:
        """Delete a template. Already materialized tasks are kept."""
        with self._lock:
            self.get_template(template_id)
            self.store.delete(EntityKind.TEMPLATE, template_id)
            self._persist()

    # PUBLIC_INTERFACE
    def seed_default_templates(self) -> int:
        with self._lock:
            return self.engine.seed_default_templates()

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    # PUBLIC_INTERFACE
    def record_expense(
        self,
        title: str,
        amount: float,
        category: ExpenseCategory,
        date: Optional[datetime] = None,
    ) -> Entity:
        if amount <= 0:
            raise ValueError("expense amount must be > 0")
        with self._lock:
            expense = self.store.insert(
                EntityKind.EXPENSE,
                {
                    "id": str(uuid.uuid4()),
                    "title": title,
                    "amount": amount,
                    "category": plain(category),
                    "date": date or self._clock(),
                },
            )
            self._persist()
        logger.info("expense_recorded", expense_id=expense["id"], amount=amount, category=expense["category"])
        return expense

    # PUBLIC_INTERFACE
    def get_expense(self, expense_id: str) -> Entity:
        return self._require(EntityKind.EXPENSE, expense_id, "Expense")

    # PUBLIC_INTERFACE
    def update_expense(self, expense_id: str, changes: Mapping[str, Any]) -> Entity:
        _check_fields(changes, _EXPENSE_EDITABLE)
        amount = changes.get("amount")
        if amount is not None and amount <= 0:
            raise ValueError("expense amount must be > 0")
        with self._lock:
            expense = self.get_expense(expense_id)
            for name, value in changes.items():
                if value is not None:
                    expense[name] = plain(value)
            self.store.update(EntityKind.EXPENSE, expense)
            self._persist()
            return expense

    # PUBLIC_INTERFACE
    def delete_expense(self, expense_id: str) -> None:
        with self._lock:
            self.get_expense(expense_id)
            self.store.delete(EntityKind.EXPENSE, expense_id)
            self._persist()

    # PUBLIC_INTERFACE
    def list_expenses(
        self,
        category: Optional[ExpenseCategory] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Entity], int]:
        """Expenses newest first, optionally filtered by category and [start, end)."""
        equals: Dict[str, Any] = {}
        if category is not None:
            equals["category"] = category
        between = ("date", start, end) if (start or end) else None
        items = self.store.fetch(EntityKind.EXPENSE, Criteria(equals=equals, between=between, sort="-date"))
        first = max(offset, 0)
        return items[first:first + max(limit, 0)], len(items)

    # ------------------------------------------------------------------
    # Big tasks
    # ------------------------------------------------------------------

    # PUBLIC_INTERFACE
    def list_big_tasks(self, status: Optional[BigTaskStatus] = None) -> List[Entity]:
        equals = {"status": status} if status is not None else {}
        return self.store.fetch(EntityKind.BIG_TASK, Criteria(equals=equals, sort="-created_date"))

    # PUBLIC_INTERFACE
    def get_big_task(self, task_id: str) -> Entity:
        return self._require(EntityKind.BIG_TASK, task_id, "Challenge")

    # PUBLIC_INTERFACE
    def create_big_task(
        self,
        title: str,
        reward_amount: float,
        description: Optional[str] = None,
        target_date: Optional[datetime] = None,
    ) -> Entity:
        if reward_amount < 0:
            raise ValueError("reward amount must be >= 0")
        with self._lock:
            task = self.store.insert(
                EntityKind.BIG_TASK,
                {
                    "id": str(uuid.uuid4()),
                    "title": title,
                    "description": description,
                    "reward_amount": reward_amount,
                    "progress": 0.0,
                    "status": BigTaskStatus.NOT_STARTED.value,
                    "created_date": self._clock(),
                    "target_date": target_date,
                    "completed_date": None,
                },
            )
            self._persist()
        logger.info("challenge_created", task_id=task["id"], title=title)
        return task

    def _apply_big_task_changes(self, task: Entity, changes: Mapping[str, Any]) -> None:
        previous = BigTaskStatus(task["status"])
        for name in ("title", "reward_amount", "target_date"):
            if changes.get(name) is not None:
                task[name] = plain(changes[name])
        if "description" in changes:
            task["description"] = changes["description"]

        explicit = changes.get("status")
        if changes.get("progress") is not None:
            task["progress"] = min(max(float(changes["progress"]), 0.0), 1.0)

        if explicit is not None:
            status = BigTaskStatus(explicit)
            if status is BigTaskStatus.COMPLETED:
                task["progress"] = 1.0
            elif status is BigTaskStatus.NOT_STARTED:
                task["progress"] = 0.0
        elif changes.get("progress") is not None:
            status = status_for_progress(task["progress"])
        else:
            status = previous

        task["status"] = status.value
        if status is BigTaskStatus.COMPLETED:
            if task["completed_date"] is None:
                task["completed_date"] = self._clock()
        else:
            task["completed_date"] = None

        if status is not previous:
            logger.info("challenge_status_changed", task_id=task["id"], previous=previous.value, status=status.value)

    # PUBLIC_INTERFACE
    def update_big_task(self, task_id: str, changes: Mapping[str, Any]) -> Entity:
        _check_fields(changes, _BIG_TASK_EDITABLE)
        with self._lock:
            task = self.get_big_task(task_id)
            self._apply_big_task_changes(task, changes)
            self.store.update(EntityKind.BIG_TASK, task)
            self._persist()
            return task

    # PUBLIC_INTERFACE
    def set_big_task_progress(self, task_id: str, progress: float) -> Entity:
        """
        Stage a progress change and schedule a debounced save.

        Readers see the new value immediately; the commit happens after the
        quiet period or on close(), whichever comes first.
        """
        if not 0.0 <= progress <= 1.0:
            raise ValueError("progress must be between 0 and 1")
        with self._lock:
            task = self.get_big_task(task_id)
            self._apply_big_task_changes(task, {"progress": progress})
            self.store.update(EntityKind.BIG_TASK, task)
            self._pending_progress[task_id] = task["progress"]
        # Outside the service lock: the timer thread takes the debouncer lock first
        self._autosave.trigger()
        return task

    # PUBLIC_INTERFACE
    def delete_big_task(self, task_id: str) -> None:
        with self._lock:
            self.get_big_task(task_id)
            self.store.delete(EntityKind.BIG_TASK, task_id)
            self._persist()
