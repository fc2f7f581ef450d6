"""
Daily materialization of recurring task templates.

Each active template yields exactly one fixed DailyTask per calendar day. The
template's reward is copied into the instance when it is created and never
refreshed afterwards, so editing a template only affects days that have not
been materialized yet.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from .models import DailyTaskEntity, EntityKind, TaskTemplateEntity, TaskType
from .store import Criteria, Store
from .utils import DayInput, start_of_day

logger = structlog.get_logger(__name__)


class PrunePolicy(str, Enum):
    """What to do with a day's fixed tasks whose template is no longer active."""

    NONE = "none"
    INACTIVE_TEMPLATES = "inactive_templates"


# Built-in templates offered on first use: (title, type, reward); the first
# DEFAULT_ACTIVE_COUNT start active.
DEFAULT_TEMPLATES: List[Tuple[str, TaskType, float]] = [
    ("Sleep before midnight", TaskType.HEALTH, 2.0),
    ("No taxi when going out", TaskType.HEALTH, 1.0),
    ("Light lunch", TaskType.HEALTH, 5.0),
    ("Exercise > 30 mins", TaskType.EXERCISE, 5.0),
    ("Read > 2 pages", TaskType.READING, 5.0),
    ("Drum practice > 30 mins", TaskType.HOBBY, 2.0),
    ("Guitar practice > 30 mins", TaskType.HOBBY, 5.0),
    ("Write down something learned", TaskType.STUDY, 5.0),
    ("Write down an idea", TaskType.STUDY, 2.0),
    ("Climb stairs > 5 floors", TaskType.EXERCISE, 1.0),
]
DEFAULT_ACTIVE_COUNT = 3


@dataclass(frozen=True)
class MaterializationResult:
    day: datetime
    created: int = 0
    pruned: int = 0
    duplicates_removed: int = 0


class RecurrenceEngine:
    """
    Materializes fixed task instances from active templates.

    Args:
        store: Store holding templates and daily tasks.
        prune_policy: Whether to drop a day's fixed tasks whose template was deactivated.
        clock: Returns "now"; used for created_date.
        commit: Called once per run to persist changes; defaults to store.commit.
    """

    def __init__(
        self,
        store: Store,
        prune_policy: PrunePolicy = PrunePolicy.INACTIVE_TEMPLATES,
        clock: Callable[[], datetime] = datetime.now,
        commit: Optional[Callable[[], None]] = None,
    ) -> None:
        self._store = store
        self._prune_policy = PrunePolicy(prune_policy)
        self._clock = clock
        self._commit = commit or store.commit

    # PUBLIC_INTERFACE
    def ensure_instances_for_day(self, day: DayInput) -> MaterializationResult:
        """
        Guarantee one fixed instance per active template for `day`.

        Idempotent: a second call for the same day creates nothing. Existing
        instances are never modified; only instances dated exactly `day` can be
        pruned or de-duplicated.
        """
        day_start = start_of_day(day)
        templates: List[TaskTemplateEntity] = self._store.fetch(
            EntityKind.TEMPLATE, Criteria(equals={"is_active": True}, sort="title")
        )  # type: ignore[assignment]

        # One template per title; titles are the join key
        by_title: Dict[str, TaskTemplateEntity] = {}
        for template in templates:
            if template["title"] in by_title:
                logger.warning("duplicate_template_title", title=template["title"], template_id=template["id"])
                continue
            by_title[template["title"]] = template

        pruned = 0
        if self._prune_policy is PrunePolicy.INACTIVE_TEMPLATES:
            pruned = self._prune(day_start, set(by_title))

        created = 0
        duplicates = 0
        now = self._clock()
        for title, template in by_title.items():
            existing = self._store.fetch(
                EntityKind.DAILY_TASK,
                Criteria(equals={"is_fixed": True, "task_date": day_start, "title": title}, sort="created_date"),
            )
            if not existing:
                self._store.insert(EntityKind.DAILY_TASK, self._instance_from(template, day_start, now))
                created += 1
            elif len(existing) > 1:
                duplicates += self._drop_duplicates(existing)

        result = MaterializationResult(day=day_start, created=created, pruned=pruned, duplicates_removed=duplicates)
        if self._store.has_changes:
            self._commit()
        logger.info(
            "fixed_tasks_materialized",
            day=day_start.date().isoformat(),
            active_templates=len(by_title),
            created=created,
            pruned=pruned,
            duplicates_removed=duplicates,
        )
        return result

    def _instance_from(self, template: TaskTemplateEntity, day_start: datetime, now: datetime) -> DailyTaskEntity:
        return {
            "id": str(uuid.uuid4()),
            "title": template["title"],
            "task_type": template["task_type"],
            "reward_amount": template["reward_amount"],
            "original_reward_amount": template["reward_amount"],
            "is_completed": False,
            "completed_date": None,
            "is_fixed": True,
            "task_date": day_start,
            "created_date": now,
            "template_id": template["id"],
        }

    def _prune(self, day_start: datetime, active_titles: set) -> int:
        pruned = 0
        day_fixed = self._store.fetch(
            EntityKind.DAILY_TASK, Criteria(equals={"is_fixed": True, "task_date": day_start})
        )
        for task in day_fixed:
            # Completed tasks already paid out; keep them even if the template is off
            if task["title"] in active_titles or task["is_completed"]:
                continue
            self._store.delete(EntityKind.DAILY_TASK, task["id"])
            logger.info("fixed_task_pruned", title=task["title"], day=day_start.date().isoformat())
            pruned += 1
        return pruned

    def _drop_duplicates(self, existing: List[dict]) -> int:
        keep, extras = existing[0], existing[1:]
        for task in extras:
            self._store.delete(EntityKind.DAILY_TASK, task["id"])
        logger.warning(
            "duplicate_fixed_tasks_removed",
            title=keep["title"],
            day=keep["task_date"].date().isoformat(),
            kept_id=keep["id"],
            removed=len(extras),
        )
        return len(extras)

    # PUBLIC_INTERFACE
    def seed_default_templates(self) -> int:
        """
        Create the built-in templates when no template exists yet.

        Returns the number of templates created (0 if any template already existed).
        """
        if self._store.count(EntityKind.TEMPLATE) > 0:
            return 0
        for index, (title, task_type, amount) in enumerate(DEFAULT_TEMPLATES):
            self._store.insert(
                EntityKind.TEMPLATE,
                {
                    "id": str(uuid.uuid4()),
                    "title": title,
                    "task_type": task_type.value,
                    "reward_amount": amount,
                    "is_active": index < DEFAULT_ACTIVE_COUNT,
                },
            )
        self._commit()
        logger.info("default_templates_seeded", count=len(DEFAULT_TEMPLATES))
        return len(DEFAULT_TEMPLATES)
