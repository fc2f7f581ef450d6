from datetime import datetime

import pytest

from tollfund.models import BigTaskStatus, EntityKind, ExpenseCategory, TaskType
from tollfund.service import ConfirmationRequiredError, SaveFailedError, TrackerService
from tollfund.settings import Settings
from tollfund.store import DuplicateError, InMemoryStore, NotFoundError, StoreUnavailableError


class FlakyStore(InMemoryStore):
    """Fails the next `failures` commits."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 0

    def commit(self) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailableError("disk full")
        super().commit()


class TestDailyTasks:
    def test_materialize_and_complete(self, service, clock):
        service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        result = service.ensure_instances_for_day(service.today())
        assert result.created == 1

        task = service.tasks_for_day(clock())[0]
        clock.advance(hours=8)
        done = service.toggle_task_completion(task["id"])

        assert done["is_completed"] is True
        assert done["completed_date"] == datetime(2024, 1, 1, 17, 30)
        assert service.ledger.total_balance() == 20.0
        assert service.store.has_changes is False

    def test_toggle_twice_clears_completion(self, service):
        task = service.create_ad_hoc_task("Tidy up", TaskType.OTHER, 3.0)
        service.toggle_task_completion(task["id"])
        undone = service.toggle_task_completion(task["id"])
        assert undone["is_completed"] is False
        assert undone["completed_date"] is None
        assert service.ledger.total_income() == 0.0

    def test_ad_hoc_task_defaults_to_today(self, service):
        task = service.create_ad_hoc_task("Tidy up", TaskType.OTHER, 3.0)
        assert task["task_date"] == datetime(2024, 1, 1)
        assert task["is_fixed"] is False
        assert task["original_reward_amount"] == 3.0

    def test_ad_hoc_task_rejects_negative_reward(self, service):
        with pytest.raises(ValueError):
            service.create_ad_hoc_task("Tidy up", TaskType.OTHER, -1.0)

    def test_fixed_tasks_listed_first(self, service, clock):
        service.create_ad_hoc_task("Early ad hoc", TaskType.OTHER, 1.0)
        clock.advance(minutes=5)
        service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        service.ensure_instances_for_day(service.today())
        titles = [t["title"] for t in service.tasks_for_day(service.today())]
        assert titles == ["Run 30min", "Early ad hoc"]

    def test_update_keeps_original_reward(self, service):
        task = service.create_ad_hoc_task("Tidy up", TaskType.OTHER, 3.0)
        updated = service.update_daily_task(task["id"], {"reward_amount": 8.0, "task_type": TaskType.HEALTH})
        assert updated["reward_amount"] == 8.0
        assert updated["original_reward_amount"] == 3.0
        assert updated["task_type"] == "health"

    def test_fixed_task_title_cannot_change(self, service):
        service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        service.ensure_instances_for_day(service.today())
        task = service.tasks_for_day(service.today())[0]
        with pytest.raises(ValueError):
            service.update_daily_task(task["id"], {"title": "Walk"})
        # Same title is not a rename
        assert service.update_daily_task(task["id"], {"title": "Run 30min"})["title"] == "Run 30min"

    def test_frozen_fields_rejected(self, service):
        task = service.create_ad_hoc_task("Tidy up", TaskType.OTHER, 3.0)
        with pytest.raises(ValueError):
            service.update_daily_task(task["id"], {"task_date": datetime(2024, 2, 1)})

    def test_delete_fixed_task_requires_confirmation(self, service):
        service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        service.ensure_instances_for_day(service.today())
        task = service.tasks_for_day(service.today())[0]

        with pytest.raises(ConfirmationRequiredError):
            service.delete_daily_task(task["id"])
        assert service.get_daily_task(task["id"])

        service.delete_daily_task(task["id"], confirmed=True)
        with pytest.raises(NotFoundError):
            service.get_daily_task(task["id"])

    def test_delete_ad_hoc_task_needs_no_confirmation(self, service):
        task = service.create_ad_hoc_task("Tidy up", TaskType.OTHER, 3.0)
        service.delete_daily_task(task["id"])
        assert service.tasks_for_day(service.today()) == []

    def test_missing_task(self, service):
        with pytest.raises(NotFoundError, match="Task not found"):
            service.toggle_task_completion("missing")


class TestTemplates:
    def test_upsert_by_title(self, service):
        first = service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        second = service.upsert_template("Run 30min", TaskType.EXERCISE, 25.0, is_active=False)
        assert first["id"] == second["id"]
        templates = service.list_templates()
        assert len(templates) == 1
        assert templates[0]["reward_amount"] == 25.0
        assert templates[0]["is_active"] is False

    def test_update_rejects_title_clash(self, service):
        service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        read = service.upsert_template("Read", TaskType.READING, 5.0)
        with pytest.raises(DuplicateError):
            service.update_template(read["id"], {"title": "Run 30min"})

    def test_delete_keeps_materialized_tasks(self, service):
        template = service.upsert_template("Run 30min", TaskType.EXERCISE, 20.0)
        service.ensure_instances_for_day(service.today())
        service.delete_template(template["id"])
        assert service.list_templates() == []
        assert len(service.tasks_for_day(service.today())) == 1

    def test_seed_defaults_once(self, service):
        assert service.seed_default_templates() == 10
        assert service.seed_default_templates() == 0


class TestExpenses:
    def test_record_defaults_date_to_now(self, service, clock):
        expense = service.record_expense("Game", 60.0, ExpenseCategory.GAMES)
        assert expense["date"] == clock()
        assert expense["category"] == "games"
        assert service.ledger.total_balance() == -60.0

    def test_amount_must_be_positive(self, service):
        with pytest.raises(ValueError):
            service.record_expense("Free", 0.0, ExpenseCategory.OTHER)
        expense = service.record_expense("Book", 10.0, ExpenseCategory.BOOKS)
        with pytest.raises(ValueError):
            service.update_expense(expense["id"], {"amount": -5.0})

    def test_list_filters_and_pages(self, service):
        for day in range(1, 6):
            service.record_expense(f"e{day}", 10.0, ExpenseCategory.FOOD, date=datetime(2024, 1, day))
        service.record_expense("game", 50.0, ExpenseCategory.GAMES, date=datetime(2024, 1, 3, 12))

        items, total = service.list_expenses(limit=2, offset=1)
        assert total == 6
        assert [e["title"] for e in items] == ["e4", "game"]

        food, food_total = service.list_expenses(category=ExpenseCategory.FOOD)
        assert food_total == 5

        ranged, ranged_total = service.list_expenses(start=datetime(2024, 1, 2), end=datetime(2024, 1, 4))
        assert ranged_total == 3
        assert [e["title"] for e in ranged] == ["game", "e3", "e2"]

    def test_delete(self, service):
        expense = service.record_expense("Game", 60.0, ExpenseCategory.GAMES)
        service.delete_expense(expense["id"])
        with pytest.raises(NotFoundError, match="Expense not found"):
            service.get_expense(expense["id"])


class TestBigTasks:
    def test_new_challenge_starts_not_started(self, service):
        task = service.create_big_task("Learn piano", 200.0)
        assert task["status"] == BigTaskStatus.NOT_STARTED.value
        assert task["progress"] == 0.0
        assert task["completed_date"] is None

    def test_status_follows_progress(self, service, clock):
        task = service.create_big_task("Learn piano", 200.0)

        halfway = service.update_big_task(task["id"], {"progress": 0.5})
        assert halfway["status"] == BigTaskStatus.IN_PROGRESS.value

        clock.advance(days=3)
        done = service.update_big_task(task["id"], {"progress": 1.0})
        assert done["status"] == BigTaskStatus.COMPLETED.value
        assert done["completed_date"] == clock()
        assert service.ledger.total_income() == 200.0

        reopened = service.update_big_task(task["id"], {"progress": 0.8})
        assert reopened["status"] == BigTaskStatus.IN_PROGRESS.value
        assert reopened["completed_date"] is None
        assert service.ledger.total_income() == 0.0

    def test_explicit_status_wins(self, service):
        task = service.create_big_task("Learn piano", 200.0)
        cancelled = service.update_big_task(task["id"], {"progress": 0.4, "status": BigTaskStatus.CANCELLED})
        assert cancelled["status"] == "cancelled"
        assert cancelled["progress"] == 0.4

        completed = service.update_big_task(task["id"], {"status": BigTaskStatus.COMPLETED})
        assert completed["progress"] == 1.0
        assert completed["completed_date"] is not None

    def test_list_by_status(self, service, clock):
        a = service.create_big_task("A", 1.0)
        clock.advance(minutes=1)
        service.create_big_task("B", 1.0)
        service.update_big_task(a["id"], {"progress": 1.0})
        assert [t["title"] for t in service.list_big_tasks()] == ["B", "A"]
        assert [t["title"] for t in service.list_big_tasks(BigTaskStatus.COMPLETED)] == ["A"]

    def test_progress_out_of_range(self, service):
        task = service.create_big_task("Learn piano", 200.0)
        with pytest.raises(ValueError):
            service.set_big_task_progress(task["id"], 1.5)

    def test_missing_challenge(self, service):
        with pytest.raises(NotFoundError, match="Challenge not found"):
            service.delete_big_task("missing")


class TestDebouncedProgress:
    def test_progress_is_visible_before_save_and_flushed_on_close(self, clock, tmp_path):
        store = InMemoryStore()
        settings = Settings(autosave_delay_seconds=60, preferences_path=str(tmp_path / "p.json"))
        service = TrackerService(store, settings, clock)
        task = service.create_big_task("Learn piano", 200.0)

        service.set_big_task_progress(task["id"], 0.3)
        service.set_big_task_progress(task["id"], 0.6)

        assert store.has_changes is True
        assert service.get_big_task(task["id"])["progress"] == 0.6

        service.close()
        store.rollback()
        saved = store.get(EntityKind.BIG_TASK, task["id"])
        assert saved["progress"] == 0.6
        assert saved["status"] == BigTaskStatus.IN_PROGRESS.value

    def test_zero_delay_saves_immediately(self, service):
        task = service.create_big_task("Learn piano", 200.0)
        service.set_big_task_progress(task["id"], 0.5)
        assert service.store.has_changes is False


class TestSave:
    def test_nothing_staged(self, clock):
        assert TrackerService(InMemoryStore(), Settings(autosave_delay_seconds=0), clock).save() is True

    def test_failed_commit_rolls_back_and_reports(self, clock):
        store = FlakyStore()
        service = TrackerService(store, Settings(autosave_delay_seconds=0), clock)
        service.record_expense("kept", 5.0, ExpenseCategory.FOOD)

        store.failures = 1
        with pytest.raises(SaveFailedError):
            service.record_expense("lost", 7.0, ExpenseCategory.FOOD)

        titles = [e["title"] for e in store.fetch(EntityKind.EXPENSE)]
        assert titles == ["kept"]
        assert store.has_changes is False

    def test_retry_failure_raises(self, clock):
        store = FlakyStore()
        service = TrackerService(store, Settings(autosave_delay_seconds=0), clock)
        store.failures = 2
        with pytest.raises(SaveFailedError):
            service.record_expense("lost", 7.0, ExpenseCategory.FOOD)


class TestPendingProgressSurvivesRollback:
    def make_service(self, clock, tmp_path):
        store = FlakyStore()
        settings = Settings(autosave_delay_seconds=60, preferences_path=str(tmp_path / "p.json"))
        return store, TrackerService(store, settings, clock)

    def test_other_commands_failed_save_keeps_pending_progress(self, clock, tmp_path):
        store, service = self.make_service(clock, tmp_path)
        task = service.create_big_task("Learn piano", 200.0)
        service.set_big_task_progress(task["id"], 0.7)

        store.failures = 1
        with pytest.raises(SaveFailedError):
            service.record_expense("lost", 7.0, ExpenseCategory.FOOD)

        assert store.fetch(EntityKind.EXPENSE) == []
        assert service.get_big_task(task["id"])["progress"] == 0.7

        service.close()
        store.rollback()
        saved = store.get(EntityKind.BIG_TASK, task["id"])
        assert saved["progress"] == 0.7
        assert saved["status"] == BigTaskStatus.IN_PROGRESS.value

    def test_failed_autosave_commit_is_retried_with_the_edit(self, clock, tmp_path):
        store, service = self.make_service(clock, tmp_path)
        task = service.create_big_task("Learn piano", 200.0)
        service.set_big_task_progress(task["id"], 1.0)

        store.failures = 1
        service.close()

        store.rollback()
        saved = store.get(EntityKind.BIG_TASK, task["id"])
        assert saved["progress"] == 1.0
        assert saved["status"] == BigTaskStatus.COMPLETED.value
        assert saved["completed_date"] == clock()
        assert service.ledger.total_income() == 200.0

    def test_pending_progress_for_deleted_challenge_is_skipped(self, clock, tmp_path):
        store, service = self.make_service(clock, tmp_path)
        kept = service.create_big_task("Keep", 10.0)
        gone = service.create_big_task("Gone", 10.0)
        service.set_big_task_progress(gone["id"], 0.5)
        service.delete_big_task(gone["id"])
        service.set_big_task_progress(kept["id"], 0.2)

        store.failures = 1
        with pytest.raises(SaveFailedError):
            service.record_expense("lost", 7.0, ExpenseCategory.FOOD)

        service.close()
        store.rollback()
        assert store.get(EntityKind.BIG_TASK, gone["id"]) is None
        assert store.get(EntityKind.BIG_TASK, kept["id"])["progress"] == 0.2
