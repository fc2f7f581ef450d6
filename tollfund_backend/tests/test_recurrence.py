import uuid
from datetime import date, datetime

from tollfund.models import EntityKind, TaskType
from tollfund.recurrence import DEFAULT_ACTIVE_COUNT, DEFAULT_TEMPLATES, PrunePolicy, RecurrenceEngine
from tollfund.store import Criteria

DAY = datetime(2024, 1, 1)


def add_template(store, title, amount=10.0, active=True, task_type=TaskType.EXERCISE):
    template = {
        "id": str(uuid.uuid4()),
        "title": title,
        "task_type": task_type.value,
        "reward_amount": amount,
        "is_active": active,
    }
    store.insert(EntityKind.TEMPLATE, template)
    store.commit()
    return template


def set_template(store, template, **changes):
    template.update(changes)
    store.update(EntityKind.TEMPLATE, template)
    store.commit()


def fixed_tasks(store, day=DAY):
    return store.fetch(
        EntityKind.DAILY_TASK,
        Criteria(equals={"is_fixed": True, "task_date": day}, sort="title"),
    )


class TestEnsureInstances:
    def test_creates_one_instance_per_active_template(self, store, clock):
        add_template(store, "Run 30min", 20.0)
        add_template(store, "Read", 5.0)
        add_template(store, "Guitar", 2.0, active=False)
        engine = RecurrenceEngine(store, clock=clock)

        result = engine.ensure_instances_for_day(DAY)

        assert result.created == 2
        assert result.day == DAY
        tasks = fixed_tasks(store)
        assert [t["title"] for t in tasks] == ["Read", "Run 30min"]
        run = tasks[1]
        assert run["reward_amount"] == 20.0
        assert run["original_reward_amount"] == 20.0
        assert run["is_completed"] is False
        assert run["completed_date"] is None
        assert run["created_date"] == clock()
        assert store.has_changes is False

    def test_is_idempotent(self, store, clock):
        add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock)
        engine.ensure_instances_for_day(DAY)
        second = engine.ensure_instances_for_day(DAY)
        assert second.created == 0
        assert len(fixed_tasks(store)) == 1

    def test_accepts_any_time_of_day_and_date_strings(self, store, clock):
        add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock)
        engine.ensure_instances_for_day(datetime(2024, 1, 1, 23, 59))
        engine.ensure_instances_for_day("2024-01-01")
        engine.ensure_instances_for_day(date(2024, 1, 1))
        assert len(fixed_tasks(store)) == 1

    def test_existing_instance_keeps_reward_after_template_change(self, store, clock):
        template = add_template(store, "Run 30min", 20.0)
        engine = RecurrenceEngine(store, clock=clock)
        engine.ensure_instances_for_day(DAY)

        set_template(store, template, reward_amount=25.0)
        engine.ensure_instances_for_day(DAY)
        engine.ensure_instances_for_day(datetime(2024, 1, 2))

        assert fixed_tasks(store)[0]["reward_amount"] == 20.0
        assert fixed_tasks(store, datetime(2024, 1, 2))[0]["reward_amount"] == 25.0

    def test_future_day_is_materialized(self, store, clock):
        add_template(store, "Run 30min")
        result = RecurrenceEngine(store, clock=clock).ensure_instances_for_day(datetime(2024, 3, 1))
        assert result.created == 1

    def test_no_templates_creates_nothing(self, store, clock):
        result = RecurrenceEngine(store, clock=clock).ensure_instances_for_day(DAY)
        assert result.created == 0
        assert store.count(EntityKind.DAILY_TASK) == 0

    def test_ad_hoc_task_with_same_title_does_not_count(self, store, clock):
        add_template(store, "Run 30min")
        store.insert(
            EntityKind.DAILY_TASK,
            {
                "id": str(uuid.uuid4()),
                "title": "Run 30min",
                "task_type": "exercise",
                "reward_amount": 1.0,
                "original_reward_amount": 1.0,
                "is_completed": False,
                "completed_date": None,
                "is_fixed": False,
                "task_date": DAY,
                "created_date": clock(),
                "template_id": None,
            },
        )
        store.commit()
        result = RecurrenceEngine(store, clock=clock).ensure_instances_for_day(DAY)
        assert result.created == 1
        assert store.count(EntityKind.DAILY_TASK) == 2


class TestPruning:
    def test_deactivated_template_instance_is_pruned(self, store, clock):
        template = add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, prune_policy=PrunePolicy.INACTIVE_TEMPLATES, clock=clock)
        engine.ensure_instances_for_day(DAY)

        set_template(store, template, is_active=False)
        result = engine.ensure_instances_for_day(DAY)

        assert result.pruned == 1
        assert fixed_tasks(store) == []

    def test_completed_instance_is_never_pruned(self, store, clock):
        template = add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock)
        engine.ensure_instances_for_day(DAY)
        task = fixed_tasks(store)[0]
        task.update(is_completed=True, completed_date=clock())
        store.update(EntityKind.DAILY_TASK, task)
        store.commit()

        set_template(store, template, is_active=False)
        result = engine.ensure_instances_for_day(DAY)

        assert result.pruned == 0
        assert len(fixed_tasks(store)) == 1

    def test_other_days_are_untouched(self, store, clock):
        template = add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock)
        engine.ensure_instances_for_day(DAY)

        set_template(store, template, is_active=False)
        engine.ensure_instances_for_day(datetime(2024, 1, 2))

        assert len(fixed_tasks(store)) == 1

    def test_policy_none_keeps_instances(self, store, clock):
        template = add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, prune_policy=PrunePolicy.NONE, clock=clock)
        engine.ensure_instances_for_day(DAY)

        set_template(store, template, is_active=False)
        result = engine.ensure_instances_for_day(DAY)

        assert result.pruned == 0
        assert len(fixed_tasks(store)) == 1

    def test_policy_accepts_plain_string(self, store, clock):
        engine = RecurrenceEngine(store, prune_policy="none", clock=clock)
        assert engine.ensure_instances_for_day(DAY).pruned == 0


class TestDuplicates:
    def test_keeps_earliest_and_removes_the_rest(self, store, clock):
        add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock)
        engine.ensure_instances_for_day(DAY)
        original = fixed_tasks(store)[0]

        for hour in (11, 12):
            copy = dict(original, id=str(uuid.uuid4()), created_date=datetime(2024, 1, 1, hour))
            store.insert(EntityKind.DAILY_TASK, copy)
        store.commit()

        result = engine.ensure_instances_for_day(DAY)

        assert result.duplicates_removed == 2
        remaining = fixed_tasks(store)
        assert [t["id"] for t in remaining] == [original["id"]]

    def test_templates_sharing_a_title_yield_one_instance(self, store, clock):
        add_template(store, "Run 30min", 20.0)
        add_template(store, "Run 30min", 30.0)
        result = RecurrenceEngine(store, clock=clock).ensure_instances_for_day(DAY)
        assert result.created == 1
        assert len(fixed_tasks(store)) == 1


class TestSeedDefaults:
    def test_seeds_when_empty(self, store, clock):
        engine = RecurrenceEngine(store, clock=clock)
        assert engine.seed_default_templates() == len(DEFAULT_TEMPLATES)
        active = store.count(EntityKind.TEMPLATE, Criteria(equals={"is_active": True}))
        assert active == DEFAULT_ACTIVE_COUNT
        assert store.has_changes is False

        result = engine.ensure_instances_for_day(DAY)
        assert result.created == DEFAULT_ACTIVE_COUNT

    def test_does_nothing_when_templates_exist(self, store, clock):
        add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock)
        assert engine.seed_default_templates() == 0
        assert store.count(EntityKind.TEMPLATE) == 1

    def test_commit_hook_is_used(self, store, clock):
        calls = []

        def commit():
            calls.append(1)
            store.commit()

        add_template(store, "Run 30min")
        engine = RecurrenceEngine(store, clock=clock, commit=commit)
        engine.ensure_instances_for_day(DAY)
        engine.ensure_instances_for_day(DAY)
        # Second run changes nothing, so nothing is committed
        assert calls == [1]
