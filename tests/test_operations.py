import datetime as dt

import pytest

from core import operations as ops
from core.exceptions import DuplicateIdError, InvalidValueError
from core.models import AppConfig, DailyLog, Observation, Task, TaskUpdate


def make_task(id, display_id, project_id="P1130", status="Not Started", due_date=None, sort_order=0,
              created_at="2026-10-01T08:00:00", updates=None):
    return Task(id=id, display_id=display_id, source="CW40", project_id=project_id, description=display_id,
                status=status, priority="Medium", due_date=due_date, sort_order=sort_order,
                created_at=created_at, updates=updates or [])


class TestCalendar:
    def test_week_start_is_monday(self):
        assert ops.week_start(dt.date(2026, 10, 21)) == dt.date(2026, 10, 19)
        assert ops.week_start(dt.date(2026, 10, 19)) == dt.date(2026, 10, 19)
        assert ops.week_start(dt.date(2026, 10, 25)) == dt.date(2026, 10, 19)

    def test_iso_week_label(self):
        assert ops.iso_week_label(dt.date(2026, 1, 8)) == "CW02"
        assert ops.iso_week_label(dt.date(2026, 10, 21)) == "CW43"

    def test_weekly_slice(self):
        old_update = TaskUpdate(id="u1", timestamp="2026-10-01T10:00:00", content="old")
        new_update = TaskUpdate(id="u2", timestamp="2026-10-20T10:00:00", content="new")
        tasks = [
            make_task("a", "A-1"),
            make_task("b", "A-2", status="Done", updates=[old_update]),
            make_task("c", "A-3", status="Done", updates=[new_update]),
        ]
        logs = [DailyLog(id="l1", date="2026-10-18", task_id="a", content="x"),
                DailyLog(id="l2", date="2026-10-19", task_id="a", content="y")]
        active, recent = ops.weekly_slice(tasks, logs, dt.date(2026, 10, 21))
        assert [t.id for t in active] == ["a", "c"]
        assert [l.id for l in recent] == ["l2"]


class TestDisplayIds:
    def test_suggest_next_uses_highest_numeric_tail(self):
        tasks = [make_task("1", "PRJ-1", "PRJ"), make_task("2", "PRJ-2", "PRJ"),
                 make_task("3", "PRJ-9", "PRJ"), make_task("4", "PRJ-foo", "PRJ")]
        assert ops.suggest_next_display_id(tasks, "PRJ") == "PRJ-10"

    def test_suggest_ignores_other_projects(self):
        tasks = [make_task("1", "OTHER-40", "OTHER")]
        assert ops.suggest_next_display_id(tasks, "PRJ") == "PRJ-1"

    @pytest.mark.parametrize("display_id", ["PRJ_7", "PRJ.7", "PRJ 7", "PRJ/7"])
    def test_suggest_accepts_separators(self, display_id):
        assert ops.suggest_next_display_id([make_task("1", display_id, "PRJ")], "PRJ") == "PRJ-8"

    def test_conflict_is_case_insensitive(self):
        tasks = [make_task("1", "P1130-28")]
        assert ops.find_display_id_conflict(tasks, "p1130-28").id == "1"
        assert ops.find_display_id_conflict(tasks, "p1130-28", exclude_id="1") is None


class TestCreateTask:
    def test_defaults(self, app_config, now):
        tasks, task = ops.create_task([], app_config, description="Prepare slides", project_id="P1130", now=now)
        assert tasks == [task]
        assert task.display_id == "P1130-1"
        assert task.source == "CW43"
        assert task.status == "Not Started"
        assert task.priority == "Medium"
        assert task.created_at == now.isoformat()
        assert task.updates == [] and task.attachments == []

    def test_duplicate_id_rejected_case_insensitively(self, app_config, now):
        existing = [make_task("1", "P1130-28")]
        with pytest.raises(DuplicateIdError) as exc:
            ops.create_task(existing, app_config, description="x", display_id="p1130-28", now=now)
        assert "already exists" in str(exc.value)

    def test_original_list_is_untouched(self, app_config, now):
        existing = [make_task("1", "P1130-1")]
        tasks, _ = ops.create_task(existing, app_config, description="x", project_id="P1130", now=now)
        assert len(existing) == 1 and len(tasks) == 2

    def test_sort_order_appends_within_due_date(self, app_config, now):
        existing = [make_task("1", "A-1", due_date="2026-10-23", sort_order=0),
                    make_task("2", "A-2", due_date="2026-10-23", sort_order=4),
                    make_task("3", "A-3", due_date="2026-10-24", sort_order=9)]
        _, task = ops.create_task(existing, app_config, description="x", project_id="A",
                                  due_date="2026-10-23", now=now)
        assert task.sort_order == 5

    def test_invalid_values(self, app_config, now):
        with pytest.raises(InvalidValueError):
            ops.create_task([], app_config, description="x", status="Sleeping", now=now)
        with pytest.raises(InvalidValueError):
            ops.create_task([], app_config, description="x", due_date="next week", now=now)


class TestEditTask:
    def test_edit_id_to_duplicate_rejected(self, app_config):
        tasks = [make_task("1", "A-1"), make_task("2", "A-2")]
        with pytest.raises(DuplicateIdError):
            ops.update_task_fields(tasks, app_config, "2", display_id="a-1")

    def test_edit_keeping_own_id_allowed(self, app_config):
        tasks = [make_task("1", "A-1")]
        out = ops.update_task_fields(tasks, app_config, "1", display_id="A-1", description="renamed")
        assert out[0].description == "renamed"

    def test_unknown_field_rejected(self, app_config):
        with pytest.raises(InvalidValueError):
            ops.update_task_fields([make_task("1", "A-1")], app_config, "1", id="other")

    def test_set_status(self, app_config):
        out = ops.set_task_status([make_task("1", "A-1")], app_config, "1", "Done")
        assert out[0].status == "Done"

    def test_reorder_within_due_date(self):
        tasks = [make_task("a", "A-1", due_date="2026-10-23", sort_order=0),
                 make_task("b", "A-2", due_date="2026-10-23", sort_order=1),
                 make_task("c", "A-3", due_date="2026-10-23", sort_order=2),
                 make_task("d", "A-4", due_date="2026-10-24", sort_order=0)]
        out = {t.id: t.sort_order for t in ops.reorder_task(tasks, "c", 0)}
        assert out == {"c": 0, "a": 1, "b": 2, "d": 0}

    def test_sort_modes(self, app_config):
        tasks = [make_task("a", "A-1", due_date=None, created_at="2026-10-03"),
                 make_task("b", "A-2", due_date="2026-10-20", created_at="2026-10-01"),
                 make_task("c", "A-3", due_date="2026-10-19", created_at="2026-10-02")]
        assert [t.id for t in ops.sort_tasks(tasks, "due_date")] == ["c", "b", "a"]
        assert [t.id for t in ops.sort_tasks(tasks, "created")] == ["b", "c", "a"]
        with pytest.raises(InvalidValueError):
            ops.sort_tasks(tasks, "random")


class TestUpdatesAndJournal:
    def test_add_update_writes_journal(self, now):
        tasks, logs = ops.add_task_update([make_task("1", "A-1")], [], "1", "Added AY4/5 news", now=now)
        assert tasks[0].updates[0].content == "Added AY4/5 news"
        assert logs[0].date == "2026-10-21"
        assert logs[0].task_id == "1"
        assert logs[0].content == "Added AY4/5 news"

    def test_empty_update_rejected(self, now):
        with pytest.raises(InvalidValueError):
            ops.add_task_update([make_task("1", "A-1")], [], "1", "   ", now=now)

    def test_edit_update_follows_journal(self, now):
        tasks, logs = ops.add_task_update([make_task("1", "A-1")], [], "1", "draft", now=now)
        uid = tasks[0].updates[0].id
        tasks, logs = ops.edit_task_update(tasks, logs, "1", uid, content="final")
        assert tasks[0].updates[0].content == "final"
        assert logs[0].content == "final"

    def test_edit_update_highlight(self, now):
        tasks, logs = ops.add_task_update([make_task("1", "A-1")], [], "1", "x",
                                          highlight_color="#EF4444", now=now)
        uid = tasks[0].updates[0].id
        same, _ = ops.edit_task_update(tasks, logs, "1", uid, content="y")
        assert same[0].updates[0].highlight_color == "#EF4444"
        cleared, _ = ops.edit_task_update(tasks, logs, "1", uid, highlight_color=None)
        assert cleared[0].updates[0].highlight_color is None

    def test_edit_log_follows_update(self, now):
        tasks, logs = ops.add_task_update([make_task("1", "A-1")], [], "1", "draft", now=now)
        tasks, logs = ops.edit_daily_log(tasks, logs, logs[0].id, "final")
        assert logs[0].content == "final"
        assert tasks[0].updates[0].content == "final"

    def test_delete_update_keeps_journal(self, now):
        tasks, logs = ops.add_task_update([make_task("1", "A-1")], [], "1", "x", now=now)
        tasks = ops.delete_task_update(tasks, "1", tasks[0].updates[0].id)
        assert tasks[0].updates == [] and len(logs) == 1

    def test_add_log_requires_task_and_content(self):
        with pytest.raises(InvalidValueError):
            ops.add_daily_log([], "2026-10-21", "", "x")
        logs = ops.add_daily_log([], "2026-10-21", "1", " note ")
        assert logs[0].content == "note"

    def test_prune_orphan_logs(self):
        logs = [DailyLog(id="l1", date="2026-10-21", task_id="gone", content="x"),
                DailyLog(id="l2", date="2026-10-21", task_id="1", content="y")]
        assert [l.id for l in ops.prune_orphan_logs([make_task("1", "A-1")], logs)] == ["l2"]

    def test_purge_closed_tasks(self):
        tasks = [make_task("1", "A-1", status="Done"), make_task("2", "A-2", status="Archived"),
                 make_task("3", "A-3", status="In Progress")]
        logs = [DailyLog(id="l1", date="2026-10-21", task_id="1", content="x"),
                DailyLog(id="l3", date="2026-10-21", task_id="3", content="y")]
        tasks, logs = ops.purge_closed_tasks(tasks, logs)
        assert [t.id for t in tasks] == ["3"]
        assert [l.id for l in logs] == ["l3"]

    def test_toggle_off_day(self):
        days = ops.toggle_off_day([], "2026-12-24")
        assert days == ["2026-12-24"]
        assert ops.toggle_off_day(days, "2026-12-24") == []


class TestObservations:
    def test_add_defaults_to_first_column(self, app_config, now):
        obs, o = ops.add_observation([], app_config, "Printer jams", now=now)
        assert o.status == "New" and obs == [o]

    def test_move_is_clamped(self, app_config):
        cols = app_config.observation_statuses
        obs = [Observation(id="o", timestamp="t", content="c", status="New")]
        assert ops.move_observation(obs, cols, "o", -1)[0].status == "New"
        obs = ops.move_observation(obs, cols, "o", 1)
        assert obs[0].status == "Reviewing"
        obs = ops.move_observation(obs, cols, "o", 10)
        assert obs[0].status == "Archived"
        assert ops.move_observation(obs, cols, "o", 1)[0].status == "Archived"

    def test_edit_and_delete(self, app_config):
        obs = [Observation(id="o", timestamp="t", content="c", status="New")]
        obs = ops.edit_observation(obs, app_config, "o", content="changed", status="Resolved")
        assert (obs[0].content, obs[0].status) == ("changed", "Resolved")
        assert ops.delete_observation(obs, "o") == []


class TestChoiceLists:
    def test_add_rename_remove(self):
        cfg = ops.add_choice(AppConfig(), "statuses", "Blocked")
        assert cfg.task_statuses[-1] == "Blocked"
        cfg = ops.set_item_color(cfg, "Blocked", "#ff0000")
        cfg = ops.rename_choice(cfg, "statuses", "Blocked", "On Hold")
        assert "On Hold" in cfg.task_statuses and "Blocked" not in cfg.task_statuses
        assert cfg.item_colors["On Hold"] == "#ff0000"
        cfg = ops.remove_choice(cfg, "statuses", "On Hold")
        assert "On Hold" not in cfg.task_statuses

    def test_rename_onto_existing_rejected(self):
        with pytest.raises(InvalidValueError):
            ops.rename_choice(AppConfig(), "priorities", "Low", "High")

    def test_unknown_group(self):
        with pytest.raises(InvalidValueError):
            ops.add_choice(AppConfig(), "colors", "x")
