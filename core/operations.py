"""Domain rules for tasks, journal logs, observations and list configuration.

Every function here is pure: it receives the current collections and returns
new ones. Nothing is mutated in place, so callers can hand the result straight
to the controller's persist step.
"""
from __future__ import annotations

import datetime as dt
import re
import uuid
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from core import config
from core.exceptions import DuplicateIdError, InvalidValueError
from core.models import AppConfig, Attachment, DailyLog, Observation, Task, TaskUpdate

_SEPARATORS = re.compile(r"[-_./ ]")

# fields update_task_fields accepts
EDITABLE_FIELDS = {"display_id", "source", "project_id", "description", "due_date",
                   "status", "priority", "attachments", "sort_order"}

CHOICE_GROUPS = {
    "statuses": "task_statuses",
    "priorities": "task_priorities",
    "observations": "observation_statuses",
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _now(now: Optional[dt.datetime]) -> dt.datetime:
    return now or dt.datetime.now()


# ---------- calendar ----------
def week_start(day: dt.date) -> dt.date:
    """Most recent Monday (the day itself when it is a Monday)."""
    return day - dt.timedelta(days=day.weekday())


def iso_week_label(day: dt.date) -> str:
    return f"CW{day.isocalendar()[1]:02d}"


def weekly_slice(tasks: List[Task], logs: List[DailyLog], today: dt.date,
                 closed_statuses: Iterable[str] = config.CLOSED_STATUSES) -> Tuple[List[Task], List[DailyLog]]:
    """Tasks still open or touched this week, plus logs dated this week."""
    start = week_start(today).isoformat()
    closed = set(closed_statuses)
    active = [t for t in tasks
              if t.status not in closed or any(u.timestamp >= start for u in t.updates)]
    recent = [l for l in logs if l.date >= start]
    return active, recent


# ---------- display ids ----------
def find_display_id_conflict(tasks: List[Task], display_id: str,
                             exclude_id: Optional[str] = None) -> Optional[Task]:
    wanted = display_id.strip().casefold()
    for t in tasks:
        if t.id != exclude_id and t.display_id.strip().casefold() == wanted:
            return t
    return None


def suggest_next_display_id(tasks: List[Task], project_id: str) -> str:
    """Propose ``<project>-<max+1>`` from the trailing numbers of the project's ids.

    Trailing segments that are not integers are skipped, not counted as 0.
    """
    highest = 0
    for t in tasks:
        if t.project_id != project_id:
            continue
        tail = _SEPARATORS.split(t.display_id.strip())[-1]
        try:
            highest = max(highest, int(tail))
        except ValueError:
            continue
    return f"{project_id}-{highest + 1}"


# ---------- validation ----------
def validate_choice(value: str, allowed: List[str], what: str) -> str:
    if value not in allowed:
        raise InvalidValueError(f"Unknown {what} '{value}'. Allowed: {', '.join(allowed)}")
    return value


def _validate_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise InvalidValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _get_task(tasks: List[Task], task_id: str) -> Task:
    for t in tasks:
        if t.id == task_id:
            return t
    raise KeyError(f"Unknown task {task_id}")


# ---------- tasks ----------
def create_task(tasks: List[Task], app_config: AppConfig, *, description: str,
                display_id: Optional[str] = None, source: Optional[str] = None,
                project_id: str = config.DEFAULT_PROJECT_ID, due_date: Optional[str] = None,
                status: Optional[str] = None, priority: Optional[str] = None,
                now: Optional[dt.datetime] = None) -> Tuple[List[Task], Task]:
    now = _now(now)
    project_id = project_id.strip() or config.DEFAULT_PROJECT_ID
    display_id = (display_id or "").strip() or suggest_next_display_id(tasks, project_id)
    if find_display_id_conflict(tasks, display_id):
        raise DuplicateIdError(display_id)

    statuses = app_config.task_statuses
    priorities = app_config.task_priorities
    if status is None:
        status = statuses[0] if statuses else config.DEFAULT_TASK_STATUSES[0]
    else:
        validate_choice(status, statuses, "status")
    if priority is None:
        priority = priorities[1] if len(priorities) > 1 else (priorities[0] if priorities else "")
    else:
        validate_choice(priority, priorities, "priority")

    due = _validate_date(due_date)
    same_day = [t.sort_order for t in tasks if t.due_date == due]
    task = Task(
        id=_new_id(),
        display_id=display_id,
        source=(source or "").strip() or iso_week_label(now.date()),
        project_id=project_id,
        description=description,
        status=status,
        priority=priority,
        due_date=due,
        sort_order=max(same_day, default=-1) + 1,
        created_at=now.isoformat(),
    )
    return [*tasks, task], task


def update_task_fields(tasks: List[Task], app_config: AppConfig, task_id: str, **fields) -> List[Task]:
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise InvalidValueError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
    current = _get_task(tasks, task_id)
    if "display_id" in fields:
        fields["display_id"] = fields["display_id"].strip()
        if not fields["display_id"]:
            raise InvalidValueError("Task ID cannot be empty")
        if find_display_id_conflict(tasks, fields["display_id"], exclude_id=task_id):
            raise DuplicateIdError(fields["display_id"])
    if "status" in fields:
        validate_choice(fields["status"], app_config.task_statuses, "status")
    if "priority" in fields:
        validate_choice(fields["priority"], app_config.task_priorities, "priority")
    if "due_date" in fields:
        fields["due_date"] = _validate_date(fields["due_date"])
    updated = replace(current, **fields)
    return [updated if t.id == task_id else t for t in tasks]


def set_task_status(tasks: List[Task], app_config: AppConfig, task_id: str, status: str) -> List[Task]:
    return update_task_fields(tasks, app_config, task_id, status=status)


def delete_task(tasks: List[Task], task_id: str) -> List[Task]:
    # logs pointing at the task are left alone; see prune_orphan_logs
    return [t for t in tasks if t.id != task_id]


def reorder_task(tasks: List[Task], task_id: str, new_index: int) -> List[Task]:
    """Move a task within the group of tasks sharing its due date."""
    moving = _get_task(tasks, task_id)
    group = sorted((t for t in tasks if t.due_date == moving.due_date),
                   key=lambda t: (t.sort_order, t.created_at))
    group = [t for t in group if t.id != task_id]
    new_index = max(0, min(new_index, len(group)))
    group.insert(new_index, moving)
    orders = {t.id: i for i, t in enumerate(group)}
    return [replace(t, sort_order=orders[t.id]) if t.id in orders else t for t in tasks]


def sort_tasks(tasks: List[Task], mode: str, app_config: Optional[AppConfig] = None) -> List[Task]:
    if mode not in config.SORT_MODES:
        raise InvalidValueError(f"Unknown sort mode '{mode}'")
    if mode == "created":
        return sorted(tasks, key=lambda t: t.created_at)
    if mode == "priority":
        ranks = {p: i for i, p in enumerate((app_config or AppConfig()).task_priorities)}
        return sorted(tasks, key=lambda t: (ranks.get(t.priority, len(ranks)), t.due_date or "9999-12-31"))
    if mode == "due_date":
        return sorted(tasks, key=lambda t: (t.due_date or "9999-12-31", t.created_at))
    return sorted(tasks, key=lambda t: (t.due_date or "9999-12-31", t.sort_order))


# ---------- updates & journal ----------
def add_task_update(tasks: List[Task], logs: List[DailyLog], task_id: str, content: str, *,
                    attachments: Optional[List[Attachment]] = None, highlight_color: Optional[str] = None,
                    now: Optional[dt.datetime] = None) -> Tuple[List[Task], List[DailyLog]]:
    """Append an update to a task and record the same text in today's journal."""
    now = _now(now)
    content = content.strip()
    if not content:
        raise InvalidValueError("Update content cannot be empty")
    task = _get_task(tasks, task_id)
    update = TaskUpdate(id=_new_id(), timestamp=now.isoformat(), content=content,
                        attachments=list(attachments or []), highlight_color=highlight_color)
    entry = DailyLog(id=_new_id(), date=now.date().isoformat(), task_id=task_id, content=content)
    new_task = replace(task, updates=[*task.updates, update])
    return [new_task if t.id == task_id else t for t in tasks], [*logs, entry]


def edit_task_update(tasks: List[Task], logs: List[DailyLog], task_id: str, update_id: str, *,
                     content: Optional[str] = None,
                     highlight_color: Optional[str] = "") -> Tuple[List[Task], List[DailyLog]]:
    """Edit an update; a journal entry of the same task with identical text follows along.

    ``highlight_color=""`` leaves the tag untouched, ``None`` clears it.
    """
    task = _get_task(tasks, task_id)
    old = next((u for u in task.updates if u.id == update_id), None)
    if old is None:
        raise KeyError(f"Unknown update {update_id}")
    changes: Dict[str, object] = {}
    if content is not None:
        content = content.strip()
        if not content:
            raise InvalidValueError("Update content cannot be empty")
        changes["content"] = content
    if highlight_color != "":
        changes["highlight_color"] = highlight_color
    new_update = replace(old, **changes)
    new_task = replace(task, updates=[new_update if u.id == update_id else u for u in task.updates])
    new_logs = logs
    if content is not None and content != old.content:
        new_logs = _retext_first(logs, lambda l: l.task_id == task_id and l.content == old.content, content)
    return [new_task if t.id == task_id else t for t in tasks], new_logs


def delete_task_update(tasks: List[Task], task_id: str, update_id: str) -> List[Task]:
    task = _get_task(tasks, task_id)
    new_task = replace(task, updates=[u for u in task.updates if u.id != update_id])
    return [new_task if t.id == task_id else t for t in tasks]


def _retext_first(logs: List[DailyLog], match, content: str) -> List[DailyLog]:
    done = False
    out = []
    for l in logs:
        if not done and match(l):
            out.append(replace(l, content=content))
            done = True
        else:
            out.append(l)
    return out


def add_daily_log(logs: List[DailyLog], date: str, task_id: str, content: str) -> List[DailyLog]:
    content = content.strip()
    if not task_id or not content:
        raise InvalidValueError("A journal entry needs a task and some content")
    entry = DailyLog(id=_new_id(), date=_validate_date(date) or dt.date.today().isoformat(),
                     task_id=task_id, content=content)
    return [*logs, entry]


def edit_daily_log(tasks: List[Task], logs: List[DailyLog], log_id: str,
                   content: str) -> Tuple[List[Task], List[DailyLog]]:
    """Edit a journal entry; the originating task update follows while texts match."""
    entry = next((l for l in logs if l.id == log_id), None)
    if entry is None:
        raise KeyError(f"Unknown log {log_id}")
    content = content.strip()
    if not content:
        raise InvalidValueError("Journal entry cannot be empty")
    new_logs = [replace(l, content=content) if l.id == log_id else l for l in logs]
    new_tasks = tasks
    for t in tasks:
        if t.id != entry.task_id:
            continue
        target = next((u for u in t.updates if u.content == entry.content), None)
        if target is not None:
            new_t = replace(t, updates=[replace(u, content=content) if u.id == target.id else u
                                        for u in t.updates])
            new_tasks = [new_t if x.id == t.id else x for x in tasks]
        break
    return new_tasks, new_logs


def delete_daily_log(logs: List[DailyLog], log_id: str) -> List[DailyLog]:
    return [l for l in logs if l.id != log_id]


def prune_orphan_logs(tasks: List[Task], logs: List[DailyLog]) -> List[DailyLog]:
    known = {t.id for t in tasks}
    return [l for l in logs if l.task_id in known]


def purge_closed_tasks(tasks: List[Task], logs: List[DailyLog],
                       closed_statuses: Iterable[str] = config.CLOSED_STATUSES) -> Tuple[List[Task], List[DailyLog]]:
    closed = set(closed_statuses)
    active = [t for t in tasks if t.status not in closed]
    return active, prune_orphan_logs(active, logs)


def toggle_off_day(off_days: List[str], day: str) -> List[str]:
    day = _validate_date(day)
    if day in off_days:
        return [d for d in off_days if d != day]
    return [*off_days, day]


# ---------- observations ----------
def add_observation(observations: List[Observation], app_config: AppConfig, content: str, *,
                    status: Optional[str] = None, images: Optional[List[str]] = None,
                    now: Optional[dt.datetime] = None) -> Tuple[List[Observation], Observation]:
    content = content.strip()
    if not content:
        raise InvalidValueError("Observation cannot be empty")
    columns = app_config.observation_statuses
    if status is None:
        status = columns[0] if columns else config.DEFAULT_OBSERVATION_STATUSES[0]
    else:
        validate_choice(status, columns, "observation status")
    obs = Observation(id=_new_id(), timestamp=_now(now).isoformat(), content=content,
                      status=status, images=list(images or []))
    return [*observations, obs], obs


def edit_observation(observations: List[Observation], app_config: AppConfig, obs_id: str, *,
                     content: Optional[str] = None, status: Optional[str] = None,
                     images: Optional[List[str]] = None) -> List[Observation]:
    current = next((o for o in observations if o.id == obs_id), None)
    if current is None:
        raise KeyError(f"Unknown observation {obs_id}")
    changes: Dict[str, object] = {}
    if content is not None:
        if not content.strip():
            raise InvalidValueError("Observation cannot be empty")
        changes["content"] = content.strip()
    if status is not None:
        changes["status"] = validate_choice(status, app_config.observation_statuses, "observation status")
    if images is not None:
        changes["images"] = list(images)
    updated = replace(current, **changes)
    return [updated if o.id == obs_id else o for o in observations]


def delete_observation(observations: List[Observation], obs_id: str) -> List[Observation]:
    return [o for o in observations if o.id != obs_id]


def move_observation(observations: List[Observation], columns: List[str], obs_id: str,
                     step: int) -> List[Observation]:
    """Advance (step > 0) or regress (step < 0) through the ordered columns, clamped at the ends."""
    current = next((o for o in observations if o.id == obs_id), None)
    if current is None:
        raise KeyError(f"Unknown observation {obs_id}")
    if current.status not in columns:
        return list(observations)
    idx = max(0, min(len(columns) - 1, columns.index(current.status) + step))
    if columns[idx] == current.status:
        return list(observations)
    return [replace(o, status=columns[idx]) if o.id == obs_id else o for o in observations]


# ---------- list configuration ----------
def _group_attr(group: str) -> str:
    try:
        return CHOICE_GROUPS[group]
    except KeyError:
        raise InvalidValueError(f"Unknown list '{group}'")


def add_choice(app_config: AppConfig, group: str, value: str) -> AppConfig:
    attr = _group_attr(group)
    value = value.strip()
    items = getattr(app_config, attr)
    if not value or value in items:
        return app_config
    return replace(app_config, **{attr: [*items, value]})


def rename_choice(app_config: AppConfig, group: str, old: str, new: str) -> AppConfig:
    attr = _group_attr(group)
    new = new.strip()
    items = getattr(app_config, attr)
    if not new or old not in items:
        return app_config
    if new != old and new in items:
        raise InvalidValueError(f"'{new}' already exists")
    colors = dict(app_config.item_colors)
    if old in colors:
        colors[new] = colors.pop(old)
    return replace(app_config, item_colors=colors, **{attr: [new if v == old else v for v in items]})


def remove_choice(app_config: AppConfig, group: str, value: str) -> AppConfig:
    attr = _group_attr(group)
    items = getattr(app_config, attr)
    return replace(app_config, **{attr: [v for v in items if v != value]})


def set_item_color(app_config: AppConfig, value: str, color: Optional[str]) -> AppConfig:
    colors = dict(app_config.item_colors)
    if color:
        colors[value] = color
    else:
        colors.pop(value, None)
    return replace(app_config, item_colors=colors)
