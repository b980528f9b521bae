from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core import config

log = logging.getLogger(__name__)


@dataclass
class Attachment:
    name: str
    data: str  # data URL or base64 payload
    mime_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"name": self.name, "data": self.data}
        if self.mime_type is not None:
            d["mimeType"] = self.mime_type
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Attachment":
        return cls(name=d.get("name", ""), data=d.get("data", ""), mime_type=d.get("mimeType"))


@dataclass
class TaskUpdate:
    id: str
    timestamp: str  # ISO datetime
    content: str
    attachments: List[Attachment] = field(default_factory=list)
    highlight_color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "timestamp": self.timestamp, "content": self.content}
        if self.attachments:
            d["attachments"] = [a.to_dict() for a in self.attachments]
        if self.highlight_color is not None:
            d["highlightColor"] = self.highlight_color
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TaskUpdate":
        return cls(
            id=d.get("id", ""),
            timestamp=d.get("timestamp", ""),
            content=d.get("content", ""),
            attachments=[Attachment.from_dict(a) for a in d.get("attachments") or []],
            highlight_color=d.get("highlightColor"),
        )


@dataclass
class Task:
    id: str
    display_id: str
    source: str
    project_id: str
    description: str
    status: str
    priority: str
    due_date: Optional[str] = None  # YYYY-MM-DD
    updates: List[TaskUpdate] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)
    sort_order: int = 0  # only meaningful among tasks sharing due_date
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "displayId": self.display_id,
            "source": self.source,
            "projectId": self.project_id,
            "description": self.description,
            "dueDate": self.due_date,
            "status": self.status,
            "priority": self.priority,
            "updates": [u.to_dict() for u in self.updates],
            "sortOrder": self.sort_order,
            "createdAt": self.created_at,
        }
        if self.attachments:
            d["attachments"] = [a.to_dict() for a in self.attachments]
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Task":
        return cls(
            id=d.get("id", ""),
            display_id=d.get("displayId", ""),
            source=d.get("source", ""),
            project_id=d.get("projectId", ""),
            description=d.get("description", ""),
            status=d.get("status", ""),
            priority=d.get("priority", ""),
            due_date=d.get("dueDate") or None,
            updates=[TaskUpdate.from_dict(u) for u in d.get("updates") or []],
            attachments=[Attachment.from_dict(a) for a in d.get("attachments") or []],
            sort_order=int(d.get("sortOrder") or 0),
            created_at=d.get("createdAt", ""),
        )


@dataclass
class DailyLog:
    id: str
    date: str  # YYYY-MM-DD
    task_id: str  # may dangle once the task is deleted
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "date": self.date, "taskId": self.task_id, "content": self.content}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DailyLog":
        return cls(id=d.get("id", ""), date=d.get("date", ""), task_id=d.get("taskId", ""),
                   content=d.get("content", ""))


@dataclass
class Observation:
    id: str
    timestamp: str
    content: str
    status: str
    images: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "timestamp": self.timestamp,
                             "content": self.content, "status": self.status}
        if self.images:
            d["images"] = list(self.images)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Observation":
        return cls(id=d.get("id", ""), timestamp=d.get("timestamp", ""), content=d.get("content", ""),
                   status=d.get("status", ""), images=list(d.get("images") or []))


@dataclass
class HighlightTag:
    id: str
    color: str
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "color": self.color, "label": self.label}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HighlightTag":
        return cls(id=d.get("id", ""), color=d.get("color", ""), label=d.get("label", ""))


@dataclass
class AppConfig:
    task_statuses: List[str] = field(default_factory=lambda: list(config.DEFAULT_TASK_STATUSES))
    task_priorities: List[str] = field(default_factory=lambda: list(config.DEFAULT_TASK_PRIORITIES))
    observation_statuses: List[str] = field(default_factory=lambda: list(config.DEFAULT_OBSERVATION_STATUSES))
    item_colors: Dict[str, str] = field(default_factory=dict)  # value -> color override
    highlight_tags: List[HighlightTag] = field(
        default_factory=lambda: [HighlightTag.from_dict(t) for t in config.DEFAULT_HIGHLIGHT_TAGS])
    group_labels: Dict[str, str] = field(default_factory=dict)
    group_colors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskStatuses": list(self.task_statuses),
            "taskPriorities": list(self.task_priorities),
            "observationStatuses": list(self.observation_statuses),
            "itemColors": dict(self.item_colors),
            "highlightTags": [t.to_dict() for t in self.highlight_tags],
            "groupLabels": dict(self.group_labels),
            "groupColors": dict(self.group_colors),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AppConfig":
        default = cls()
        tags = d.get("highlightTags")
        return cls(
            task_statuses=list(d.get("taskStatuses") or default.task_statuses),
            task_priorities=list(d.get("taskPriorities") or default.task_priorities),
            observation_statuses=list(d.get("observationStatuses") or default.observation_statuses),
            item_colors=dict(d.get("itemColors") or {}),
            highlight_tags=[HighlightTag.from_dict(t) for t in tags] if tags is not None else default.highlight_tags,
            group_labels=dict(d.get("groupLabels") or {}),
            group_colors=dict(d.get("groupColors") or {}),
        )


def _interval(value: Any) -> int:
    if value is None or value == "":
        return config.DEFAULT_BACKUP_INTERVAL_MINUTES
    return max(config.MIN_BACKUP_INTERVAL_MINUTES, int(value))


@dataclass
class BackupSettings:
    enabled: bool = False
    interval_minutes: int = config.DEFAULT_BACKUP_INTERVAL_MINUTES
    last_backup: Optional[str] = None  # ISO datetime of last successful write
    folder_name: Optional[str] = None
    folder_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "intervalMinutes": self.interval_minutes,
            "lastBackup": self.last_backup,
            "folderName": self.folder_name,
            "folderPath": self.folder_path,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BackupSettings":
        return cls(
            enabled=bool(d.get("enabled", False)),
            interval_minutes=_interval(d.get("intervalMinutes")),
            last_backup=d.get("lastBackup"),
            folder_name=d.get("folderName"),
            folder_path=d.get("folderPath"),
        )


@dataclass
class Aggregate:
    """Unit of persistence and replication: always read and written whole."""
    tasks: List[Task] = field(default_factory=list)
    logs: List[DailyLog] = field(default_factory=list)
    observations: List[Observation] = field(default_factory=list)
    off_days: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "logs": [l.to_dict() for l in self.logs],
            "observations": [o.to_dict() for o in self.observations],
            "offDays": list(self.off_days),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Aggregate":
        return cls(
            tasks=[Task.from_dict(t) for t in d.get("tasks") or []],
            logs=[DailyLog.from_dict(l) for l in d.get("logs") or []],
            observations=[Observation.from_dict(o) for o in d.get("observations") or []],
            off_days=list(d.get("offDays") or []),
        )


# ---------- text codec ----------
def encode_aggregate(aggregate: Aggregate, indent: Optional[int] = None) -> str:
    return json.dumps(aggregate.to_dict(), ensure_ascii=False, indent=indent)


def decode_aggregate(text: Optional[str]) -> Aggregate:
    """Parse a stored blob; absent or corrupt text yields the empty aggregate."""
    if not text:
        return Aggregate()
    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        return Aggregate.from_dict(data)
    except (ValueError, TypeError, AttributeError) as e:
        log.warning("[storage] unreadable aggregate, using empty data: %s", e)
        return Aggregate()
