from __future__ import annotations

import datetime as dt
import logging
import os
import threading
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from core import config
from core.models import Aggregate, BackupSettings, encode_aggregate

log = logging.getLogger(__name__)


class BackupStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PERMISSION_NEEDED = "permission_needed"
    ERROR = "error"


class FolderHandle:
    """A user-chosen backup directory. Write permission is re-checked on demand."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)

    def query_permission(self) -> bool:
        return self.path.is_dir() and os.access(self.path, os.W_OK)

    def request_permission(self) -> bool:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("[backup] cannot open folder %s: %s", self.path, e)
            return False
        return self.query_permission()

    def write_text(self, filename: str, text: str) -> Path:
        target = self.path / filename
        target.write_text(text, encoding="utf-8")
        return target


def backup_filename(when: dt.datetime) -> str:
    return f"{config.BACKUP_FILE_PREFIX}{when:%Y-%m-%d_%H-%M-%S}.json"


def _local_naive(when: dt.datetime) -> dt.datetime:
    # stamps written by other clients may carry an offset (e.g. a trailing Z)
    return when.astimezone().replace(tzinfo=None) if when.tzinfo else when


class PeriodicBackup:
    """Timed snapshots of the aggregate into a folder, outside the persist path.

    States: idle (disabled or no folder), running, permission_needed, error.
    Every tick re-checks write permission before considering a write.
    """

    def __init__(self, settings: BackupSettings, snapshot: Callable[[], Aggregate],
                 on_settings_change: Optional[Callable[[BackupSettings], None]] = None,
                 clock: Callable[[], dt.datetime] = dt.datetime.now,
                 tick_seconds: float = config.BACKUP_TICK_SECONDS):
        self.settings = settings
        self.snapshot = snapshot
        self.on_settings_change = on_settings_change
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.folder: Optional[FolderHandle] = FolderHandle(settings.folder_path) if settings.folder_path else None
        self.status = BackupStatus.IDLE
        self.last_error: Optional[str] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _save(self, **changes):
        self.settings = replace(self.settings, **changes)
        if self.on_settings_change:
            self.on_settings_change(self.settings)

    # ---------- user actions ----------
    def select_folder(self, path: Path | str) -> BackupStatus:
        handle = FolderHandle(path)
        granted = handle.request_permission()
        self.folder = handle
        self._save(enabled=True, folder_name=handle.name, folder_path=str(handle.path))
        self.status = BackupStatus.RUNNING if granted else BackupStatus.PERMISSION_NEEDED
        log.info("[backup] folder %s selected (%s)", handle.path, self.status.value)
        return self.status

    def regrant(self) -> bool:
        if self.folder is None:
            self.status = BackupStatus.IDLE
            return False
        if self.folder.request_permission():
            self.status = BackupStatus.RUNNING
            self.last_error = None
            return True
        self.status = BackupStatus.PERMISSION_NEEDED
        return False

    def enable(self):
        self._save(enabled=True)
        if self.folder is not None:
            self.refresh_status()

    def disable(self):
        self._save(enabled=False)
        self.status = BackupStatus.IDLE

    def clear_folder(self):
        self.folder = None
        self._save(folder_name=None, folder_path=None)
        self.status = BackupStatus.IDLE

    def set_interval(self, minutes: int):
        self._save(interval_minutes=max(config.MIN_BACKUP_INTERVAL_MINUTES, int(minutes)))

    def refresh_status(self) -> BackupStatus:
        """Recompute the state from settings and folder permission without writing."""
        if not self.settings.enabled or self.folder is None:
            self.status = BackupStatus.IDLE
        elif not self.folder.query_permission():
            self.status = BackupStatus.PERMISSION_NEEDED
        elif self.status != BackupStatus.ERROR:
            self.status = BackupStatus.RUNNING
        return self.status

    # ---------- timer ----------
    def is_due(self, now: dt.datetime) -> bool:
        last = self.settings.last_backup
        if not last:
            return True
        try:
            last_at = dt.datetime.fromisoformat(last.replace("Z", "+00:00"))
        except ValueError:
            return True
        interval = max(config.MIN_BACKUP_INTERVAL_MINUTES, self.settings.interval_minutes)
        return _local_naive(now) - _local_naive(last_at) >= dt.timedelta(minutes=interval)

    def tick(self, now: Optional[dt.datetime] = None) -> bool:
        """One polling step. Returns True when a snapshot was written."""
        now = now or self.clock()
        if not self.settings.enabled or self.folder is None:
            self.status = BackupStatus.IDLE
            return False
        if not self.folder.query_permission():
            if self.status != BackupStatus.PERMISSION_NEEDED:
                log.warning("[backup] write permission lost for %s", self.folder.path)
            self.status = BackupStatus.PERMISSION_NEEDED
            return False
        self.status = BackupStatus.RUNNING
        if not self.is_due(now):
            return False
        return self._write(now)

    def backup_now(self, now: Optional[dt.datetime] = None) -> bool:
        now = now or self.clock()
        if self.folder is None:
            self.status = BackupStatus.IDLE
            return False
        if not self.folder.query_permission():
            self.status = BackupStatus.PERMISSION_NEEDED
            return False
        return self._write(now)

    def _write(self, now: dt.datetime) -> bool:
        text = encode_aggregate(self.snapshot(), indent=2)
        try:
            target = self.folder.write_text(backup_filename(now), text)
        except OSError as e:
            log.warning("[backup] write failed: %s", e)
            self.status = BackupStatus.ERROR
            self.last_error = str(e)
            return False
        self.status = BackupStatus.RUNNING
        self.last_error = None
        self._save(last_backup=now.isoformat())
        log.info("[backup] wrote %s", target)
        return True

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self.refresh_status()
        self._thread = threading.Thread(target=self._loop, name="protrack-backup", daemon=True)
        self._thread.start()

    def _loop(self):
        while not self._stop.wait(self.tick_seconds):
            try:
                self.tick()
            except Exception:
                log.exception("[backup] tick failed")

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
