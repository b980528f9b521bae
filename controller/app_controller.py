from __future__ import annotations

import datetime as dt
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core import config
from core import operations as ops
from core.exceptions import (AIServiceError, CloudError, CredentialMissingError, ImportFormatError,
                             SyncConfigError)
from core.models import Aggregate, AppConfig, DailyLog, Observation, Task, encode_aggregate
from services import summary_service
from services.backup_service import PeriodicBackup
from services.cloud_mirror import CloudMirror, SyncStatus
from storage.local_store import LocalStore
from storage.pocketbase import PocketBaseClient, SyncConfig, parse_sync_config

log = logging.getLogger(__name__)


def default_mirror_factory(sync_config: SyncConfig) -> CloudMirror:
    return CloudMirror(PocketBaseClient(sync_config))


@dataclass
class AIResult:
    text: str
    ok: bool = True
    credential_missing: bool = False


class AppController:
    """Owns the in-memory aggregate and coordinates local store, cloud mirror and backup.

    Every change goes through ``persist``: compute the next full aggregate,
    swap it in, write it locally, then push it if sync is on.
    """

    def __init__(self, store: LocalStore,
                 mirror_factory: Callable[[SyncConfig], CloudMirror] = default_mirror_factory):
        self.store = store
        self.mirror_factory = mirror_factory
        self.mirror: Optional[CloudMirror] = None
        self.state = Aggregate()
        self.app_config = AppConfig()
        self.sort_mode = store.get_sort_mode()
        self.backup: Optional[PeriodicBackup] = None
        self.sync_error: Optional[str] = None
        self._listeners: List[Callable[[Aggregate], None]] = []

    # ---------- views ----------
    @property
    def tasks(self) -> List[Task]:
        return self.state.tasks

    @property
    def logs(self) -> List[DailyLog]:
        return self.state.logs

    @property
    def observations(self) -> List[Observation]:
        return self.state.observations

    @property
    def off_days(self) -> List[str]:
        return self.state.off_days

    @property
    def sync_enabled(self) -> bool:
        return self.mirror is not None

    @property
    def sync_status(self) -> SyncStatus:
        return self.mirror.status if self.mirror else SyncStatus.OFFLINE

    def add_listener(self, fn: Callable[[Aggregate], None]):
        self._listeners.append(fn)

    def _notify(self):
        for fn in list(self._listeners):
            fn(self.state)

    # ---------- lifecycle ----------
    def start(self):
        self.state = self.store.load_aggregate()
        self.app_config = self.store.load_app_config()
        self.sort_mode = self.store.get_sort_mode()
        self.backup = PeriodicBackup(self.store.load_backup_settings(), snapshot=lambda: self.state,
                                     on_settings_change=self.store.save_backup_settings)
        self.backup.refresh_status()
        raw = self.store.load_sync_config()
        if raw:
            try:
                self.enable_sync(raw, save=False)
            except SyncConfigError as e:
                log.warning("[sync] stored sync config is invalid, dropping it: %s", e)
                self.sync_error = str(e)
                self.store.clear_sync_config()

    def shutdown(self):
        if self.backup is not None:
            self.backup.stop()
        if self.mirror is not None:
            self.mirror.shutdown()
            self.mirror = None

    # ---------- mutation funnel ----------
    def persist(self, tasks: List[Task], logs: List[DailyLog], observations: List[Observation],
                off_days: List[str]) -> Aggregate:
        aggregate = Aggregate(tasks=list(tasks), logs=list(logs),
                              observations=list(observations), off_days=list(off_days))
        self.state = aggregate
        self.store.save_aggregate(aggregate)
        mirror = self.mirror
        if mirror is not None:
            mirror.push(aggregate)
        self._notify()
        return aggregate

    def _apply_remote(self, payload: Dict[str, Any]):
        """Remote wins: the received document replaces local state wholesale."""
        try:
            remote = Aggregate.from_dict(payload)
        except (TypeError, ValueError, AttributeError) as e:
            log.warning("[sync] ignoring malformed remote document: %s", e)
            return
        off_days = remote.off_days if payload.get("offDays") is not None else self.state.off_days
        aggregate = Aggregate(tasks=remote.tasks, logs=remote.logs,
                              observations=remote.observations, off_days=list(off_days))
        self.state = aggregate
        self.store.save_aggregate(aggregate)
        self._notify()

    # ---------- cloud sync ----------
    def enable_sync(self, raw: Any, save: bool = True) -> bool:
        """Validate and connect. Bad config raises SyncConfigError; connection problems return False."""
        sync_config = parse_sync_config(raw)
        if save:
            self.store.save_sync_config(sync_config.to_dict())
        if self.mirror is not None:
            self.disable_sync(forget=False)
        mirror = self.mirror_factory(sync_config)
        self.mirror = mirror
        try:
            mirror.subscribe(self._apply_remote)
        except CloudError as e:
            log.warning("[sync] could not connect, staying local-only: %s", e)
            self.sync_error = str(e)
            mirror.shutdown()
            self.mirror = None
            return False
        self.sync_error = None
        log.info("[sync] enabled for %s", sync_config.base_url)
        return True

    def disable_sync(self, forget: bool = True):
        if self.mirror is not None:
            self.mirror.shutdown()
            self.mirror = None
        if forget:
            self.store.clear_sync_config()

    # ---------- tasks ----------
    def suggest_display_id(self, project_id: str) -> str:
        return ops.suggest_next_display_id(self.tasks, project_id)

    def create_task(self, **kwargs) -> Task:
        tasks, task = ops.create_task(self.tasks, self.app_config, **kwargs)
        self.persist(tasks, self.logs, self.observations, self.off_days)
        return task

    def update_task_status(self, task_id: str, status: str):
        tasks = ops.set_task_status(self.tasks, self.app_config, task_id, status)
        self.persist(tasks, self.logs, self.observations, self.off_days)

    def update_task_fields(self, task_id: str, **fields):
        tasks = ops.update_task_fields(self.tasks, self.app_config, task_id, **fields)
        self.persist(tasks, self.logs, self.observations, self.off_days)

    def delete_task(self, task_id: str):
        self.persist(ops.delete_task(self.tasks, task_id), self.logs, self.observations, self.off_days)

    def reorder_task(self, task_id: str, new_index: int):
        self.persist(ops.reorder_task(self.tasks, task_id, new_index), self.logs, self.observations, self.off_days)

    def sorted_tasks(self) -> List[Task]:
        return ops.sort_tasks(self.tasks, self.sort_mode, self.app_config)

    def set_sort_mode(self, mode: str):
        ops.sort_tasks([], mode)  # validates
        self.sort_mode = mode
        self.store.set_sort_mode(mode)

    # ---------- updates & journal ----------
    def add_update(self, task_id: str, content: str, **kwargs):
        tasks, logs = ops.add_task_update(self.tasks, self.logs, task_id, content, **kwargs)
        self.persist(tasks, logs, self.observations, self.off_days)

    def edit_update(self, task_id: str, update_id: str, **kwargs):
        tasks, logs = ops.edit_task_update(self.tasks, self.logs, task_id, update_id, **kwargs)
        self.persist(tasks, logs, self.observations, self.off_days)

    def delete_update(self, task_id: str, update_id: str):
        tasks = ops.delete_task_update(self.tasks, task_id, update_id)
        self.persist(tasks, self.logs, self.observations, self.off_days)

    def add_log(self, date: str, task_id: str, content: str):
        self.persist(self.tasks, ops.add_daily_log(self.logs, date, task_id, content),
                     self.observations, self.off_days)

    def edit_log(self, log_id: str, content: str):
        tasks, logs = ops.edit_daily_log(self.tasks, self.logs, log_id, content)
        self.persist(tasks, logs, self.observations, self.off_days)

    def delete_log(self, log_id: str):
        self.persist(self.tasks, ops.delete_daily_log(self.logs, log_id), self.observations, self.off_days)

    def prune_logs(self) -> int:
        logs = ops.prune_orphan_logs(self.tasks, self.logs)
        removed = len(self.logs) - len(logs)
        self.persist(self.tasks, logs, self.observations, self.off_days)
        return removed

    def purge_closed(self) -> int:
        tasks, logs = ops.purge_closed_tasks(self.tasks, self.logs)
        removed = len(self.tasks) - len(tasks)
        self.persist(tasks, logs, self.observations, self.off_days)
        return removed

    def toggle_off_day(self, day: str):
        self.persist(self.tasks, self.logs, self.observations, ops.toggle_off_day(self.off_days, day))

    # ---------- observations ----------
    def add_observation(self, content: str, **kwargs) -> Observation:
        observations, obs = ops.add_observation(self.observations, self.app_config, content, **kwargs)
        self.persist(self.tasks, self.logs, observations, self.off_days)
        return obs

    def edit_observation(self, obs_id: str, **kwargs):
        observations = ops.edit_observation(self.observations, self.app_config, obs_id, **kwargs)
        self.persist(self.tasks, self.logs, observations, self.off_days)

    def delete_observation(self, obs_id: str):
        self.persist(self.tasks, self.logs, ops.delete_observation(self.observations, obs_id), self.off_days)

    def advance_observation(self, obs_id: str):
        self._move_observation(obs_id, 1)

    def regress_observation(self, obs_id: str):
        self._move_observation(obs_id, -1)

    def _move_observation(self, obs_id: str, step: int):
        observations = ops.move_observation(self.observations, self.app_config.observation_statuses, obs_id, step)
        self.persist(self.tasks, self.logs, observations, self.off_days)

    # ---------- configuration ----------
    def update_app_config(self, app_config: AppConfig):
        self.app_config = app_config
        self.store.save_app_config(app_config)

    def add_choice(self, group: str, value: str):
        self.update_app_config(ops.add_choice(self.app_config, group, value))

    def rename_choice(self, group: str, old: str, new: str):
        self.update_app_config(ops.rename_choice(self.app_config, group, old, new))

    def remove_choice(self, group: str, value: str):
        self.update_app_config(ops.remove_choice(self.app_config, group, value))

    def set_api_key(self, key: str):
        self.store.set_api_key(key)

    def set_report_instruction(self, text: str):
        self.store.set_report_instruction(text)

    # ---------- export / import ----------
    def export_data(self) -> str:
        data = {
            "tasks": [t.to_dict() for t in self.tasks],
            "logs": [l.to_dict() for l in self.logs],
            "observations": [o.to_dict() for o in self.observations],
        }
        return json.dumps(data, ensure_ascii=False, indent=2)

    @staticmethod
    def export_filename(today: Optional[dt.date] = None) -> str:
        return f"protrack_backup_{(today or dt.date.today()).isoformat()}.json"

    def import_data(self, text: str) -> Aggregate:
        """Replace tasks, logs and observations from an export; off-days and config are kept."""
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ImportFormatError(f"Invalid file: not JSON ({e})")
        if not isinstance(data, dict) or not isinstance(data.get("tasks"), list) \
                or not isinstance(data.get("logs"), list):
            raise ImportFormatError("Invalid file format: 'tasks' and 'logs' lists are required")
        try:
            incoming = Aggregate.from_dict({"tasks": data["tasks"], "logs": data["logs"],
                                            "observations": data.get("observations") or []})
        except (TypeError, ValueError, AttributeError) as e:
            raise ImportFormatError(f"Invalid file format: {e}")
        return self.persist(incoming.tasks, incoming.logs, incoming.observations, self.off_days)

    def storage_stats(self) -> Dict[str, int]:
        """Encoded size in bytes of the whole aggregate and of each collection."""
        def size(obj) -> int:
            return len(json.dumps(obj, ensure_ascii=False).encode("utf-8"))
        data = self.state.to_dict()
        return {
            "total": len(encode_aggregate(self.state).encode("utf-8")),
            "tasks": size(data["tasks"]),
            "logs": size(data["logs"]),
            "observations": size(data["observations"]),
        }

    # ---------- AI ----------
    def _api_key(self) -> str:
        return self.store.get_api_key() or os.getenv(config.GEMINI_ENV_KEY, "")

    def generate_summary(self, today: Optional[dt.date] = None, session=None) -> AIResult:
        try:
            text = summary_service.generate_weekly_summary(
                self.tasks, self.logs, self._api_key(), self.store.get_report_instruction(),
                today=today, session=session)
        except CredentialMissingError as e:
            return AIResult(text=str(e), ok=False, credential_missing=True)
        except AIServiceError as e:
            return AIResult(text=str(e), ok=False)
        return AIResult(text=text)

    def ask(self, history: List[Dict[str, str]], message: str, session=None) -> AIResult:
        try:
            text = summary_service.chat(history, message, self.tasks, self.logs, self._api_key(), session=session)
        except CredentialMissingError as e:
            return AIResult(text=str(e), ok=False, credential_missing=True)
        except AIServiceError as e:
            return AIResult(text=str(e), ok=False)
        return AIResult(text=text)
