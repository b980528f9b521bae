from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from core import config
from core.models import Aggregate, AppConfig, BackupSettings, decode_aggregate, encode_aggregate

log = logging.getLogger(__name__)


class LocalStore:
    """Synchronous key/value store: one text file per key under ``root``.

    Every loader tolerates a missing key and a corrupt value by returning the
    documented default; read problems are logged, never raised.
    """

    def __init__(self, root: Path | str = config.DATA_DIR):
        self.root = Path(root)

    # ---------- raw keys ----------
    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            log.warning("[storage] cannot read %s: %s", key, e)
            return None

    def set_item(self, key: str, value: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _load_json(self, key: str) -> Optional[Any]:
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            log.warning("[storage] corrupt value under %s, using defaults: %s", key, e)
            return None

    def _load_object(self, key: str) -> Optional[Dict[str, Any]]:
        data = self._load_json(key)
        if data is not None and not isinstance(data, dict):
            log.warning("[storage] unexpected %s under %s, using defaults", type(data).__name__, key)
            return None
        return data

    # ---------- aggregate ----------
    def load_aggregate(self) -> Aggregate:
        return decode_aggregate(self.get_item(config.DATA_KEY))

    def save_aggregate(self, aggregate: Aggregate) -> str:
        text = encode_aggregate(aggregate)
        self.set_item(config.DATA_KEY, text)
        return text

    # ---------- app config ----------
    def load_app_config(self) -> AppConfig:
        data = self._load_object(config.APP_CONFIG_KEY)
        if data is None:
            return AppConfig()
        try:
            return AppConfig.from_dict(data)
        except (TypeError, ValueError, AttributeError) as e:
            log.warning("[storage] bad app config, using defaults: %s", e)
            return AppConfig()

    def save_app_config(self, app_config: AppConfig) -> None:
        self.set_item(config.APP_CONFIG_KEY, json.dumps(app_config.to_dict(), ensure_ascii=False))

    # ---------- backup settings ----------
    def load_backup_settings(self) -> BackupSettings:
        data = self._load_object(config.BACKUP_SETTINGS_KEY)
        if data is None:
            return BackupSettings()
        try:
            return BackupSettings.from_dict(data)
        except (TypeError, ValueError) as e:
            log.warning("[storage] bad backup settings, using defaults: %s", e)
            return BackupSettings()

    def save_backup_settings(self, settings: BackupSettings) -> None:
        self.set_item(config.BACKUP_SETTINGS_KEY, json.dumps(settings.to_dict()))

    # ---------- sync config (credentials) ----------
    def load_sync_config(self) -> Optional[Dict[str, Any]]:
        return self._load_object(config.SYNC_CONFIG_KEY)

    def save_sync_config(self, raw: Dict[str, Any]) -> None:
        self.set_item(config.SYNC_CONFIG_KEY, json.dumps(raw))

    def clear_sync_config(self) -> None:
        self.remove_item(config.SYNC_CONFIG_KEY)

    # ---------- plain strings ----------
    def get_api_key(self) -> str:
        return (self.get_item(config.API_KEY_KEY) or "").strip()

    def set_api_key(self, key: str) -> None:
        self.set_item(config.API_KEY_KEY, key.strip())

    def get_report_instruction(self) -> str:
        return self.get_item(config.REPORT_INSTRUCTION_KEY) or ""

    def set_report_instruction(self, text: str) -> None:
        self.set_item(config.REPORT_INSTRUCTION_KEY, text)

    def get_sort_mode(self) -> str:
        mode = (self.get_item(config.SORT_MODE_KEY) or "").strip()
        return mode if mode in config.SORT_MODES else config.DEFAULT_SORT_MODE

    def set_sort_mode(self, mode: str) -> None:
        self.set_item(config.SORT_MODE_KEY, mode)
