import os
from pathlib import Path

# ===================== CONFIG =====================
DATA_DIR = Path(os.getenv("PROTRACK_DATA_DIR", str(Path.home() / ".protrack")))
LOG_LEVEL = os.getenv("PROTRACK_LOG_LEVEL", "INFO").upper()

# Local store keys (one file per key inside DATA_DIR)
DATA_KEY = "protrack_data"
APP_CONFIG_KEY = "protrack_app_config"
BACKUP_SETTINGS_KEY = "protrack_backup_settings"
SYNC_CONFIG_KEY = "protrack_sync_config"
API_KEY_KEY = "protrack_gemini_key"
REPORT_INSTRUCTION_KEY = "protrack_report_instruction"
SORT_MODE_KEY = "protrack_sort_mode"

# Cloud document
DEFAULT_COLLECTION = "protrack"
DEFAULT_DOCUMENT_ID = "protrackstate01"  # PocketBase record ids are 15 chars
HTTP_TIMEOUT = 10

# Backup
BACKUP_TICK_SECONDS = 60
MIN_BACKUP_INTERVAL_MINUTES = 1
DEFAULT_BACKUP_INTERVAL_MINUTES = 60
BACKUP_FILE_PREFIX = "protrack_backup_"

# AI
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_MODEL = os.getenv("PROTRACK_GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_ENV_KEY = "GEMINI_API_KEY"
AI_TIMEOUT = 60

# Defaults for the configurable lists
DEFAULT_TASK_STATUSES = ["Not Started", "In Progress", "Waiting for others", "Done", "Archived"]
DEFAULT_TASK_PRIORITIES = ["High", "Medium", "Low"]
DEFAULT_OBSERVATION_STATUSES = ["New", "Reviewing", "Resolved", "Archived"]
CLOSED_STATUSES = ("Done", "Archived")
DEFAULT_HIGHLIGHT_TAGS = [
    {"id": "important", "color": "#EF4444", "label": "Important"},
    {"id": "decision", "color": "#F59E0B", "label": "Decision"},
    {"id": "milestone", "color": "#10B981", "label": "Milestone"},
]
DEFAULT_PROJECT_ID = "General"

SORT_MODES = ("manual", "due_date", "priority", "created")
DEFAULT_SORT_MODE = "manual"
