from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional

import requests

from core import config
from core.exceptions import AIServiceError, CredentialMissingError
from core.models import DailyLog, Task
from core.operations import week_start, weekly_slice

log = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "API Key is missing. Please go to Settings and enter your Gemini API Key."


def _task_block(task: Task, since: str) -> str:
    recent = [u for u in task.updates if u.timestamp >= since]
    lines = [
        f"Task ID: {task.display_id} ({task.source}) [project {task.project_id}]",
        f"Description: {task.description}",
        f"Status: {task.status} | Priority: {task.priority}",
        f"Due Date: {task.due_date or '-'}",
        "Recent Updates:",
    ]
    lines += [f"- [{u.timestamp[:10]}] {u.content}" for u in recent] or ["- none"]
    return "\n".join(lines)


def _logs_block(logs: List[DailyLog], tasks: List[Task]) -> str:
    by_id = {t.id: t for t in tasks}
    out = []
    for entry in sorted(logs, key=lambda l: l.date):
        task = by_id.get(entry.task_id)
        out.append(f"- [{entry.date}] On task {task.display_id if task else 'Unknown'}: {entry.content}")
    return "\n".join(out) or "- none"


def build_weekly_prompt(tasks: List[Task], logs: List[DailyLog], today: dt.date,
                        instruction: str = "") -> str:
    start = week_start(today)
    active, recent = weekly_slice(tasks, logs, today)
    parts = [
        "You are an executive assistant. Write a weekly progress summary from my task tracking data.",
        f"Current Date: {today.isoformat()}",
        f"Start of Week: {start.isoformat()}",
        "Daily Logs from this week:",
        _logs_block(recent, tasks),
        "Ongoing tasks:",
        "\n---\n".join(_task_block(t, start.isoformat()) for t in active) or "none",
        instruction.strip() or (
            "Format it in Markdown with: Executive Summary, Key Achievements, Ongoing Actions "
            "(cite Task IDs), Upcoming Deadlines, Blockers/Issues."),
    ]
    return "\n\n".join(parts)


def _generate(contents: List[Dict[str, Any]], api_key: str, session: Optional[requests.Session] = None) -> str:
    if not api_key:
        raise CredentialMissingError(MISSING_KEY_MESSAGE)
    s = session or requests.Session()
    url = f"{config.GEMINI_API_URL}/{config.GEMINI_MODEL}:generateContent"
    try:
        r = s.post(url, params={"key": api_key}, json={"contents": contents}, timeout=config.AI_TIMEOUT)
    except requests.RequestException as e:
        raise AIServiceError(f"AI Service Error: {e}")
    if not r.ok:
        log.error("Gemini API error %s: %s", r.status_code, r.text)
        raise AIServiceError(f"AI Service Error: {r.status_code} {r.text}")
    try:
        candidates = r.json().get("candidates") or []
        parts = candidates[0]["content"]["parts"] if candidates else []
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise AIServiceError(f"AI Service Error: unexpected response ({e})")
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    return text or "Could not generate summary."


def generate_weekly_summary(tasks: List[Task], logs: List[DailyLog], api_key: str, instruction: str = "",
                            today: Optional[dt.date] = None, session: Optional[requests.Session] = None) -> str:
    if not api_key:
        raise CredentialMissingError(MISSING_KEY_MESSAGE)
    prompt = build_weekly_prompt(tasks, logs, today or dt.date.today(), instruction)
    return _generate([{"role": "user", "parts": [{"text": prompt}]}], api_key, session)


def chat(history: List[Dict[str, str]], message: str, tasks: List[Task], logs: List[DailyLog],
         api_key: str, today: Optional[dt.date] = None, session: Optional[requests.Session] = None) -> str:
    """Answer a question about the tracked work. ``history`` items are ``{"role", "text"}``."""
    if not api_key:
        raise CredentialMissingError(MISSING_KEY_MESSAGE)
    today = today or dt.date.today()
    context = (
        "You are a project assistant with access to my tasks and journal.\n\n"
        + build_weekly_prompt(tasks, logs, today, "Answer the user's questions using this data.")
    )
    contents = [{"role": "user", "parts": [{"text": context}]}]
    for m in history:
        role = "model" if m.get("role") == "model" else "user"
        contents.append({"role": role, "parts": [{"text": m.get("text", "")}]})
    contents.append({"role": "user", "parts": [{"text": message}]})
    return _generate(contents, api_key, session)
