from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from core import config
from core.exceptions import ProTrackError
from core.models import Task
from controller.app_controller import AppController
from storage.local_store import LocalStore

log = logging.getLogger("protrack")


def _find_task(controller: AppController, display_id: str) -> Task:
    wanted = display_id.casefold()
    for t in controller.tasks:
        if t.display_id.casefold() == wanted:
            return t
    raise ProTrackError(f"No task with ID '{display_id}'")


# ---------- commands ----------
def cmd_status(controller: AppController, args) -> int:
    stats = controller.storage_stats()
    print(f"Tasks: {len(controller.tasks)} · Logs: {len(controller.logs)} · "
          f"Observations: {len(controller.observations)} · Off-days: {len(controller.off_days)}")
    for status in controller.app_config.task_statuses:
        print(f"  {status}: {sum(1 for t in controller.tasks if t.status == status)}")
    print(f"Sync: {controller.sync_status.value}" + (f" ({controller.sync_error})" if controller.sync_error else ""))
    backup = controller.backup
    print(f"Backup: {backup.status.value} · folder {backup.settings.folder_name or '-'} · "
          f"every {backup.settings.interval_minutes} min · last {backup.settings.last_backup or 'never'}")
    print(f"Storage: {stats['total']} bytes")
    return 0


def cmd_add_task(controller: AppController, args) -> int:
    task = controller.create_task(description=args.description, display_id=args.id, source=args.source,
                                  project_id=args.project, due_date=args.due,
                                  status=args.status, priority=args.priority)
    print(f"Created {task.display_id}")
    return 0


def cmd_suggest_id(controller: AppController, args) -> int:
    print(controller.suggest_display_id(args.project))
    return 0


def cmd_update(controller: AppController, args) -> int:
    task = _find_task(controller, args.task)
    controller.add_update(task.id, args.text, highlight_color=args.highlight)
    print(f"Update added to {task.display_id}")
    return 0


def cmd_export(controller: AppController, args) -> int:
    target = Path(args.file or controller.export_filename())
    target.write_text(controller.export_data(), encoding="utf-8")
    print(f"Exported to {target}")
    return 0


def cmd_import(controller: AppController, args) -> int:
    aggregate = controller.import_data(Path(args.file).read_text(encoding="utf-8"))
    print(f"Imported {len(aggregate.tasks)} tasks, {len(aggregate.logs)} logs, "
          f"{len(aggregate.observations)} observations")
    return 0


def cmd_sync(controller: AppController, args) -> int:
    if args.disable:
        controller.disable_sync()
        print("Sync disabled")
        return 0
    if not args.config:
        print(f"Sync: {controller.sync_status.value}")
        return 0
    ok = controller.enable_sync(Path(args.config).read_text(encoding="utf-8"))
    print("Sync connected" if ok else f"Sync saved but offline: {controller.sync_error}")
    return 0 if ok else 1


def cmd_backup(controller: AppController, args) -> int:
    backup = controller.backup
    if args.disable:
        backup.disable()
    if args.folder:
        backup.select_folder(args.folder)
    if args.interval:
        backup.set_interval(args.interval)
    if args.regrant:
        backup.regrant()
    if args.now:
        backup.backup_now()
    print(f"Backup: {backup.status.value}" + (f" ({backup.last_error})" if backup.last_error else ""))
    return 0


def cmd_summary(controller: AppController, args) -> int:
    result = controller.generate_summary()
    print(result.text)
    if result.credential_missing:
        print("Set a key with: protrack key <API_KEY>")
    return 0 if result.ok else 1


def cmd_key(controller: AppController, args) -> int:
    controller.set_api_key(args.key)
    print("API key saved")
    return 0


def cmd_run(controller: AppController, args) -> int:
    controller.add_listener(lambda agg: log.info("state: %s tasks, %s logs, %s observations",
                                                 len(agg.tasks), len(agg.logs), len(agg.observations)))
    controller.backup.start()
    print("ProTrack running (Ctrl+C to stop)")
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        print("Stopping")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="protrack", description="Local-first project and task tracker")
    p.add_argument("--data-dir", default=str(config.DATA_DIR), help="local store directory")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="show counts, sync and backup state").set_defaults(func=cmd_status)

    a = sub.add_parser("add-task", help="create a task")
    a.add_argument("description")
    a.add_argument("--id")
    a.add_argument("--source")
    a.add_argument("--project", default=config.DEFAULT_PROJECT_ID)
    a.add_argument("--due")
    a.add_argument("--status")
    a.add_argument("--priority")
    a.set_defaults(func=cmd_add_task)

    s = sub.add_parser("suggest-id", help="next free task ID for a project")
    s.add_argument("project")
    s.set_defaults(func=cmd_suggest_id)

    u = sub.add_parser("update", help="add an update (and journal entry) to a task")
    u.add_argument("task", help="task ID")
    u.add_argument("text")
    u.add_argument("--highlight")
    u.set_defaults(func=cmd_update)

    e = sub.add_parser("export", help="write tasks, logs and observations to a JSON file")
    e.add_argument("file", nargs="?")
    e.set_defaults(func=cmd_export)

    i = sub.add_parser("import", help="replace data from an exported JSON file")
    i.add_argument("file")
    i.set_defaults(func=cmd_import)

    y = sub.add_parser("sync", help="configure cloud sync")
    y.add_argument("config", nargs="?", help="JSON file with baseUrl, collection, documentId, identity, password")
    y.add_argument("--disable", action="store_true")
    y.set_defaults(func=cmd_sync)

    b = sub.add_parser("backup", help="configure folder backups")
    b.add_argument("--folder")
    b.add_argument("--interval", type=int)
    b.add_argument("--now", action="store_true")
    b.add_argument("--regrant", action="store_true")
    b.add_argument("--disable", action="store_true")
    b.set_defaults(func=cmd_backup)

    sub.add_parser("summary", help="AI weekly report").set_defaults(func=cmd_summary)

    k = sub.add_parser("key", help="store the Gemini API key")
    k.add_argument("key")
    k.set_defaults(func=cmd_key)

    sub.add_parser("run", help="keep syncing and backing up until interrupted").set_defaults(func=cmd_run)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    controller = AppController(LocalStore(args.data_dir))
    try:
        controller.start()
        return args.func(controller, args)
    except (ProTrackError, KeyError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if controller.mirror is not None:
            controller.mirror.flush(timeout=10)
        controller.shutdown()


if __name__ == "__main__":
    sys.exit(main())
