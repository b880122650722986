from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import get_settings
from .db import Base, SessionLocal, engine
from .exports import EXPORT_FORMATS, export_report
from .logging_setup import apply_log_level, setup_logging
from .reminders import send_daily_digest, send_task_reminders
from .reports import generate_logged_time_report, generate_task_completion_report, generate_team_summary_report
from .routers.api_reports import build_filters


GENERATORS = {
    "time": generate_logged_time_report,
    "team": generate_team_summary_report,
    "task": generate_task_completion_report,
}


def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("kind", choices=sorted(GENERATORS), help="Report to generate")
    p.add_argument("--project-ids", default=None, help="Comma separated project IDs")
    p.add_argument("--department-ids", default=None, help="Comma separated department IDs")
    p.add_argument("--start-date", default=None, help="ISO date/datetime (inclusive)")
    p.add_argument("--end-date", default=None, help="ISO date/datetime (inclusive; a bare date covers the day)")


def _generate(args: argparse.Namespace):
    filters = build_filters(args.project_ids, args.department_ids, args.start_date, args.end_date)
    with SessionLocal() as db:
        return GENERATORS[args.kind](db, filters)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="taskreport")
    parser.add_argument("--log-level", default=None, help="Override logging.level from settings.yml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables if they do not exist.")

    p_report = sub.add_parser("report", help="Print a report as JSON.")
    _add_filter_args(p_report)

    p_export = sub.add_parser("export", help="Write a report as PDF or spreadsheet.")
    _add_filter_args(p_export)
    p_export.add_argument("--format", choices=EXPORT_FORMATS, default="pdf", help="Output format (default: pdf)")
    p_export.add_argument("--out", default=".", help="Output directory (default: current directory)")

    sub.add_parser("send-reminders", help="Send deadline reminder emails now.")
    sub.add_parser("send-digest", help="Send the daily task digest emails now.")

    args = parser.parse_args(argv)

    # Console only; the daily log files belong to the server process.
    setup_logging(level=get_settings().logging.level)
    if args.log_level:
        apply_log_level(args.log_level)

    if args.command == "init-db":
        Base.metadata.create_all(bind=engine)
        print("ok")
        return

    if args.command == "report":
        print(_generate(args).model_dump_json(by_alias=True, indent=2))
        return

    if args.command == "export":
        filename, content = export_report(_generate(args), args.format)
        out_dir = Path(args.out)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / filename
        path.write_bytes(content)
        print(str(path))
        return

    if args.command == "send-reminders":
        with SessionLocal() as db:
            result = send_task_reminders(db)
        print(result.model_dump_json(by_alias=True, indent=2))
        return

    if args.command == "send-digest":
        with SessionLocal() as db:
            result = send_daily_digest(db)
        print(result.model_dump_json(by_alias=True, indent=2))
        return

    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
