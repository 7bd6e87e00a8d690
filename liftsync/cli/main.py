"""Terminal entrypoint for inspecting and driving the local sync state."""

from __future__ import annotations

import argparse
import asyncio
import logging

from liftsync.api.client import WorkoutApi
from liftsync.core.config import ConfigError, Settings
from liftsync.core.engine import WorkoutEngine
from liftsync.session.machine import local_now
from liftsync.session.timing import (
    format_time,
    get_estimated_end_time,
    get_estimated_time_remaining,
    get_session_statistics,
)
from liftsync.storage.store import JsonFileStore

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="liftsync offline-first workout sync client")
    parser.add_argument("--config", default=None, help="Path to a YAML settings file")
    parser.add_argument("--user", default=None, help="User id whose local state is used")
    parser.add_argument("--token", default=None, help="Bearer token for the server and realtime channel")
    parser.add_argument("--status", action="store_true", help="Print the active session and pending queue")
    parser.add_argument("--sync", action="store_true", help="Run one pending sync pass now")
    parser.add_argument(
        "--pull-history",
        action="store_true",
        help="Rebuild completed and locked days from the server's session history",
    )
    parser.add_argument(
        "--check-stale",
        action="store_true",
        help="End the active session if it has been inactive past the threshold",
    )
    parser.add_argument(
        "--weekly-reset",
        action="store_true",
        help="Run the Monday reset check (also runs on every load)",
    )
    parser.add_argument(
        "--listen",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Run background sync, stale checks and realtime for SECONDS",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def configure_logging(debug: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    for noisy in ("httpx", "httpcore", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_engine(settings: Settings, user_id: str | None, token: str | None) -> WorkoutEngine:
    api = WorkoutApi(settings.server_url, token=token, timeout=settings.http_timeout_sec)
    store = JsonFileStore(settings.state_path)
    return WorkoutEngine(settings, store, api, user_id=user_id, token=token)


def print_status(engine: WorkoutEngine) -> None:
    prefs = engine.prefs
    session = engine.machine.session
    print(f"User:            {engine.user_id or '-'}")
    print(f"Person:          {prefs.selected_person or '-'}")
    print(f"Current day:     {prefs.current_day}")
    print(f"Rest between:    {prefs.time_between_sets}s{' (manual)' if prefs.use_manual_time else ''}")
    print(f"Last reset:      {prefs.last_reset_date or '-'}")
    locked = sorted(d for d, flag in engine.machine.locked_days.items() if flag)
    print(f"Locked days:     {', '.join(map(str, locked)) or '-'}")
    if session is None:
        print("Session:         none")
    else:
        kind = "local" if session.is_provisional else "server"
        print(f"Session:         {session.id} ({kind}) day {session.day_number}")
        print(f"  started:       {session.start_time.isoformat()}")
        last_set = session.last_set_end_time.isoformat() if session.last_set_end_time else "-"
        print(f"  last set end:  {last_set}")
        now = local_now()
        stats = get_session_statistics(
            start_time=session.start_time,
            last_set_end_time=session.last_set_end_time,
            completed=engine.machine.completed_days,
            day_number=session.day_number,
            plan=prefs.workout_plan,
            person=prefs.selected_person,
            time_between_sets=prefs.time_between_sets,
            now=now,
        )
        if stats is not None:
            print(f"  elapsed:       {format_time(stats.total_time_sec)}")
            print(f"  sets:          {stats.completed_sets}/{stats.total_sets or '?'}")
            remaining = get_estimated_time_remaining(
                plan=prefs.workout_plan,
                person=prefs.selected_person,
                day_number=session.day_number,
                completed=engine.machine.completed_days,
                time_between_sets=prefs.time_between_sets,
                start_time=session.start_time,
                session_average_rest=stats.average_rest_sec,
                use_manual_time=prefs.use_manual_time,
                server_average_rest=(
                    engine.server_analytics.average_time_between_sets if engine.server_analytics else None
                ),
            )
            end = get_estimated_end_time(remaining, now)
            print(f"  remaining:     ~{format_time(remaining)} (ends {end:%H:%M})")
    pending = engine.sync.pending
    print(f"Pending syncs:   {len(pending)}")
    for op in pending:
        print(f"  - {type(op).__name__:<13} {op.timestamp}")


async def run(args: argparse.Namespace, settings: Settings) -> int:
    engine = build_engine(settings, args.user, args.token)
    try:
        await engine.load()

        if args.weekly_reset:
            fired = await engine.weekly_reset.check_on_load()
            print(f"Weekly reset: {fired or 'not due'}")
        if args.check_stale:
            ended = await engine.monitor.check_and_end_stale_session()
            print(f"Stale session ended: {'yes' if ended else 'no'}")
        if args.sync:
            report = await engine.sync.sync_pending_data()
            if report.skipped:
                print("Nothing to sync")
            else:
                print(f"Synced {report.synced}, dropped {report.dropped}, still pending {report.failed}")
        if args.pull_history:
            completed = await engine.sync_from_server()
            print(f"Server history: {len(completed) if completed else 0} days with sets")
        if args.listen is not None:
            engine.start()
            await asyncio.sleep(max(0.0, args.listen))
        if args.status:
            print_status(engine)
    finally:
        await engine.close()
    return 0


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging(args.debug)

    actions = (args.status, args.sync, args.pull_history, args.check_stale, args.weekly_reset)
    if not any(actions) and args.listen is None:
        parser.print_help()
        return 1

    try:
        settings = Settings.load(args.config)
    except ConfigError as exc:
        parser.error(str(exc))

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
