#!/usr/bin/env python3
"""
Command line interface for docpulse.
Runs the ingestion server and the rollup, and manages accounts and selectors.
"""

import sys
from datetime import timedelta
from typing import List, Optional

from .config import Config, get_config
from .errors import DocPulseError
from .models import SelectorDescriptor
from .reports import dashboard_summary, project_breakdown
from .rollup import RollupAggregator, RollupLock
from .server import serve
from .storage import HeartbeatStore
from .utils import format_minutes, now_ts, utc_date

USAGE = """docpulse - document heartbeat tracking

Usage: docpulse <command> [options]
Commands:
  serve [--host H] [--port P]          Run the ingestion server (with scheduled rollup)
  rollup [--keep-raw]                  Roll heartbeats older than the live window into daily totals
  account create EMAIL                 Create an account and print its API key
  selector add DOMAIN TITLE_SELECTOR   Register a selector descriptor
      [--email EMAIL] [--pattern REGEX] [--source url|path] [--template URL]
  project add EMAIL NAME               Create a project
      [--color HEX] [--keywords a,b,c]
  report [--email EMAIL] [--days N]    Print today's summary and the project breakdown

Environment Variables:
  DOCPULSE_DATABASE        SQLite database path
  DOCPULSE_HOST / _PORT    Server bind address
  DOCPULSE_RETENTION_DAYS  Days kept as raw heartbeats (default: 31)
"""


def _option(args: List[str], name: str, default: Optional[str] = None) -> Optional[str]:
    """Value following ``name`` in args, or default."""
    for i, arg in enumerate(args):
        if arg == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _positionals(args: List[str]) -> List[str]:
    """Arguments that are neither options nor option values."""
    result = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg.startswith("--"):
            skip = arg not in ("--keep-raw", "--help")
            continue
        result.append(arg)
    return result


def _open_store(config: Config) -> HeartbeatStore:
    return HeartbeatStore(config.database_path)


def cmd_serve(config: Config, args: List[str]) -> int:
    port = _option(args, "--port")
    try:
        port_number = int(port) if port else None
    except ValueError:
        print(f"Invalid port: {port}")
        return 1
    serve(config, host=_option(args, "--host"), port=port_number)
    return 0


def cmd_rollup(config: Config, args: List[str]) -> int:
    delete_raw = config.get("rollup_delete_raw", True) and "--keep-raw" not in args
    lock = RollupLock(config.data_dir / "rollup.lock")

    with lock as acquired:
        if not acquired:
            print("Another rollup is already running")
            return 1

        store = _open_store(config)
        try:
            aggregator = RollupAggregator(
                store, retention_days=config.retention_days, delete_raw=delete_raw
            )
            aggregator.run()
        finally:
            store.close()
    return 0


def cmd_account(config: Config, args: List[str]) -> int:
    positionals = _positionals(args)
    if len(positionals) != 2 or positionals[0] != "create":
        print("Usage: docpulse account create EMAIL")
        return 1

    store = _open_store(config)
    try:
        account = store.create_account(positionals[1])
    finally:
        store.close()

    print(f"Created account {account.id} for {account.email}")
    print(f"API key: {account.api_key}")
    return 0


def cmd_selector(config: Config, args: List[str]) -> int:
    positionals = _positionals(args)
    if len(positionals) != 3 or positionals[0] != "add":
        print("Usage: docpulse selector add DOMAIN TITLE_SELECTOR [options]")
        return 1

    store = _open_store(config)
    try:
        account_id = None
        email = _option(args, "--email")
        if email:
            account = store.get_account_by_email(email)
            if account is None:
                print(f"No account for {email}")
                return 1
            account_id = account.id

        descriptor = store.put_selector(
            SelectorDescriptor(
                domain=positionals[1],
                title_selector=positionals[2],
                doc_id_pattern=_option(args, "--pattern"),
                doc_id_source=_option(args, "--source", "url"),
                url_template=_option(args, "--template"),
                account_id=account_id,
            )
        )
    finally:
        store.close()

    owner = f"account {descriptor.account_id}" if descriptor.account_id else "all accounts"
    print(f"Selector {descriptor.id} saved for {descriptor.domain} ({owner})")
    return 0


def cmd_project(config: Config, args: List[str]) -> int:
    positionals = _positionals(args)
    if len(positionals) != 3 or positionals[0] != "add":
        print("Usage: docpulse project add EMAIL NAME [--color HEX] [--keywords a,b]")
        return 1

    store = _open_store(config)
    try:
        account = store.get_account_by_email(positionals[1])
        if account is None:
            print(f"No account for {positionals[1]}")
            return 1
        keywords = _option(args, "--keywords", "")
        project = store.create_project(
            account.id,
            positionals[2],
            color=_option(args, "--color", "#94a3b8"),
            keywords=[k for k in keywords.split(",") if k.strip()],
        )
    finally:
        store.close()

    print(f"Project {project.id} '{project.name}' created")
    return 0


def cmd_report(config: Config, args: List[str]) -> int:
    email = _option(args, "--email")
    try:
        days = int(_option(args, "--days", "7"))
    except ValueError:
        print("Invalid --days value")
        return 1

    store = _open_store(config)
    try:
        account = store.get_account_by_email(email) if email else None
        if account is None:
            print("Usage: docpulse report --email EMAIL [--days N]")
            return 1

        now = now_ts()
        end = utc_date(now)
        start = end - timedelta(days=max(days, 1) - 1)
        summary = dashboard_summary(store, account.id, now)
        breakdown = project_breakdown(store, account.id, start, end)
    finally:
        store.close()

    print(f"Report for {account.email}")
    print(f"  Active today: {format_minutes(summary['today_minutes'])}")
    print(f"  Projects: {summary['projects']}")
    print(f"  Unallocated documents: {summary['unallocated']}")
    print(f"\nTime by project, {start} to {end}:")
    if not breakdown:
        print("  No activity recorded")
    for entry in breakdown:
        print(
            f"  {entry['name']:<24} {format_minutes(entry['minutes']):>9} "
            f"({entry['percent']}%)"
        )
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "rollup": cmd_rollup,
    "account": cmd_account,
    "selector": cmd_selector,
    "project": cmd_project,
    "report": cmd_report,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = list(sys.argv[1:] if argv is None else argv)

    if not args or "--help" in args or "-h" in args:
        print(USAGE)
        return 0

    command = COMMANDS.get(args[0])
    if command is None:
        print(f"Unknown command: {args[0]}")
        print("Use --help for usage information")
        return 1

    try:
        return command(get_config(), args[1:])
    except DocPulseError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
