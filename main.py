"""CLI entry point for the profile harvester."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from harvester.browser.session import parse_cookies
from harvester.core.config import Settings
from harvester.core.db import (
    get_parsed_records,
    init_db,
    insert_account,
    list_accounts,
    list_jobs,
    set_validation_status,
)
from harvester.core.errors import HarvesterError
from harvester.core.schemas import (
    AccountSelectionMode,
    JobRequest,
    JobType,
    ProxyConfig,
    ValidationStatus,
)
from harvester.pipeline.intake import cancel_job, get_job_status, submit_job
from harvester.pipeline.orchestrator import Orchestrator
from harvester.platforms.linkedin.adapter import LinkedInAdapter


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Profile harvester - staged fetch/parse pipeline over an account pool",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- run ---
    run_parser = subparsers.add_parser("run", help="Run the job processor")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick (one fetch job, one parse job) and exit",
    )
    _add_common(run_parser)

    # --- submit ---
    submit_parser = subparsers.add_parser("submit", help="Create a job")
    submit_parser.add_argument(
        "--type",
        dest="job_type",
        required=True,
        choices=[t.value for t in JobType],
        help="Job type",
    )
    targets = submit_parser.add_mutually_exclusive_group(required=True)
    targets.add_argument("--url", dest="urls", action="append", help="Target URL (repeatable)")
    targets.add_argument("--query", help="Search keywords (search jobs only)")
    submit_parser.add_argument("--max-pages", type=int, default=1, help="Search pages (1-10)")
    submit_parser.add_argument("--name", default="", help="Job name")
    submit_parser.add_argument("--priority", type=int, default=5, help="Higher runs first")
    submit_parser.add_argument(
        "--account",
        dest="account_ids",
        type=int,
        action="append",
        help="Use only these account IDs (repeatable); default is rotation",
    )
    _add_common(submit_parser)

    # --- status ---
    status_parser = subparsers.add_parser("status", help="Show job status")
    status_parser.add_argument("job_id", type=int, nargs="?", help="Job ID (default: recent jobs)")
    status_parser.add_argument(
        "--records",
        action="store_true",
        help="Also print the job's parsed records",
    )
    _add_common(status_parser)

    # --- cancel ---
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a pending or running job")
    cancel_parser.add_argument("job_id", type=int)
    _add_common(cancel_parser)

    # --- add-account ---
    account_parser = subparsers.add_parser("add-account", help="Register an account")
    account_parser.add_argument(
        "--cookies",
        required=True,
        help="Path to a cookies JSON file (see scripts/extract_cookies.py)",
    )
    account_parser.add_argument("--label", default="", help="Display label, e.g. the e-mail")
    account_parser.add_argument("--limit", type=int, help="Daily request limit")
    account_parser.add_argument("--proxy-server", help="Proxy server, e.g. http://host:port")
    account_parser.add_argument("--proxy-username")
    account_parser.add_argument("--proxy-password")
    account_parser.add_argument(
        "--status",
        default=ValidationStatus.PENDING.value,
        choices=[s.value for s in ValidationStatus],
        help="Initial validation status (default: PENDING)",
    )
    _add_common(account_parser)

    # --- accounts ---
    accounts_parser = subparsers.add_parser("accounts", help="List accounts")
    _add_common(accounts_parser)

    # --- set-account-status ---
    validate_parser = subparsers.add_parser(
        "set-account-status",
        help="Record an account validation result",
    )
    validate_parser.add_argument("account_id", type=int)
    validate_parser.add_argument("status", choices=[s.value for s in ValidationStatus])
    validate_parser.add_argument("--message", help="Validation error message")
    _add_common(validate_parser)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def run(settings: Settings, once: bool) -> None:
    """Drive the orchestrator with real browser sessions."""
    conn = init_db(settings.database.path)
    orchestrator = Orchestrator.build(conn, settings, LinkedInAdapter())
    try:
        if once:
            result = await orchestrator.run_one_tick()
            print(f"Tick complete: fetched job {result.fetched_job_id}, "
                  f"parsed job {result.parsed_job_id}")
        else:
            await orchestrator.run_forever()
    finally:
        await orchestrator.close()
        conn.close()


def cmd_submit(args: argparse.Namespace, settings: Settings) -> None:
    mode = AccountSelectionMode.SPECIFIC if args.account_ids else AccountSelectionMode.ROTATION
    request = JobRequest(
        name=args.name,
        job_type=JobType(args.job_type),
        urls=args.urls or [],
        search_query=args.query,
        max_pages=args.max_pages,
        account_selection_mode=mode,
        selected_account_ids=args.account_ids or [],
        priority=args.priority,
    )
    conn = init_db(settings.database.path)
    try:
        job_id = submit_job(conn, request, LinkedInAdapter())
    finally:
        conn.close()
    print(f"Created job {job_id}")


def cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        if args.job_id is None:
            for job in list_jobs(conn):
                p = job.progress
                print(f"  #{job.id} [{job.job_type.value}] {job.stage.value}/{job.status.value} "
                      f"{p.fetched}/{p.total} fetched, {p.parsed} parsed, {p.failed} failed"
                      f"{'  ' + job.name if job.name else ''}")
            return

        view = get_job_status(conn, args.job_id)
        if view is None:
            print(f"Job {args.job_id} not found", file=sys.stderr)
            sys.exit(1)
        print(view.model_dump_json(indent=2))

        if args.records:
            for record in get_parsed_records(conn, args.job_id):
                print(record.model_dump_json(indent=2))
    finally:
        conn.close()


def cmd_cancel(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        cancelled = cancel_job(conn, args.job_id)
    finally:
        conn.close()
    if not cancelled:
        print(f"Job {args.job_id} is not pending or running", file=sys.stderr)
        sys.exit(1)
    print(f"Cancelled job {args.job_id}")


def cmd_add_account(args: argparse.Namespace, settings: Settings) -> None:
    payload = Path(args.cookies).read_text()
    cookies = parse_cookies(payload)
    proxy = None
    if args.proxy_server:
        proxy = ProxyConfig(
            server=args.proxy_server,
            username=args.proxy_username,
            password=args.proxy_password,
        )

    conn = init_db(settings.database.path)
    try:
        account_id = insert_account(
            conn,
            cookies=payload,
            label=args.label,
            daily_request_limit=args.limit or settings.accounts.default_daily_limit,
            proxy=proxy,
            validation_status=ValidationStatus(args.status),
        )
    finally:
        conn.close()
    print(f"Registered account {account_id} ({len(cookies)} cookies, status {args.status})")


def cmd_accounts(settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        accounts = list_accounts(conn)
    finally:
        conn.close()
    if not accounts:
        print("No accounts registered")
        return
    for a in accounts:
        cooldown = f", cooldown until {a.cooldown_until:%Y-%m-%d %H:%M}" if a.cooldown_until else ""
        print(f"  #{a.id} {a.label or '-'} [{a.validation_status.value}] "
              f"{a.daily_request_count}/{a.daily_request_limit} today, "
              f"{a.consecutive_failures} failures{cooldown}")


def cmd_set_account_status(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        updated = set_validation_status(
            conn, args.account_id, ValidationStatus(args.status), args.message,
        )
    finally:
        conn.close()
    if not updated:
        print(f"Account {args.account_id} not found", file=sys.stderr)
        sys.exit(1)
    print(f"Account {args.account_id} is now {args.status}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config) if Path(args.config).exists() else Settings()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "run":
            try:
                asyncio.run(run(settings, args.once))
            except KeyboardInterrupt:
                print("\nStopped.")
        elif args.command == "submit":
            cmd_submit(args, settings)
        elif args.command == "status":
            cmd_status(args, settings)
        elif args.command == "cancel":
            cmd_cancel(args, settings)
        elif args.command == "add-account":
            cmd_add_account(args, settings)
        elif args.command == "accounts":
            cmd_accounts(settings)
        elif args.command == "set-account-status":
            cmd_set_account_status(args, settings)
    except (FileNotFoundError, ValidationError, HarvesterError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
