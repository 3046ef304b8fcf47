"""
Command-line interface: python -m healify <command>.

Commands:
    api               Run the HTTP API (uvicorn)
    worker            Run the worker pool in the foreground
    enqueue           Queue a test run
    status            Show a test run's status
    cancel            Cancel a test run that has not started
    register-project  Create or update a project
    set-credential    Store a user's GitHub access token
    heal              Suggest a replacement for one selector
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from healify import __version__
from healify.infra.logging_config import setup_logging
from healify.infra.settings import Settings


logger = logging.getLogger("healify.cli")


EXIT_SUCCESS = 0
EXIT_INVALID_INPUT = 2
EXIT_NOT_QUEUED = 3
EXIT_NOT_FOUND = 4


def _print_json(data: dict) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def cmd_api(args: argparse.Namespace, settings: Settings) -> int:
    """Run the FastAPI app."""
    import uvicorn

    uvicorn.run("healify.api.main:app", host=args.host, port=args.port)
    return EXIT_SUCCESS


def cmd_worker(args: argparse.Namespace, settings: Settings) -> int:
    """Run workers until SIGINT/SIGTERM."""
    from healify.scheduler.service import SchedulerService

    service = SchedulerService.create(settings)

    def handle_signal(signum, frame):
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info(f"{signal_name} received, finishing current jobs before exit")
        service.stop(timeout=args.stop_timeout)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    logger.info(f"Healify worker {__version__} starting ({settings.worker_concurrency} workers)")
    stats = service.start(run_recovery=not args.skip_recovery, blocking=True)
    logger.info(f"Worker exited (startup recovery: {stats})")
    return EXIT_SUCCESS


def cmd_enqueue(args: argparse.Namespace, settings: Settings) -> int:
    """Queue a test run."""
    from healify.scheduler.entities import generate_uuid
    from healify.scheduler.service import SchedulerService

    metadata = {
        key: value
        for key, value in {
            "branch": args.branch,
            "commit_message": args.commit_message,
            "commit_author": args.commit_author,
            "repository": args.repository,
        }.items()
        if value
    }

    service = SchedulerService.create(settings)
    result = service.enqueue(
        project_id=args.project_id,
        commit_ref=args.commit_ref,
        test_run_id=args.test_run_id or generate_uuid(),
        metadata=metadata,
    )
    _print_json({
        "queued": result.queued,
        "test_run_id": result.test_run_id,
        "job_id": result.job_id,
        "created": result.created,
        "reason": result.reason,
    })
    return EXIT_SUCCESS if result.queued else EXIT_NOT_QUEUED


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Print a test run's status."""
    from healify.scheduler.service import SchedulerService

    view = SchedulerService.create(settings).get_status(args.test_run_id)
    _print_json(view.to_dict())
    return EXIT_SUCCESS if view.found else EXIT_NOT_FOUND


def cmd_cancel(args: argparse.Namespace, settings: Settings) -> int:
    """Cancel a queued test run."""
    from healify.scheduler.errors import InvalidOperationError, JobNotFoundError
    from healify.scheduler.service import SchedulerService

    try:
        view = SchedulerService.create(settings).cancel(args.test_run_id)
    except JobNotFoundError:
        print(f"No job for test run {args.test_run_id}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except InvalidOperationError as e:
        print(f"Cannot cancel: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    _print_json(view.to_dict())
    return EXIT_SUCCESS


def cmd_register_project(args: argparse.Namespace, settings: Settings) -> int:
    """Create or update a project."""
    from healify.pipeline.entities import Project
    from healify.pipeline.store import ResultStore

    store = ResultStore(settings.results_db_path)
    existing = store.get_project(args.project_id)
    project = Project(
        project_id=args.project_id,
        name=args.name or (existing.name if existing else args.project_id),
        repository=args.repository or (existing.repository if existing else None),
        owner_user_id=args.owner or (existing.owner_user_id if existing else None),
        test_command=args.test_command or (existing.test_command if existing else None),
    )
    store.save_project(project)
    _print_json({
        "project_id": project.project_id,
        "name": project.name,
        "repository": project.repository,
        "owner_user_id": project.owner_user_id,
        "test_command": project.test_command,
    })
    return EXIT_SUCCESS


def cmd_set_credential(args: argparse.Namespace, settings: Settings) -> int:
    """Store an access token for a user."""
    from healify.pipeline.store import ResultStore

    if not args.token.strip():
        print("Token cannot be empty", file=sys.stderr)
        return EXIT_INVALID_INPUT

    ResultStore(settings.results_db_path).set_credential(args.user_id, args.token.strip(), args.provider)
    print(f"Stored {args.provider} credential for user {args.user_id}")
    return EXIT_SUCCESS


def cmd_heal(args: argparse.Namespace, settings: Settings) -> int:
    """Suggest a replacement selector."""
    from healify.healing.engine import SelectorHealingEngine

    html = None
    if args.html_file:
        path = Path(args.html_file)
        if not path.exists():
            print(f"HTML file not found: {path}", file=sys.stderr)
            return EXIT_INVALID_INPUT
        html = path.read_text(encoding="utf-8")

    engine = SelectorHealingEngine.from_settings(settings)
    _print_json(engine.suggest(args.selector, html, args.test_name, args.error))
    return EXIT_SUCCESS


def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="healify",
        description="Healify - run e2e suites, heal broken selectors, open fix PRs",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # api
    api_parser = subparsers.add_parser("api", help="Run the HTTP API")
    api_parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    api_parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")

    # worker
    worker_parser = subparsers.add_parser("worker", help="Run the worker pool")
    worker_parser.add_argument(
        "--skip-recovery",
        action="store_true",
        help="Do not recover expired leases on startup"
    )
    worker_parser.add_argument(
        "--stop-timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for running jobs on shutdown (default: 30)"
    )

    # enqueue
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a test run")
    enqueue_parser.add_argument("project_id", help="Project ID")
    enqueue_parser.add_argument("commit_ref", help="Commit SHA or ref to test")
    enqueue_parser.add_argument("--test-run-id", help="TestRun ID (default: new UUID)")
    enqueue_parser.add_argument("--branch", help="Branch of the commit")
    enqueue_parser.add_argument("--commit-message", help="Commit message")
    enqueue_parser.add_argument("--commit-author", help="Commit author")
    enqueue_parser.add_argument("--repository", help="Clone URL (default: project's repository)")

    # status
    status_parser = subparsers.add_parser("status", help="Show a test run's status")
    status_parser.add_argument("test_run_id", help="TestRun ID")

    # cancel
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a queued test run")
    cancel_parser.add_argument("test_run_id", help="TestRun ID")

    # register-project
    project_parser = subparsers.add_parser("register-project", help="Create or update a project")
    project_parser.add_argument("project_id", help="Project ID")
    project_parser.add_argument("--name", help="Display name")
    project_parser.add_argument("--repository", help="Repository URL (https://github.com/owner/repo)")
    project_parser.add_argument("--owner", help="Owning user ID (whose credential opens PRs)")
    project_parser.add_argument("--test-command", help="package.json script to run instead of detection")

    # set-credential
    credential_parser = subparsers.add_parser("set-credential", help="Store a GitHub access token")
    credential_parser.add_argument("user_id", help="User ID")
    credential_parser.add_argument("token", help="Access token")
    credential_parser.add_argument("--provider", default="github", help="Provider (default: github)")

    # heal
    heal_parser = subparsers.add_parser("heal", help="Suggest a replacement selector")
    heal_parser.add_argument("selector", help="Selector that failed")
    heal_parser.add_argument("--html-file", help="File with the DOM snapshot")
    heal_parser.add_argument("--error", help="Error message of the failure")
    heal_parser.add_argument("--test-name", help="Name of the failing test")

    return parser


COMMANDS = {
    "api": cmd_api,
    "worker": cmd_worker,
    "enqueue": cmd_enqueue,
    "status": cmd_status,
    "cancel": cmd_cancel,
    "register-project": cmd_register_project,
    "set-credential": cmd_set_credential,
    "heal": cmd_heal,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(
        log_level="DEBUG" if args.verbose else settings.log_level,
        log_dir=settings.log_dir,
        file_logging=args.command in ("api", "worker"),
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return EXIT_SUCCESS

    return command(args, settings)


if __name__ == "__main__":
    sys.exit(main())
