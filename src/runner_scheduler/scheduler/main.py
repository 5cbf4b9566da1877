"""Command-line entrypoint for the runner scheduler."""

from __future__ import annotations

import argparse
import sys
from typing import Any, Optional, Sequence

import uvicorn
from pydantic import ValidationError

from ..common.settings import SchedulerSettings
from .app import create_app


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Start Koyeb GitHub Actions runners on demand from workflow_job webhooks",
    )
    parser.add_argument("-p", "--port", type=int, help="Port to listen on (env PORT, default 8000)")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--koyeb-token", help="Koyeb API token (env KOYEB_TOKEN)")
    parser.add_argument("--github-token", help="GitHub token handed to runners (env GITHUB_TOKEN)")
    parser.add_argument("--api-secret", help="GitHub webhook secret (env API_SECRET)")
    parser.add_argument("--runners-ttl", type=int, help="Runners TTL in minutes (env RUNNERS_TTL, default 120)")
    parser.add_argument(
        "--disable-docker-daemon",
        action="store_true",
        default=None,
        help="Run runners unprivileged without a Docker daemon (env DISABLE_DOCKER_DAEMON)",
    )
    parser.add_argument(
        "-m",
        "--mode",
        choices=["repository", "organization"],
        help="Register runners on the repository (default) or its organization (env MODE)",
    )
    parser.add_argument("--label-prefix", help="Job label prefix (env LABEL_PREFIX, default koyeb)")
    parser.add_argument(
        "--delete-on-completed",
        action="store_true",
        default=None,
        help="Delete a runner as soon as a job on it completes instead of waiting for the TTL",
    )
    return parser.parse_args(argv)


def settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map command-line flags onto settings aliases; unset flags keep the environment value."""
    mapping = {
        "PORT": args.port,
        "KOYEB_TOKEN": args.koyeb_token,
        "GITHUB_TOKEN": args.github_token,
        "API_SECRET": args.api_secret,
        "RUNNERS_TTL": args.runners_ttl,
        "DISABLE_DOCKER_DAEMON": args.disable_docker_daemon,
        "MODE": args.mode,
        "LABEL_PREFIX": args.label_prefix,
        "DELETE_ON_COMPLETED": args.delete_on_completed,
    }
    return {key: value for key, value in mapping.items() if value is not None}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = SchedulerSettings(**settings_overrides(args))
    except ValidationError as exc:
        for error in exc.errors():
            print(error["msg"], file=sys.stderr)
        return 1

    print(f"Start listening on {settings.port}", file=sys.stderr)
    uvicorn.run(create_app(settings), host=args.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
