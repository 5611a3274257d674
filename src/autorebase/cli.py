from __future__ import annotations

import argparse
import json
from pathlib import Path

from autorebase.config import AppConfig, load_config
from autorebase.git_ops import GitClient
from autorebase.github_gateway import GitHubGateway
from autorebase.models import UpdateSkipped
from autorebase.observability import configure_logging
from autorebase.orchestrator import UpdateOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autorebase")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Poll open pull requests and merge/rebase the labelled ones"
    )
    run_parser.add_argument("--config", type=Path, default=Path("autorebase.toml"))
    run_parser.add_argument(
        "--once", action="store_true", help="Process every open pull request once and exit"
    )
    _add_verbose_flag(run_parser)

    update_parser = subparsers.add_parser("update", help="Process a single pull request")
    update_parser.add_argument("--config", type=Path, default=Path("autorebase.toml"))
    update_parser.add_argument("--pr", type=int, required=True, help="Pull request number")
    update_parser.add_argument(
        "--json", action="store_true", help="Print the outcome as JSON"
    )
    _add_verbose_flag(update_parser)

    return parser


def _add_verbose_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default=None,
        choices=("low", "high"),
        help="Log to stderr and <base_dir>/logs (default level: high)",
    )


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    configure_logging(args.verbose, log_dir=config.runtime.log_dir if args.verbose else None)

    if args.command == "run":
        _cmd_run(config, once=bool(args.once))
        return
    if args.command == "update":
        _cmd_update(config, pr_number=int(args.pr), as_json=bool(args.json))
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(config: AppConfig, *, once: bool) -> None:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    _build_orchestrator(config).run(once=once)


def _cmd_update(config: AppConfig, *, pr_number: int, as_json: bool) -> None:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    outcome = _build_orchestrator(config).update_single(pr_number)
    if isinstance(outcome, UpdateSkipped):
        payload: dict[str, object] = {
            "pr_number": pr_number,
            "status": "skipped",
            "reason": outcome.reason,
            "detail": outcome.detail,
        }
    else:
        payload = {
            "pr_number": pr_number,
            "status": "updated" if outcome.changed else "up_to_date",
            "action": outcome.action,
            "head_sha": outcome.head_sha,
        }

    if as_json:
        print(json.dumps(payload, indent=2))
        return
    print(" ".join(f"{key}={value}" for key, value in payload.items() if value != ""))


def _build_orchestrator(config: AppConfig) -> UpdateOrchestrator:
    return UpdateOrchestrator(
        config,
        github=GitHubGateway(config.repo.owner, config.repo.name),
        git=GitClient(config.repo),
    )
