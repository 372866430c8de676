from __future__ import annotations

import argparse
import logging
from pathlib import Path

from mergetrain.config import AppConfig, load_config
from mergetrain.gitlab_gateway import GitLabGateway
from mergetrain.jira_gateway import JiraGateway, build_jql, release_query
from mergetrain.observability import configure_logging, log_event
from mergetrain.scheduler import PollScheduler
from mergetrain.tickets import TicketMatcher
from mergetrain.train import MergeTrain


LOGGER = logging.getLogger("mergetrain.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mergetrain")
    subparsers = parser.add_subparsers(dest="command")
    # Bare `mergetrain` starts the service.
    parser.set_defaults(command="run", config=Path("mergetrain.toml"), once=False, verbose=None)

    run_parser = subparsers.add_parser(
        "run", help="Poll GitLab and advance release merge requests until stopped"
    )
    run_parser.add_argument("--config", type=Path, default=Path("mergetrain.toml"))
    run_parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    _add_verbose_argument(run_parser)

    check_parser = subparsers.add_parser(
        "check-config", help="Validate the config file and print the effective settings"
    )
    check_parser.add_argument("--config", type=Path, default=Path("mergetrain.toml"))
    _add_verbose_argument(check_parser)

    return parser


def _add_verbose_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default=None,
        choices=("low", "high"),
        help="Enable runtime logging to stderr (low keeps only high-signal events)",
    )


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(getattr(args, "verbose", None))
    config = load_config(args.config)

    if args.command == "run":
        _cmd_run(config, once=bool(args.once))
        return
    if args.command == "check-config":
        _cmd_check_config(config)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(config: AppConfig, *, once: bool) -> None:
    train = _build_train(config)
    scheduler = PollScheduler(
        train.run_pass, interval_seconds=config.runtime.poll_interval_seconds
    )
    try:
        scheduler.run(once=once)
    except KeyboardInterrupt:
        log_event(LOGGER, "service_interrupted", pass_count=scheduler.pass_count)


def _cmd_check_config(config: AppConfig) -> None:
    jql_template = build_jql(release_query(config.jira, ("<ticket ids>",)))
    print(f"GitLab project: {config.gitlab.project_id}")
    print(f"Target branch: {config.gitlab.target_branch}")
    print(f"Jira project: {config.jira.project_id}")
    print(f"Release: {config.jira.release_name}")
    print(f"Ticket query: {jql_template}")
    print(f"Poll interval: {config.runtime.poll_interval_seconds}s")
    print(f"No-pipeline policy: {config.train.no_pipeline_policy}")
    print(f"Commit consistency check: {_on_off(config.train.require_commit_consistency)}")
    print(f"Merge operations: {_on_off(config.runtime.enable_merge_operations)}")


def _build_train(config: AppConfig) -> MergeTrain:
    timeout = config.runtime.request_timeout_seconds
    return MergeTrain(
        config,
        gitlab=GitLabGateway(config.gitlab, timeout_seconds=timeout),
        jira=JiraGateway(config.jira, timeout_seconds=timeout),
        matcher=TicketMatcher(
            project_id=config.jira.project_id, browse_url=config.jira.browse_url
        ),
    )


def _on_off(value: bool) -> str:
    return "enabled" if value else "disabled"
