from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

from quorumxo.config import AppConfig, RepoConfig, load_config
from quorumxo.github_gateway import GitHubGateway
from quorumxo.linking import find_linked_open_prs
from quorumxo.observability import configure_logging, logging_repo_context
from quorumxo.preflight import evaluate_preflight_checks, render_preflight_report
from quorumxo.sweeps import SWEEP_NAMES, SweepError, SweepName, run_for_repositories
from quorumxo.webhooks import handle_event


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quorumxo")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep_parser = subparsers.add_parser(
        "sweep", help="Reconcile labels, notifications and phases across open items"
    )
    sweep_parser.add_argument("sweep", choices=(*SWEEP_NAMES, "all"))
    sweep_parser.add_argument(
        "--repo",
        type=str,
        help="Only sweep this repository (repo id or owner/name)",
    )
    _add_common_arguments(sweep_parser)

    preflight_parser = subparsers.add_parser(
        "preflight", help="Report every merge-readiness check for one pull request"
    )
    preflight_parser.add_argument("--repo", type=str, required=True)
    preflight_parser.add_argument("--pr", type=int, required=True)
    preflight_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the checklist as JSON",
    )
    _add_common_arguments(preflight_parser)

    links_parser = subparsers.add_parser(
        "links", help="List open pull requests that close an issue"
    )
    links_parser.add_argument("--repo", type=str, required=True)
    links_parser.add_argument("--issue", type=int, required=True)
    _add_common_arguments(links_parser)

    event_parser = subparsers.add_parser(
        "event", help="Process a saved webhook payload through the fast path"
    )
    event_parser.add_argument("--repo", type=str, required=True)
    event_parser.add_argument("--name", type=str, required=True, help="Webhook event name")
    event_parser.add_argument("--payload", type=Path, required=True, help="JSON payload file")
    _add_common_arguments(event_parser)

    return parser


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    verbose = bool(getattr(args, "verbose", False))
    configure_logging(verbose, state_dir=config.runtime.base_dir if verbose else None)

    if args.command == "sweep":
        _cmd_sweep(config, args)
        return
    if args.command == "preflight":
        _cmd_preflight(config, args)
        return
    if args.command == "links":
        _cmd_links(config, args)
        return
    if args.command == "event":
        _cmd_event(config, args)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_sweep(config: AppConfig, args: argparse.Namespace) -> None:
    sweeps: tuple[SweepName, ...] = SWEEP_NAMES if args.sweep == "all" else (args.sweep,)
    repos = (config.find_repo(args.repo),) if args.repo else None
    try:
        results = run_for_repositories(config, sweeps, repos=repos)
    except SweepError as exc:
        print(f"Sweep failed: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    for repo_full_name in sorted(results):
        for report in results[repo_full_name]:
            print(
                f"{repo_full_name} {report.sweep}: processed={report.processed} "
                f"changed={report.changed}"
            )


def _cmd_preflight(config: AppConfig, args: argparse.Namespace) -> None:
    repo = config.find_repo(args.repo)
    with logging_repo_context(repo.full_name):
        result = evaluate_preflight_checks(_gateway(config, repo), args.pr, repo.pr)

    if args.json:
        print(
            json.dumps(
                {
                    "repo": repo.full_name,
                    "pr_number": args.pr,
                    "all_hard_checks_passed": result.all_hard_checks_passed,
                    "checks": [
                        {
                            "name": check.name,
                            "passed": check.passed,
                            "severity": check.severity,
                            "detail": check.detail,
                        }
                        for check in result.checks
                    ],
                },
                indent=2,
                sort_keys=True,
            )
        )
        return
    print(render_preflight_report(result, pr_number=args.pr))


def _cmd_links(config: AppConfig, args: argparse.Namespace) -> None:
    repo = config.find_repo(args.repo)
    with logging_repo_context(repo.full_name):
        linked = find_linked_open_prs(_gateway(config, repo), args.issue)

    if not linked:
        print(f"No open pull requests close {repo.full_name}#{args.issue}")
        return
    for pr in linked:
        print(f"#{pr.number}\t@{pr.author_login}\t{pr.title}")


def _cmd_event(config: AppConfig, args: argparse.Namespace) -> None:
    repo = config.find_repo(args.repo)
    payload = json.loads(args.payload.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Webhook payload in {args.payload} must be a JSON object")
    with logging_repo_context(repo.full_name):
        result = handle_event(args.name, payload, _gateway(config, repo), repo, config.runtime)
    print(
        json.dumps(
            {"event": result.event, "handled": result.handled, "actions": list(result.actions)},
            sort_keys=True,
        )
    )


def _gateway(config: AppConfig, repo: RepoConfig) -> GitHubGateway:
    return GitHubGateway(
        repo.owner, repo.name, timeout_seconds=config.runtime.command_timeout_seconds
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=Path("quorumxo.toml"))
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
