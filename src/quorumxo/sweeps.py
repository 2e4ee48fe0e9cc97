from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Final, Literal

from quorumxo import bot_comments, messages
from quorumxo.activity import label_added_time, parse_timestamp
from quorumxo.config import AppConfig, RepoConfig
from quorumxo.github_gateway import GitHubGateway, GitHubNotFoundError
from quorumxo.governance import GovernanceService
from quorumxo.intake import process_intake
from quorumxo.labels import LabelPurpose, query_names
from quorumxo.linking import find_linked_open_prs, resolve_closing_issues
from quorumxo.models import Issue, LinkedPullRequest, VotingOutcome
from quorumxo.observability import log_event, logging_repo_context
from quorumxo.preflight import reconcile_merge_ready_label
from quorumxo.stale import process_stale_pr


LOGGER = logging.getLogger("quorumxo.sweeps")

SweepName = Literal["readiness", "notifications", "stale", "phases"]
SWEEP_NAMES: Final[tuple[SweepName, ...]] = ("readiness", "notifications", "stale", "phases")


class SweepError(RuntimeError):
    """Raised once at the end of a sweep that left some items unprocessed."""

    def __init__(self, message: str, *, failed: tuple[str, ...]) -> None:
        super().__init__(message)
        self.failed = failed


@dataclass(frozen=True)
class SweepReport:
    sweep: SweepName
    processed: int
    changed: int


@dataclass(frozen=True)
class _PhaseStep:
    purpose: LabelPurpose
    hours: int
    run: Callable[[Issue], VotingOutcome | None]


def sweep_readiness(github: GitHubGateway, repo: RepoConfig) -> SweepReport:
    pr_config = repo.pr
    if pr_config is None or pr_config.merge_ready is None:
        log_event(LOGGER, "sweep_disabled", sweep="readiness")
        return SweepReport("readiness", processed=0, changed=0)

    candidates = github.list_open_pull_requests_with_any_labels(query_names("implementation"))
    changed = 0
    failed: list[str] = []
    for pr in candidates:
        try:
            action = reconcile_merge_ready_label(
                github, pr.number, pr_config, labels=pr.labels
            )
        except Exception as exc:  # noqa: BLE001
            _record_failure(failed, f"#{pr.number}", "readiness", exc)
            continue
        if action.kind in {"added", "removed"}:
            changed += 1
    return _finish("readiness", processed=len(candidates), changed=changed, failed=failed)


def notify_pending_prs(
    github: GitHubGateway,
    issue_number: int,
    *,
    bot_logins: frozenset[str],
) -> tuple[int, ...]:
    """Tell open linked pull requests that ``issue_number`` is ready; returns those notified."""
    linked = find_linked_open_prs(github, issue_number)
    if not linked:
        return ()
    implementations = {
        item.number
        for item in github.list_open_pull_requests_with_any_labels(query_names("implementation"))
    }
    notified: list[int] = []
    for pr in linked:
        if pr.number in implementations:
            continue
        if _notify_ready(github, issue_number, pr, bot_logins=bot_logins):
            notified.append(pr.number)
    return tuple(notified)


def _notify_ready(
    github: GitHubGateway,
    issue_number: int,
    pr: LinkedPullRequest,
    *,
    bot_logins: frozenset[str],
) -> bool:
    comments = github.list_issue_comments(pr.number)
    if bot_comments.has_notification(
        comments, "voting-passed", issue_number, bot_logins=bot_logins
    ):
        return False
    github.post_issue_comment(
        pr.number,
        bot_comments.build_notification_comment(
            messages.issue_voting_passed(issue_number, pr.author_login),
            issue_number,
            "voting-passed",
        ),
    )
    log_event(
        LOGGER,
        "notification_posted",
        kind="voting-passed",
        issue_number=issue_number,
        pr_number=pr.number,
    )
    return True


def sweep_notifications(
    github: GitHubGateway, repo: RepoConfig, *, bot_logins: frozenset[str]
) -> SweepReport:
    """Re-deliver missed "ready" notifications and retry intake for each linked pull request.

    Notification and intake are guarded independently, so a failure in one
    never blocks the other.
    """
    pr_config = repo.pr
    if pr_config is None:
        log_event(LOGGER, "sweep_disabled", sweep="notifications")
        return SweepReport("notifications", processed=0, changed=0)

    ready_issues = github.list_open_issues_with_any_labels(query_names("ready"))
    changed = 0
    failed: list[str] = []
    for issue in ready_issues:
        try:
            linked = find_linked_open_prs(github, issue.number)
            if not linked:
                continue
            implementations = {
                item.number
                for item in github.list_open_pull_requests_with_any_labels(
                    query_names("implementation")
                )
            }
        except Exception as exc:  # noqa: BLE001
            _record_failure(failed, f"#{issue.number}", "notifications", exc)
            continue

        for linked_pr in linked:
            if linked_pr.number in implementations:
                continue
            try:
                if _notify_ready(github, issue.number, linked_pr, bot_logins=bot_logins):
                    changed += 1
            except Exception as exc:  # noqa: BLE001
                _record_failure(
                    failed, f"#{issue.number}->#{linked_pr.number}", "notifications", exc
                )

            try:
                pr = github.get_pull_request(linked_pr.number)
                decision = process_intake(
                    github,
                    pr,
                    resolve_closing_issues(github, pr),
                    "updated",
                    pr_config,
                    bot_logins=bot_logins,
                    edited_at=_body_edited_at(github, pr.number),
                )
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "intake_retry_failed",
                    level=logging.ERROR,
                    issue_number=issue.number,
                    pr_number=linked_pr.number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            if decision == "accepted":
                changed += 1
    return _finish("notifications", processed=len(ready_issues), changed=changed, failed=failed)


def sweep_stale(
    github: GitHubGateway,
    repo: RepoConfig,
    *,
    bot_logins: frozenset[str],
    now: datetime | None = None,
) -> SweepReport:
    pr_config = repo.pr
    if pr_config is None:
        log_event(LOGGER, "sweep_disabled", sweep="stale")
        return SweepReport("stale", processed=0, changed=0)

    current = now if now is not None else datetime.now(timezone.utc)
    candidates = github.list_open_pull_requests_with_any_labels(query_names("implementation"))
    changed = 0
    failed: list[str] = []
    for pr in candidates:
        try:
            action = process_stale_pr(
                github, pr, pr_config.stale_days, bot_logins=bot_logins, now=current
            )
        except Exception as exc:  # noqa: BLE001
            _record_failure(failed, f"#{pr.number}", "stale", exc)
            continue
        if action != "none":
            changed += 1
    return _finish("stale", processed=len(candidates), changed=changed, failed=failed)


def sweep_phases(
    github: GitHubGateway,
    repo: RepoConfig,
    *,
    bot_logins: frozenset[str],
    now: datetime | None = None,
) -> SweepReport:
    """Advance issues whose phase timer has run out."""
    governance_config = repo.governance
    if governance_config is None:
        log_event(LOGGER, "sweep_disabled", sweep="phases")
        return SweepReport("phases", processed=0, changed=0)

    current = now if now is not None else datetime.now(timezone.utc)
    service = GovernanceService(github, bot_logins=bot_logins, rules=governance_config.voting)

    def start_voting(issue: Issue) -> VotingOutcome | None:
        service.transition_to_voting(issue)
        return None

    steps = (
        _PhaseStep("discussion", governance_config.discussion_hours, start_voting),
        _PhaseStep("voting", governance_config.voting_hours, service.end_voting),
        _PhaseStep(
            "extended_voting",
            governance_config.extended_voting_hours,
            service.resolve_extended_voting,
        ),
    )

    processed = 0
    changed = 0
    failed: list[str] = []
    skipped: list[int] = []
    for step in steps:
        if step.hours <= 0:
            # Zero-length phases only move on manual relabeling.
            continue
        for issue in github.list_open_issues_with_any_labels(query_names(step.purpose)):
            processed += 1
            try:
                labeled_at = label_added_time(github, issue.number, step.purpose)
                if labeled_at is None:
                    log_event(
                        LOGGER,
                        "phase_label_time_missing",
                        level=logging.WARNING,
                        issue_number=issue.number,
                        phase=step.purpose,
                    )
                    continue
                if current - labeled_at < timedelta(hours=step.hours):
                    continue
                outcome = step.run(issue)
            except GitHubNotFoundError:
                log_event(LOGGER, "phase_issue_missing", issue_number=issue.number)
                continue
            except Exception as exc:  # noqa: BLE001
                _record_failure(failed, f"#{issue.number}", "phases", exc)
                continue

            if outcome == "skipped":
                skipped.append(issue.number)
                continue
            changed += 1
            if outcome == "ready":
                _notify_best_effort(github, issue.number, bot_logins=bot_logins)

    if skipped:
        log_event(
            LOGGER,
            "phase_sweep_skipped_issues",
            level=logging.WARNING,
            issue_numbers=skipped,
        )
    return _finish("phases", processed=processed, changed=changed, failed=failed)


def run_repository_sweeps(
    github: GitHubGateway,
    repo: RepoConfig,
    sweeps: tuple[SweepName, ...],
    *,
    bot_logins: frozenset[str],
    now: datetime | None = None,
) -> tuple[SweepReport, ...]:
    """Run the requested sweeps in order; each sweep runs even if an earlier one failed."""
    reports: list[SweepReport] = []
    failed: list[str] = []
    for sweep in sweeps:
        try:
            if sweep == "readiness":
                reports.append(sweep_readiness(github, repo))
            elif sweep == "notifications":
                reports.append(sweep_notifications(github, repo, bot_logins=bot_logins))
            elif sweep == "stale":
                reports.append(sweep_stale(github, repo, bot_logins=bot_logins, now=now))
            else:
                reports.append(sweep_phases(github, repo, bot_logins=bot_logins, now=now))
        except SweepError as exc:
            failed.extend(f"{sweep}:{item}" for item in exc.failed)
        except Exception as exc:  # noqa: BLE001
            _record_failure(failed, sweep, sweep, exc)
    if failed:
        raise SweepError(
            f"{len(failed)} item(s) failed in {repo.full_name}: {', '.join(failed)}",
            failed=tuple(failed),
        )
    return tuple(reports)


def run_for_repositories(
    config: AppConfig,
    sweeps: tuple[SweepName, ...],
    *,
    repos: tuple[RepoConfig, ...] | None = None,
    gateway_factory: Callable[[RepoConfig], GitHubGateway] | None = None,
    now: datetime | None = None,
) -> dict[str, tuple[SweepReport, ...]]:
    """Sweep every repository concurrently and isolate failures per repository."""
    targets = repos if repos is not None else config.repos
    factory = gateway_factory or (
        lambda repo: GitHubGateway(
            repo.owner, repo.name, timeout_seconds=config.runtime.command_timeout_seconds
        )
    )
    bot_logins = config.runtime.bot_logins

    def sweep_one(repo: RepoConfig) -> tuple[SweepReport, ...]:
        with logging_repo_context(repo.full_name):
            return run_repository_sweeps(
                factory(repo), repo, sweeps, bot_logins=bot_logins, now=now
            )

    results: dict[str, tuple[SweepReport, ...]] = {}
    failed: list[str] = []
    with ThreadPoolExecutor(max_workers=config.runtime.worker_count) as pool:
        futures = [(repo, pool.submit(sweep_one, repo)) for repo in targets]
        for repo, future in futures:
            try:
                results[repo.full_name] = future.result()
            except Exception as exc:  # noqa: BLE001
                failed.append(repo.full_name)
                log_event(
                    LOGGER,
                    "repository_sweep_failed",
                    level=logging.ERROR,
                    repo_full_name=repo.full_name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
    if failed:
        raise SweepError(
            f"Sweep failed for {len(failed)} repository(ies): {', '.join(failed)}",
            failed=tuple(failed),
        )
    return results


def _body_edited_at(github: GitHubGateway, pr_number: int) -> datetime | None:
    try:
        edited_at = github.get_pull_request_body_edited_at(pr_number)
        return parse_timestamp(edited_at) if edited_at else None
    except Exception as exc:  # noqa: BLE001
        # Intake still runs on the remaining activity signals.
        log_event(
            LOGGER,
            "pr_body_edit_time_unavailable",
            level=logging.WARNING,
            pr_number=pr_number,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return None


def _notify_best_effort(
    github: GitHubGateway, issue_number: int, *, bot_logins: frozenset[str]
) -> None:
    try:
        notify_pending_prs(github, issue_number, bot_logins=bot_logins)
    except Exception as exc:  # noqa: BLE001
        log_event(
            LOGGER,
            "pending_pr_notification_failed",
            level=logging.WARNING,
            issue_number=issue_number,
            error_type=type(exc).__name__,
            error=str(exc),
        )


def _record_failure(failed: list[str], item: str, sweep: str, exc: Exception) -> None:
    failed.append(item)
    log_event(
        LOGGER,
        "sweep_item_failed",
        level=logging.ERROR,
        sweep=sweep,
        item=item,
        error_type=type(exc).__name__,
        error=str(exc),
    )


def _finish(
    sweep: SweepName, *, processed: int, changed: int, failed: list[str]
) -> SweepReport:
    log_event(
        LOGGER,
        "sweep_completed",
        sweep=sweep,
        processed=processed,
        changed=changed,
        failed_count=len(failed),
    )
    if failed:
        raise SweepError(
            f"{sweep} sweep failed for {len(failed)} item(s): {', '.join(failed)}",
            failed=tuple(failed),
        )
    return SweepReport(sweep, processed=processed, changed=changed)
