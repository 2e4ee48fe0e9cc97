from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Final

from quorumxo.config import PrConfig
from quorumxo.github_gateway import GitHubGateway
from quorumxo.labels import label_name, present_label
from quorumxo.models import (
    CheckRunListing,
    CombinedStatus,
    MergeReadinessAction,
    PreflightCheck,
    PreflightResult,
    Review,
)
from quorumxo.observability import bind_repo_context, log_event


LOGGER = logging.getLogger("quorumxo.preflight")

CHECK_PR_OPEN: Final[str] = "PR is open"
CHECK_APPROVALS: Final[str] = "Approved by trusted reviewers"
CHECK_CONFLICTS: Final[str] = "No merge conflicts"
CHECK_CI: Final[str] = "CI checks passing"
CHECK_CANDIDATE_LABEL: Final[str] = "Implementation label"
CHECK_MERGE_READY_LABEL: Final[str] = "Merge-ready label"

GREEN_CONCLUSIONS: Final[frozenset[str]] = frozenset({"success", "neutral", "skipped"})
_DECISIVE_REVIEW_STATES: Final[frozenset[str]] = frozenset(
    {"APPROVED", "CHANGES_REQUESTED", "DISMISSED"}
)


def approver_logins(reviews: Iterable[Review]) -> frozenset[str]:
    """Reviewers whose latest decisive review is an approval."""
    latest: dict[str, str] = {}
    for review in reviews:
        if review.state in _DECISIVE_REVIEW_STATES and review.reviewer_login:
            latest[review.reviewer_login.lower()] = review.state
    return frozenset(login for login, state in latest.items() if state == "APPROVED")


def trusted_approvers(
    reviews: Iterable[Review], pr_config: PrConfig | None, *, author_login: str | None
) -> tuple[str, ...]:
    if pr_config is None:
        return ()
    author = (author_login or "").lower()
    return tuple(
        sorted(
            login
            for login in approver_logins(reviews)
            if login != author and pr_config.is_trusted(login)
        )
    )


def min_approvals(pr_config: PrConfig | None) -> int:
    if pr_config is None or pr_config.merge_ready is None:
        return 1
    return pr_config.merge_ready.min_approvals


def summarize_ci(check_runs: CheckRunListing, status: CombinedStatus) -> PreflightCheck:
    if check_runs.total_count > len(check_runs.runs):
        return _ci_check(
            False,
            f"Only {len(check_runs.runs)} of {check_runs.total_count} check runs visible; "
            "cannot verify",
        )

    pending = 0
    failing: list[str] = []
    for run in check_runs.runs:
        if run.status != "completed":
            pending += 1
        elif run.conclusion not in GREEN_CONCLUSIONS:
            failing.append(f"{run.name or f'check #{run.check_id}'}: {run.conclusion or 'none'}")

    if pending:
        return _ci_check(False, f"{pending} check run(s) still in progress")
    if failing:
        return _ci_check(False, f"Failing: {', '.join(failing)}")
    if status.total_count > 0 and status.state != "success":
        return _ci_check(False, f"Combined status: {status.state}")

    total = len(check_runs.runs) + status.total_count
    if total == 0:
        return _ci_check(True, "No CI configured")
    return _ci_check(True, f"All {total} check(s) passed")


def evaluate_ci(github: GitHubGateway, head_sha: str) -> PreflightCheck:
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="ci") as pool:
        runs_future = pool.submit(bind_repo_context(github.list_check_runs), head_sha)
        status_future = pool.submit(bind_repo_context(github.get_combined_status), head_sha)
        return summarize_ci(runs_future.result(), status_future.result())


def evaluate_preflight_checks(
    github: GitHubGateway,
    pr_number: int,
    pr_config: PrConfig | None,
    *,
    labels: tuple[str, ...] | None = None,
    head_sha: str | None = None,
    author_login: str | None = None,
) -> PreflightResult:
    """Run every check and report all of them, regardless of earlier failures.

    When ``head_sha`` is supplied the caller already knows the pull request is
    open, so the open check is omitted and mergeability is treated as pending.
    """
    checks: list[PreflightCheck] = []
    mergeable: bool | None = None
    if head_sha is None:
        pr = github.get_pull_request(pr_number)
        head_sha = pr.head_sha
        mergeable = pr.mergeable
        author_login = pr.author_login
        if labels is None:
            labels = pr.labels
        if pr.merged:
            open_detail = "PR is already merged"
        elif pr.state != "open":
            open_detail = f"PR is {pr.state}"
        else:
            open_detail = "PR is open"
        checks.append(
            PreflightCheck(CHECK_PR_OPEN, pr.state == "open" and not pr.merged, "hard", open_detail)
        )
    elif labels is None:
        labels = github.get_issue(pr_number).labels

    approvers = trusted_approvers(
        github.list_reviews(pr_number), pr_config, author_login=author_login
    )
    required = min_approvals(pr_config)
    approval_detail = f"{len(approvers)}/{required} trusted approvals"
    if approvers:
        approval_detail = f"{approval_detail} ({', '.join(approvers)})"
    checks.append(
        PreflightCheck(CHECK_APPROVALS, len(approvers) >= required, "hard", approval_detail)
    )

    if mergeable is False:
        conflict_detail = "PR has merge conflicts"
    elif mergeable is None:
        conflict_detail = "Mergeable (pending GitHub computation)"
    else:
        conflict_detail = "Branch is mergeable"
    checks.append(PreflightCheck(CHECK_CONFLICTS, mergeable is not False, "hard", conflict_detail))

    checks.append(evaluate_ci(github, head_sha))

    candidate = label_name("implementation")
    has_candidate = present_label(labels, "implementation") is not None
    checks.append(
        PreflightCheck(
            CHECK_CANDIDATE_LABEL,
            has_candidate,
            "advisory",
            f"Has `{candidate}` label" if has_candidate else f"Missing `{candidate}` label",
        )
    )
    ready = label_name("merge_ready")
    has_ready = present_label(labels, "merge_ready") is not None
    checks.append(
        PreflightCheck(
            CHECK_MERGE_READY_LABEL,
            has_ready,
            "advisory",
            f"Has `{ready}` label" if has_ready else f"Missing `{ready}` label",
        )
    )
    return PreflightResult(checks=tuple(checks))


def evaluate_merge_readiness(
    github: GitHubGateway,
    pr_number: int,
    pr_config: PrConfig | None,
    *,
    labels: tuple[str, ...],
    head_sha: str | None = None,
    author_login: str | None = None,
    mergeable: bool | None = None,
) -> MergeReadinessAction:
    """Short-circuit evaluation that keeps the merge-ready label in sync.

    Checks run cheapest first and stop at the first hard failure. ``labels``
    must be the pull request's current labels.
    """
    if pr_config is None or pr_config.merge_ready is None:
        return MergeReadinessAction("skipped", reason="feature disabled")

    ready_label = present_label(labels, "merge_ready")
    if present_label(labels, "implementation") is None:
        return _fail(github, pr_number, ready_label, "no implementation label")

    approvers = trusted_approvers(
        github.list_reviews(pr_number), pr_config, author_login=author_login
    )
    required = pr_config.merge_ready.min_approvals
    if len(approvers) < required:
        return _fail(
            github,
            pr_number,
            ready_label,
            f"insufficient approvals ({len(approvers)}/{required})",
        )

    if head_sha is None:
        pr = github.get_pull_request(pr_number)
        if pr.state != "open" or pr.merged:
            return _fail(github, pr_number, ready_label, "pull request is not open")
        head_sha = pr.head_sha
        mergeable = pr.mergeable

    if mergeable is False:
        return _fail(github, pr_number, ready_label, "has merge conflicts")

    ci = evaluate_ci(github, head_sha)
    if not ci.passed:
        return _fail(github, pr_number, ready_label, f"CI not passing: {ci.detail}")

    if ready_label is None:
        github.add_labels(pr_number, (label_name("merge_ready"),))
        log_event(LOGGER, "merge_ready_label_added", pr_number=pr_number)
        return MergeReadinessAction("added")
    return MergeReadinessAction("noop", labeled=True)


def reconcile_merge_ready_label(
    github: GitHubGateway,
    pr_number: int,
    pr_config: PrConfig | None,
    *,
    labels: tuple[str, ...],
) -> MergeReadinessAction:
    """Re-derive the merge-ready label from a full preflight run."""
    if pr_config is None or pr_config.merge_ready is None:
        return MergeReadinessAction("skipped", reason="feature disabled")

    result = evaluate_preflight_checks(github, pr_number, pr_config, labels=labels)
    ready_label = present_label(labels, "merge_ready")
    should_be_ready = result.all_hard_checks_passed and (
        present_label(labels, "implementation") is not None
    )
    if should_be_ready and ready_label is None:
        github.add_labels(pr_number, (label_name("merge_ready"),))
        log_event(LOGGER, "merge_ready_label_added", pr_number=pr_number)
        return MergeReadinessAction("added")
    if not should_be_ready and ready_label is not None:
        failed = [
            check.name
            for check in result.checks
            if check.severity == "hard" and not check.passed
        ]
        github.remove_label(pr_number, ready_label)
        log_event(
            LOGGER, "merge_ready_label_removed", pr_number=pr_number, failed_checks=failed
        )
        return MergeReadinessAction("removed")
    return MergeReadinessAction("noop", labeled=ready_label is not None)


def render_preflight_report(result: PreflightResult, *, pr_number: int | None = None) -> str:
    title = f"### Preflight for #{pr_number}" if pr_number is not None else "### Preflight"
    lines = [title, ""]
    for check in result.checks:
        mark = "x" if check.passed else " "
        suffix = " (advisory)" if check.severity == "advisory" else ""
        lines.append(f"- [{mark}] **{check.name}**{suffix}: {check.detail}")
    lines.append("")
    if result.all_hard_checks_passed:
        lines.append("All hard checks passed.")
    else:
        lines.append("Hard checks failing; not ready to merge.")
    return "\n".join(lines)


def _fail(
    github: GitHubGateway, pr_number: int, ready_label: str | None, reason: str
) -> MergeReadinessAction:
    if ready_label is None:
        return MergeReadinessAction("skipped", reason=reason)
    github.remove_label(pr_number, ready_label)
    log_event(LOGGER, "merge_ready_label_removed", pr_number=pr_number, reason=reason)
    return MergeReadinessAction("removed", reason=reason)


def _ci_check(passed: bool, detail: str) -> PreflightCheck:
    return PreflightCheck(CHECK_CI, passed, "hard", detail)
