from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import logging
from typing import Final, Literal

from quorumxo import bot_comments, messages
from quorumxo.activity import label_added_time, latest_author_activity
from quorumxo.config import PrConfig
from quorumxo.github_gateway import GitHubGateway
from quorumxo.governance import TransitionIntent, apply_transition
from quorumxo.labels import GOVERNANCE_PURPOSES, label_name, present_label, query_names
from quorumxo.linking import find_linked_open_prs
from quorumxo.models import (
    ClosedPullRequestResult,
    IntakeTrigger,
    IssueRef,
    LinkedIssue,
    PullRequestRef,
    PullRequestSnapshot,
)
from quorumxo.observability import bind_repo_context, log_event
from quorumxo.preflight import trusted_approvers


LOGGER = logging.getLogger("quorumxo.intake")

LOOKUP_BATCH_SIZE: Final[int] = 3

IntakeDecision = Literal[
    "disabled",
    "no_linked_issues",
    "already_implementation",
    "accepted",
    "no_room",
    "not_eligible",
]


def active_implementations_by_issue(
    github: GitHubGateway, issue_numbers: tuple[int, ...]
) -> dict[int, tuple[int, ...]]:
    """Open implementation pull requests grouped by the ready issues they close."""
    wanted = set(issue_numbers)
    grouped: dict[int, list[int]] = {number: [] for number in issue_numbers}
    if not wanted:
        return {}
    candidates = [
        item.number
        for item in github.list_open_pull_requests_with_any_labels(query_names("implementation"))
    ]
    fetch_closes = bind_repo_context(github.get_closing_issue_references)
    with ThreadPoolExecutor(max_workers=LOOKUP_BATCH_SIZE, thread_name_prefix="intake") as pool:
        for start in range(0, len(candidates), LOOKUP_BATCH_SIZE):
            batch = candidates[start : start + LOOKUP_BATCH_SIZE]
            futures = [
                (pr_number, pool.submit(fetch_closes, pr_number))
                for pr_number in batch
            ]
            for pr_number, future in futures:
                try:
                    linked = future.result()
                except Exception as exc:  # noqa: BLE001
                    # An unreadable candidate must not hide the others.
                    log_event(
                        LOGGER,
                        "implementation_candidate_skipped",
                        level=logging.WARNING,
                        pr_number=pr_number,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    continue
                for issue in linked:
                    if issue.number in wanted:
                        grouped[issue.number].append(pr_number)
    return {number: tuple(prs) for number, prs in grouped.items()}


def process_intake(
    github: GitHubGateway,
    pr: PullRequestSnapshot,
    linked_issues: tuple[LinkedIssue, ...],
    trigger: IntakeTrigger,
    pr_config: PrConfig | None,
    *,
    bot_logins: frozenset[str],
    edited_at: datetime | None = None,
) -> IntakeDecision:
    """Accept ``pr`` as an implementation candidate for the ready issues it closes.

    The pull request must show activity at or after the moment its issue became
    ready, unless enough trusted reviewers already approved it. Each issue
    accepts at most ``max_prs_per_issue`` active candidates.
    """
    if pr_config is None:
        return "disabled"
    if not linked_issues:
        return "no_linked_issues"
    if present_label(pr.labels, "implementation") is not None:
        return "already_implementation"

    activity = latest_author_activity(
        github, pr.number, pr.created_at, bot_logins=bot_logins
    )
    if edited_at is not None and edited_at > activity:
        activity = edited_at

    ready_issues = tuple(
        issue.number
        for issue in linked_issues
        if present_label(issue.labels, "ready") is not None
    )
    active_by_issue = active_implementations_by_issue(github, ready_issues)

    decision: IntakeDecision = "not_eligible"
    welcomed = False
    approvals: int | None = None
    for linked_issue in linked_issues:
        if linked_issue.number not in ready_issues:
            if trigger == "opened":
                github.post_issue_comment(pr.number, messages.issue_not_ready(linked_issue.number))
            continue

        ready_at = label_added_time(github, linked_issue.number, "ready")
        if ready_at is None:
            log_event(
                LOGGER,
                "ready_label_time_missing",
                level=logging.WARNING,
                issue_number=linked_issue.number,
                pr_number=pr.number,
            )
            continue

        if activity < ready_at:
            if approvals is None and pr_config.intake_min_approvals > 0:
                approvals = len(
                    trusted_approvers(
                        github.list_reviews(pr.number), pr_config, author_login=pr.author_login
                    )
                )
            if approvals is None or approvals < pr_config.intake_min_approvals:
                if trigger == "opened":
                    github.post_issue_comment(
                        pr.number, messages.issue_ready_needs_update(linked_issue.number)
                    )
                continue
            log_event(
                LOGGER,
                "implementation_activated_by_approval",
                pr_number=pr.number,
                issue_number=linked_issue.number,
                approvals=approvals,
            )

        others = tuple(
            number for number in active_by_issue.get(linked_issue.number, ()) if number != pr.number
        )
        total = len(others) + 1
        if total > pr_config.max_prs_per_issue:
            closing = trigger == "opened"
            github.post_issue_comment(
                pr.number, messages.pr_no_room(pr_config.max_prs_per_issue, others, closing=closing)
            )
            if closing:
                github.close_issue(pr.number, reason="not_planned")
            log_event(
                LOGGER,
                "implementation_intake_no_room",
                pr_number=pr.number,
                issue_number=linked_issue.number,
                active=others,
                closed=closing,
            )
            return "no_room"

        if decision != "accepted":
            github.add_labels(pr.number, (label_name("implementation"),))
        decision = "accepted"
        log_event(
            LOGGER,
            "implementation_intake_accepted",
            pr_number=pr.number,
            issue_number=linked_issue.number,
            trigger=trigger,
            active_count=total,
        )

        if not welcomed:
            pr_comments = github.list_issue_comments(pr.number)
            if not bot_comments.has_notification(
                pr_comments, "implementation-welcome", linked_issue.number, bot_logins=bot_logins
            ):
                github.post_issue_comment(
                    pr.number,
                    bot_comments.build_notification_comment(
                        messages.implementation_welcome(linked_issue.number),
                        linked_issue.number,
                        "implementation-welcome",
                    ),
                )
            welcomed = True

        issue_comments = github.list_issue_comments(linked_issue.number)
        if not bot_comments.has_notification(
            issue_comments, "issue-new-pr", pr.number, bot_logins=bot_logins
        ):
            github.post_issue_comment(
                linked_issue.number,
                bot_comments.build_notification_comment(
                    messages.issue_new_pr(pr.number, total), pr.number, "issue-new-pr"
                ),
            )
    return decision


def remove_governance_labels(
    github: GitHubGateway, pr_number: int, labels: tuple[str, ...]
) -> tuple[str, ...]:
    """Drop the implementation and merge-ready labels present on ``pr_number``."""
    removed: list[str] = []
    for purpose in GOVERNANCE_PURPOSES:
        present = present_label(labels, purpose)
        if present is not None:
            github.remove_label(pr_number, present)
            removed.append(present)
    return tuple(removed)


def process_closed_pr(
    github: GitHubGateway,
    pr: PullRequestSnapshot,
    linked_issues: tuple[LinkedIssue, ...],
) -> ClosedPullRequestResult:
    """Settle a closed pull request and, when it merged, the issues it implemented.

    Every ready issue the merged pull request closes becomes implemented and is
    closed as completed. Competing open pull requests for those issues are closed
    as superseded.
    """
    pull_request = PullRequestRef(github.owner, github.name, pr.number)
    cleared = remove_governance_labels(github, pr.number, pr.labels)
    if not pr.merged:
        log_event(LOGGER, "closed_pr_labels_cleared", pr_number=pr.number, labels=cleared)
        return ClosedPullRequestResult(pull_request, merged=False, labels_cleared=cleared)

    implemented: list[IssueRef] = []
    superseded: list[PullRequestRef] = []
    handled_prs = {pr.number}
    for linked_issue in linked_issues:
        ready = present_label(linked_issue.labels, "ready")
        if ready is None:
            continue
        apply_transition(
            github,
            linked_issue.number,
            TransitionIntent(
                add_label=label_name("implemented"),
                comment=messages.issue_implemented(pr.number),
                remove_label=ready,
                close=True,
                close_reason="completed",
            ),
        )
        implemented.append(IssueRef(github.owner, github.name, linked_issue.number))
        log_event(
            LOGGER, "issue_implemented", issue_number=linked_issue.number, pr_number=pr.number
        )

        for competing in find_linked_open_prs(github, linked_issue.number):
            if competing.number in handled_prs:
                continue
            handled_prs.add(competing.number)
            github.post_issue_comment(competing.number, messages.pr_superseded(pr.number))
            github.close_issue(competing.number, reason="not_planned")
            remove_governance_labels(
                github, competing.number, github.get_issue(competing.number).labels
            )
            superseded.append(PullRequestRef(github.owner, github.name, competing.number))
            log_event(
                LOGGER,
                "competing_pr_superseded",
                pr_number=competing.number,
                merged_pr_number=pr.number,
                issue_number=linked_issue.number,
            )

    return ClosedPullRequestResult(
        pull_request,
        merged=True,
        labels_cleared=cleared,
        implemented=tuple(implemented),
        superseded=tuple(superseded),
    )
