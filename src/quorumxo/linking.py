from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Final

from quorumxo.closing_keywords import parse_closing_issue_numbers
from quorumxo.github_gateway import (
    GitHubGateway,
    GitHubGraphQLError,
    GitHubNotFoundError,
)
from quorumxo.models import (
    IssueRef,
    LinkedIssue,
    LinkedPullRequest,
    PullRequestRef,
    PullRequestSnapshot,
)
from quorumxo.observability import bind_repo_context, log_event


LOGGER = logging.getLogger("quorumxo.linking")

MAX_CROSS_REFERENCE_EVENTS: Final[int] = 100
VERIFY_BATCH_SIZE: Final[int] = 5
STALE_CANDIDATE_MARKER: Final[str] = "Could not resolve to a PullRequest with the number"
GHOST_LOGIN: Final[str] = "ghost"
_UNSUPPORTED_QUERY_MARKERS: Final[tuple[str, ...]] = (
    "doesn't exist on type",
    "does not exist on type",
    "Field 'closingIssuesReferences'",
)


class LinkResolutionError(RuntimeError):
    """Linked items could not be determined; ``ref`` names the item being resolved."""

    def __init__(self, message: str, *, ref: IssueRef | PullRequestRef) -> None:
        super().__init__(message)
        self.ref = ref


def discover_candidate_prs(
    github: GitHubGateway, issue_number: int
) -> tuple[LinkedPullRequest, ...]:
    """Open same-repository pull requests that cross-reference ``issue_number``."""
    candidates: dict[int, LinkedPullRequest] = {}
    cursor: str | None = None
    scanned = 0
    while scanned < MAX_CROSS_REFERENCE_EVENTS:
        try:
            page = github.list_cross_reference_page(issue_number, cursor)
        except GitHubNotFoundError:
            log_event(LOGGER, "link_discovery_issue_missing", issue_number=issue_number)
            return ()
        scanned += len(page.items)
        for item in page.items:
            if item.pr_number is None or item.state != "OPEN":
                continue
            if item.repo_owner and item.repo_name:
                same_repo = (
                    item.repo_owner.lower() == github.owner.lower()
                    and item.repo_name.lower() == github.name.lower()
                )
                if not same_repo:
                    continue
            candidates.setdefault(
                item.pr_number,
                LinkedPullRequest(
                    number=item.pr_number,
                    title=item.title,
                    state=item.state,
                    author_login=item.author_login or GHOST_LOGIN,
                ),
            )
        if not page.has_next_page:
            break
        if page.end_cursor is None:
            log_event(
                LOGGER,
                "link_discovery_cursor_missing",
                level=logging.WARNING,
                issue_number=issue_number,
                events_scanned=scanned,
            )
            break
        cursor = page.end_cursor
    return tuple(candidates.values())


def verify_candidates(
    github: GitHubGateway,
    issue_number: int,
    candidates: tuple[LinkedPullRequest, ...],
) -> tuple[LinkedPullRequest, ...]:
    """Keep the candidates whose own closing references include ``issue_number``.

    Verification runs in fixed-width batches. A candidate that no longer
    resolves is dropped quietly; any other failure counts as a hard failure,
    and when nothing verifies while hard failures occurred the whole
    resolution raises ``LinkResolutionError``.
    """
    verified: list[LinkedPullRequest] = []
    stale: list[int] = []
    hard_failures: list[int] = []
    fetch_closes = bind_repo_context(github.get_closing_issue_references)
    with ThreadPoolExecutor(max_workers=VERIFY_BATCH_SIZE, thread_name_prefix="verify") as pool:
        for start in range(0, len(candidates), VERIFY_BATCH_SIZE):
            batch = candidates[start : start + VERIFY_BATCH_SIZE]
            futures = [
                (candidate, pool.submit(fetch_closes, candidate.number))
                for candidate in batch
            ]
            for candidate, future in futures:
                try:
                    closes = future.result()
                except Exception as exc:  # noqa: BLE001
                    if STALE_CANDIDATE_MARKER in str(exc):
                        stale.append(candidate.number)
                        continue
                    hard_failures.append(candidate.number)
                    log_event(
                        LOGGER,
                        "link_verification_failed",
                        level=logging.WARNING,
                        issue_number=issue_number,
                        pr_number=candidate.number,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    continue
                if any(linked.number == issue_number for linked in closes):
                    verified.append(candidate)

    if stale:
        log_event(
            LOGGER,
            "link_stale_candidates_skipped",
            issue_number=issue_number,
            pr_numbers=stale,
        )
    if hard_failures and not verified:
        raise LinkResolutionError(
            f"All {len(hard_failures)} closing-reference verification(s) failed for "
            f"{github.full_name}#{issue_number}; cannot determine linked pull requests",
            ref=IssueRef(github.owner, github.name, issue_number),
        )
    return tuple(verified)


def find_linked_open_prs(
    github: GitHubGateway, issue_number: int
) -> tuple[LinkedPullRequest, ...]:
    candidates = discover_candidate_prs(github, issue_number)
    if not candidates:
        return ()
    verified = verify_candidates(github, issue_number, candidates)
    log_event(
        LOGGER,
        "linked_prs_resolved",
        issue_number=issue_number,
        candidate_count=len(candidates),
        verified_count=len(verified),
    )
    return verified


def resolve_closing_issues(
    github: GitHubGateway, pr: PullRequestSnapshot
) -> tuple[LinkedIssue, ...]:
    """Issues the pull request closes, parsing its body when the linking query is unavailable."""
    try:
        return github.get_closing_issue_references(pr.number)
    except GitHubGraphQLError as exc:
        if not _is_unsupported_query(exc):
            raise
        log_event(
            LOGGER,
            "closing_references_fallback",
            level=logging.WARNING,
            pr_number=pr.number,
            error=str(exc),
        )
    return closing_issues_from_body(github, pr)


def closing_issues_from_body(
    github: GitHubGateway, pr: PullRequestSnapshot
) -> tuple[LinkedIssue, ...]:
    numbers = parse_closing_issue_numbers(pr.body, owner=github.owner, repo=github.name)
    linked: list[LinkedIssue] = []
    for number in numbers:
        try:
            issue = github.get_issue(number)
        except Exception as exc:  # noqa: BLE001
            raise LinkResolutionError(
                f"Failed to fetch issue #{number} referenced by pull request #{pr.number}",
                ref=PullRequestRef(github.owner, github.name, pr.number),
            ) from exc
        if issue.is_pull_request:
            continue
        linked.append(
            LinkedIssue(
                number=issue.number,
                title=issue.title,
                state=issue.state.upper(),
                labels=issue.labels,
            )
        )
    return tuple(linked)


def _is_unsupported_query(exc: GitHubGraphQLError) -> bool:
    return any(
        marker in message for message in exc.messages for marker in _UNSUPPORTED_QUERY_MARKERS
    )
