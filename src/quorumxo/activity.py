from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from quorumxo.github_gateway import GitHubGateway
from quorumxo.labels import LabelPurpose, label_applied_at


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub ISO-8601 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def latest(fallback: datetime, values: Iterable[str]) -> datetime:
    result = fallback
    for value in values:
        if not value:
            continue
        candidate = parse_timestamp(value)
        if candidate > result:
            result = candidate
    return result


def label_added_time(
    github: GitHubGateway, issue_number: int, purpose: LabelPurpose
) -> datetime | None:
    applied_at = label_applied_at(github.list_label_events(issue_number), purpose)
    if applied_at is None:
        return None
    return parse_timestamp(applied_at)


def latest_author_activity(
    github: GitHubGateway, pr_number: int, created_at: str, *, bot_logins: frozenset[str]
) -> datetime:
    """Latest commit or non-automated comment on the pull request, never before creation."""
    comments = github.list_issue_comments(pr_number)
    commit_dates = github.list_pull_request_commit_dates(pr_number)
    return latest(
        parse_timestamp(created_at),
        [
            *(
                comment.created_at
                for comment in comments
                if comment.author_login.lower() not in bot_logins
            ),
            *commit_dates,
        ],
    )


def latest_activity(
    github: GitHubGateway, pr_number: int, created_at: str, *, bot_logins: frozenset[str]
) -> datetime:
    """Like ``latest_author_activity`` but also counts reviews and inline review comments."""
    baseline = latest_author_activity(github, pr_number, created_at, bot_logins=bot_logins)
    reviews = github.list_reviews(pr_number)
    review_comments = github.list_pull_request_review_comments(pr_number)
    return latest(
        baseline,
        [
            *(review.submitted_at for review in reviews),
            *(
                comment.created_at
                for comment in review_comments
                if comment.author_login.lower() not in bot_logins
            ),
        ],
    )
