from __future__ import annotations

from datetime import datetime, timedelta, timezone

from quorumxo.activity import (
    label_added_time,
    latest,
    latest_activity,
    latest_author_activity,
    parse_timestamp,
)
from quorumxo.models import IssueComment, LabelEvent, Review


BOTS = frozenset({"quorumxo[bot]"})


class FakeGitHub:
    def __init__(self) -> None:
        self.comments: tuple[IssueComment, ...] = ()
        self.review_comments: tuple[IssueComment, ...] = ()
        self.commit_dates: tuple[str, ...] = ()
        self.reviews: tuple[Review, ...] = ()
        self.events: tuple[LabelEvent, ...] = ()

    def list_issue_comments(self, issue_number: int) -> tuple[IssueComment, ...]:
        _ = issue_number
        return self.comments

    def list_pull_request_review_comments(self, pr_number: int) -> tuple[IssueComment, ...]:
        _ = pr_number
        return self.review_comments

    def list_pull_request_commit_dates(self, pr_number: int) -> tuple[str, ...]:
        _ = pr_number
        return self.commit_dates

    def list_reviews(self, pr_number: int) -> tuple[Review, ...]:
        _ = pr_number
        return self.reviews

    def list_label_events(self, issue_number: int) -> tuple[LabelEvent, ...]:
        _ = issue_number
        return self.events


def _comment(created_at: str, author: str) -> IssueComment:
    return IssueComment(1, "x", author, "h", created_at, created_at)


def _utc(day: int, hour: int = 0) -> datetime:
    return datetime(2026, 1, day, hour, tzinfo=timezone.utc)


def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2026-01-02T00:00:00Z") == _utc(2)
    assert parse_timestamp("2026-01-02T02:00:00+02:00") == _utc(2)
    assert parse_timestamp("2026-01-02T00:00:00").tzinfo == timezone.utc
    assert parse_timestamp("2026-01-02T02:00:00+02:00").utcoffset() == timedelta(0)


def test_latest_skips_empty_values_and_keeps_fallback() -> None:
    assert latest(_utc(5), ["", "2026-01-03T00:00:00Z"]) == _utc(5)
    assert latest(_utc(1), ["2026-01-03T00:00:00Z", "2026-01-02T00:00:00Z"]) == _utc(3)


def test_label_added_time_reads_label_events() -> None:
    github = FakeGitHub()
    github.events = (
        LabelEvent("labeled", "quorum:ready-to-implement", "2026-01-04T00:00:00Z"),
        LabelEvent("labeled", "bug", "2026-01-05T00:00:00Z"),
    )
    assert label_added_time(github, 1, "ready") == _utc(4)
    assert label_added_time(github, 1, "voting") is None


def test_latest_author_activity_ignores_bot_comments() -> None:
    github = FakeGitHub()
    github.comments = (
        _comment("2026-01-09T00:00:00Z", "QuorumXO[bot]"),
        _comment("2026-01-03T00:00:00Z", "alice"),
    )
    github.commit_dates = ("2026-01-04T00:00:00Z",)
    github.reviews = (Review("carol", "APPROVED", "2026-01-08T00:00:00Z"),)

    assert latest_author_activity(github, 5, "2026-01-01T00:00:00Z", bot_logins=BOTS) == _utc(4)


def test_latest_author_activity_never_precedes_creation() -> None:
    github = FakeGitHub()
    github.commit_dates = ("2025-12-01T00:00:00Z",)
    assert latest_author_activity(github, 5, "2026-01-02T00:00:00Z", bot_logins=BOTS) == _utc(2)


def test_latest_activity_counts_reviews_and_review_comments() -> None:
    github = FakeGitHub()
    github.commit_dates = ("2026-01-04T00:00:00Z",)
    github.reviews = (Review("carol", "APPROVED", "2026-01-06T00:00:00Z"), Review("d", "X", ""))
    github.review_comments = (
        _comment("2026-01-07T00:00:00Z", "dave"),
        _comment("2026-01-09T00:00:00Z", "quorumxo[bot]"),
    )

    assert latest_activity(github, 5, "2026-01-01T00:00:00Z", bot_logins=BOTS) == _utc(7)
