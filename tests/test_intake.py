from __future__ import annotations

from datetime import datetime, timezone

import pytest

from quorumxo import intake
from quorumxo.bot_comments import build_notification_comment, parse_metadata
from quorumxo.config import PrConfig
from quorumxo.intake import (
    active_implementations_by_issue,
    process_closed_pr,
    process_intake,
    remove_governance_labels,
)
from quorumxo.models import (
    ClosedPullRequestResult,
    Issue,
    IssueComment,
    IssueRef,
    LabelEvent,
    LabelRemoval,
    LinkedIssue,
    LinkedPullRequest,
    PullRequestRef,
    PullRequestSnapshot,
    Review,
)


BOTS = frozenset({"quorumxo[bot]"})
READY_AT = "2026-01-05T00:00:00Z"


class FakeGitHub:
    def __init__(self) -> None:
        self.comments: dict[int, list[IssueComment]] = {}
        self.commit_dates: tuple[str, ...] = ("2026-01-06T00:00:00Z",)
        self.reviews: tuple[Review, ...] = ()
        self.open_implementations: list[int] = []
        self.closing: dict[int, tuple[LinkedIssue, ...] | Exception] = {}
        self.label_events: dict[int, tuple[LabelEvent, ...]] = {}
        self.posted: list[tuple[int, str]] = []
        self.added: list[tuple[int, tuple[str, ...]]] = []
        self.closed: list[int] = []

    def list_issue_comments(self, issue_number: int) -> tuple[IssueComment, ...]:
        return tuple(self.comments.get(issue_number, []))

    def list_pull_request_commit_dates(self, pr_number: int) -> tuple[str, ...]:
        _ = pr_number
        return self.commit_dates

    def list_reviews(self, pr_number: int) -> tuple[Review, ...]:
        _ = pr_number
        return self.reviews

    def list_open_pull_requests_with_any_labels(self, labels: tuple[str, ...]) -> list[Issue]:
        assert labels[0] == "quorum:candidate"
        return [
            Issue(number, "t", "", "u", ("quorum:candidate",), is_pull_request=True)
            for number in self.open_implementations
        ]

    def get_closing_issue_references(self, pr_number: int) -> tuple[LinkedIssue, ...]:
        result = self.closing.get(pr_number, ())
        if isinstance(result, Exception):
            raise result
        return result

    def list_label_events(self, issue_number: int) -> tuple[LabelEvent, ...]:
        return self.label_events.get(
            issue_number, (LabelEvent("labeled", "quorum:ready-to-implement", READY_AT),)
        )

    def post_issue_comment(self, issue_number: int, body: str) -> int:
        self.posted.append((issue_number, body))
        comment = IssueComment(len(self.posted), body, "quorumxo[bot]", "h", "", "")
        self.comments.setdefault(issue_number, []).append(comment)
        return comment.comment_id

    def add_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        self.added.append((issue_number, labels))

    def close_issue(self, issue_number: int, *, reason: str = "not_planned") -> None:
        _ = reason
        self.closed.append(issue_number)


def _pr(*labels: str) -> PullRequestSnapshot:
    return PullRequestSnapshot(
        number=5,
        title="Impl",
        body="Fixes #1",
        head_sha="sha",
        state="open",
        merged=False,
        mergeable=True,
        author_login="alice",
        labels=labels,
        created_at="2026-01-02T00:00:00Z",
    )


def _issue(number: int = 1, *labels: str) -> LinkedIssue:
    return LinkedIssue(number, f"Issue {number}", "OPEN", labels or ("quorum:ready-to-implement",))


def _kind(body: str) -> str | None:
    metadata = parse_metadata(body)
    return metadata.kind if metadata is not None else None


def test_intake_short_circuits() -> None:
    github = FakeGitHub()
    assert process_intake(github, _pr(), (_issue(),), "opened", None, bot_logins=BOTS) == (
        "disabled"
    )
    assert process_intake(github, _pr(), (), "opened", PrConfig(), bot_logins=BOTS) == (
        "no_linked_issues"
    )
    assert (
        process_intake(
            github, _pr("implementation"), (_issue(),), "opened", PrConfig(), bot_logins=BOTS
        )
        == "already_implementation"
    )
    assert github.posted == []
    assert github.added == []


def test_intake_accepts_and_notifies_once() -> None:
    github = FakeGitHub()

    decision = process_intake(github, _pr(), (_issue(),), "opened", PrConfig(), bot_logins=BOTS)

    assert decision == "accepted"
    assert github.added == [(5, ("quorum:candidate",))]
    assert [(number, _kind(body)) for number, body in github.posted] == [
        (5, "implementation-welcome"),
        (1, "issue-new-pr"),
    ]
    assert "(1 active)" in github.posted[1][1]

    process_intake(github, _pr(), (_issue(),), "updated", PrConfig(), bot_logins=BOTS)
    assert len(github.posted) == 2


def test_intake_counts_other_active_implementations() -> None:
    github = FakeGitHub()
    github.open_implementations = [5, 7, 8]
    github.closing = {5: (_issue(),), 7: (_issue(),), 8: RuntimeError("boom")}

    decision = process_intake(github, _pr(), (_issue(),), "opened", PrConfig(), bot_logins=BOTS)

    assert decision == "accepted"
    assert "(2 active)" in github.posted[-1][1]


def test_intake_with_no_room_comments_and_closes_only_when_opened() -> None:
    github = FakeGitHub()
    github.open_implementations = [7, 8]
    github.closing = {7: (_issue(),), 8: (_issue(),)}
    config = PrConfig(max_prs_per_issue=2)

    assert process_intake(github, _pr(), (_issue(),), "opened", config, bot_logins=BOTS) == (
        "no_room"
    )
    assert github.closed == [5]
    assert "#7, #8" in github.posted[0][1]
    assert "Closing this pull request." in github.posted[0][1]

    retry = FakeGitHub()
    retry.open_implementations = [7, 8]
    retry.closing = {7: (_issue(),), 8: (_issue(),)}
    assert process_intake(retry, _pr(), (_issue(),), "updated", config, bot_logins=BOTS) == (
        "no_room"
    )
    assert retry.closed == []
    assert "reconsidered later" in retry.posted[0][1]
    assert retry.added == []


def test_intake_not_ready_issue_comments_only_when_opened() -> None:
    github = FakeGitHub()
    not_ready = _issue(1, "quorum:voting")

    assert process_intake(github, _pr(), (not_ready,), "opened", PrConfig(), bot_logins=BOTS) == (
        "not_eligible"
    )
    assert "has not passed voting yet" in github.posted[0][1]

    quiet = FakeGitHub()
    process_intake(quiet, _pr(), (not_ready,), "edited", PrConfig(), bot_logins=BOTS)
    assert quiet.posted == []


def test_intake_requires_activity_after_ready() -> None:
    github = FakeGitHub()
    github.commit_dates = ("2026-01-03T00:00:00Z",)

    decision = process_intake(github, _pr(), (_issue(),), "opened", PrConfig(), bot_logins=BOTS)

    assert decision == "not_eligible"
    assert github.added == []
    assert "Push a new commit or comment" in github.posted[0][1]


def test_intake_bot_comments_do_not_count_as_activity() -> None:
    github = FakeGitHub()
    github.commit_dates = ()
    github.comments[5] = [IssueComment(1, "hi", "quorumxo[bot]", "h", "2026-01-09T00:00:00Z", "")]

    decision = process_intake(github, _pr(), (_issue(),), "updated", PrConfig(), bot_logins=BOTS)

    assert decision == "not_eligible"
    assert github.posted == []


def test_intake_edit_after_ready_counts_as_activity() -> None:
    github = FakeGitHub()
    github.commit_dates = ()

    decision = process_intake(
        github,
        _pr(),
        (_issue(),),
        "edited",
        PrConfig(),
        bot_logins=BOTS,
        edited_at=datetime(2026, 1, 6, tzinfo=timezone.utc),
    )

    assert decision == "accepted"


@pytest.mark.parametrize(
    ("reviews", "expected"),
    [
        ((Review("carol", "APPROVED", "t"),), "accepted"),
        ((Review("mallory", "APPROVED", "t"),), "not_eligible"),
        ((Review("alice", "APPROVED", "t"),), "not_eligible"),
    ],
)
def test_intake_trusted_approvals_bypass_activity_guard(
    reviews: tuple[Review, ...], expected: str
) -> None:
    github = FakeGitHub()
    github.commit_dates = ()
    github.reviews = reviews
    config = PrConfig(trusted_reviewers=("alice", "carol"), intake_min_approvals=1)

    assert process_intake(github, _pr(), (_issue(),), "updated", config, bot_logins=BOTS) == (
        expected
    )


def test_intake_skips_issue_without_ready_time() -> None:
    github = FakeGitHub()
    github.label_events[1] = ()

    assert process_intake(github, _pr(), (_issue(),), "opened", PrConfig(), bot_logins=BOTS) == (
        "not_eligible"
    )
    assert github.posted == []


def test_intake_labels_once_for_multiple_ready_issues() -> None:
    github = FakeGitHub()
    github.comments[5] = [
        IssueComment(
            9,
            build_notification_comment("hi", 1, "implementation-welcome"),
            "quorumxo[bot]",
            "h",
            "",
            "",
        )
    ]

    decision = process_intake(
        github, _pr(), (_issue(1), _issue(2)), "opened", PrConfig(), bot_logins=BOTS
    )

    assert decision == "accepted"
    assert github.added == [(5, ("quorum:candidate",))]
    assert [(number, _kind(body)) for number, body in github.posted] == [
        (1, "issue-new-pr"),
        (2, "issue-new-pr"),
    ]


def test_active_implementations_by_issue_groups_by_requested_issue() -> None:
    github = FakeGitHub()
    github.open_implementations = [5, 6, 7, 8]
    github.closing = {5: (_issue(1), _issue(3)), 6: (_issue(2),), 7: (_issue(1),)}

    assert active_implementations_by_issue(github, (1, 2, 4)) == {1: (5, 7), 2: (6,), 4: ()}
    assert active_implementations_by_issue(github, ()) == {}


class ClosingGitHub:
    owner = "acme"
    name = "widgets"
    full_name = "acme/widgets"

    def __init__(self, pr_labels: dict[int, tuple[str, ...]] | None = None) -> None:
        self.pr_labels = pr_labels or {}
        self.calls: list[tuple[object, ...]] = []

    def get_issue(self, issue_number: int) -> Issue:
        return Issue(
            issue_number, "t", "", "u", self.pr_labels.get(issue_number, ()), is_pull_request=True
        )

    def add_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        self.calls.append(("add", issue_number, labels))

    def post_issue_comment(self, issue_number: int, body: str) -> int:
        self.calls.append(("comment", issue_number, body))
        return len(self.calls)

    def close_issue(self, issue_number: int, *, reason: str = "not_planned") -> None:
        self.calls.append(("close", issue_number, reason))

    def remove_label(self, issue_number: int, label: str) -> LabelRemoval:
        self.calls.append(("remove", issue_number, label))
        return "removed"


def _closed_pr(*labels: str, merged: bool) -> PullRequestSnapshot:
    return PullRequestSnapshot(
        5, "Impl", "Fixes #1", "sha", "closed", merged, None, "alice", labels, ""
    )


def _competing(*numbers: int) -> tuple[LinkedPullRequest, ...]:
    return tuple(LinkedPullRequest(number, f"PR {number}", "OPEN", "bob") for number in numbers)


def test_remove_governance_labels_only_touches_present_labels() -> None:
    github = ClosingGitHub()

    removed = remove_governance_labels(github, 5, ("bug", "merge-ready", "quorum:candidate"))

    assert removed == ("quorum:candidate", "merge-ready")
    assert github.calls == [
        ("remove", 5, "quorum:candidate"),
        ("remove", 5, "merge-ready"),
    ]
    assert remove_governance_labels(github, 5, ("bug",)) == ()


def test_closed_without_merge_only_clears_labels(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_lookup(github: object, issue_number: int) -> tuple[LinkedPullRequest, ...]:
        raise AssertionError("competing pull requests are only closed after a merge")

    monkeypatch.setattr(intake, "find_linked_open_prs", fail_lookup)
    github = ClosingGitHub()

    result = process_closed_pr(
        github, _closed_pr("implementation", merged=False), (_issue(1),)
    )

    assert result == ClosedPullRequestResult(
        PullRequestRef("acme", "widgets", 5), merged=False, labels_cleared=("implementation",)
    )
    assert github.calls == [("remove", 5, "implementation")]


def test_merge_implements_ready_issues_and_supersedes_competitors(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    competitors = {1: _competing(5, 7), 3: _competing(7, 8)}
    monkeypatch.setattr(
        intake, "find_linked_open_prs", lambda github, number: competitors[number]
    )
    github = ClosingGitHub({7: ("implementation",), 8: ("quorum:merge-ready", "bug")})
    linked = (_issue(1), _issue(2, "quorum:voting"), _issue(3, "phase:ready-to-implement"))

    result = process_closed_pr(github, _closed_pr("quorum:candidate", merged=True), linked)

    assert result.merged is True
    assert result.labels_cleared == ("quorum:candidate",)
    assert result.implemented == (
        IssueRef("acme", "widgets", 1),
        IssueRef("acme", "widgets", 3),
    )
    assert result.superseded == (
        PullRequestRef("acme", "widgets", 7),
        PullRequestRef("acme", "widgets", 8),
    )
    assert github.calls == [
        ("remove", 5, "quorum:candidate"),
        ("add", 1, ("quorum:implemented",)),
        ("comment", 1, "Implemented: merged via #5."),
        ("close", 1, "completed"),
        ("remove", 1, "quorum:ready-to-implement"),
        ("comment", 7, "Implemented via #5. Closing this competing implementation."),
        ("close", 7, "not_planned"),
        ("remove", 7, "implementation"),
        ("add", 3, ("quorum:implemented",)),
        ("comment", 3, "Implemented: merged via #5."),
        ("close", 3, "completed"),
        ("remove", 3, "phase:ready-to-implement"),
        ("comment", 8, "Implemented via #5. Closing this competing implementation."),
        ("close", 8, "not_planned"),
        ("remove", 8, "quorum:merge-ready"),
    ]
