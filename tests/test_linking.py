from __future__ import annotations

from collections.abc import Iterator
import logging

import pytest

from quorumxo import observability
from quorumxo.github_gateway import GitHubGraphQLError, GitHubNotFoundError
from quorumxo.linking import (
    LinkResolutionError,
    closing_issues_from_body,
    discover_candidate_prs,
    find_linked_open_prs,
    resolve_closing_issues,
    verify_candidates,
)
from quorumxo.models import (
    CrossReference,
    CrossReferencePage,
    Issue,
    IssueRef,
    LinkedIssue,
    LinkedPullRequest,
    PullRequestRef,
    PullRequestSnapshot,
)
from quorumxo.observability import configure_logging, logging_repo_context


@pytest.fixture(autouse=True)
def restore_quorumxo_logger_state() -> Iterator[None]:
    logger = logging.getLogger("quorumxo")
    original_handlers = list(logger.handlers)
    original_level = logger.level
    try:
        yield
    finally:
        logger.handlers.clear()
        for handler in original_handlers:
            logger.addHandler(handler)
        logger.setLevel(original_level)


class FakeGitHub:
    owner = "acme"
    name = "widgets"
    full_name = "acme/widgets"

    def __init__(
        self,
        pages: list[CrossReferencePage] | None = None,
        closing: dict[int, tuple[LinkedIssue, ...] | Exception] | None = None,
        issues: dict[int, Issue | Exception] | None = None,
    ) -> None:
        self.pages = pages or []
        self.closing = closing or {}
        self.issues = issues or {}
        self.cursors: list[str | None] = []

    def list_cross_reference_page(
        self, issue_number: int, after: str | None = None
    ) -> CrossReferencePage:
        _ = issue_number
        self.cursors.append(after)
        if not self.pages:
            raise GitHubNotFoundError("missing issue", status_code=404)
        return self.pages[len(self.cursors) - 1]

    def get_closing_issue_references(self, pr_number: int) -> tuple[LinkedIssue, ...]:
        result = self.closing.get(pr_number, ())
        if isinstance(result, Exception):
            raise result
        return result

    def get_issue(self, issue_number: int) -> Issue:
        result = self.issues[issue_number]
        if isinstance(result, Exception):
            raise result
        return result


def _ref(
    number: int | None,
    *,
    state: str = "OPEN",
    owner: str = "acme",
    repo: str = "widgets",
    author: str | None = "alice",
) -> CrossReference:
    return CrossReference(number, f"PR {number}", state, author, owner, repo)


def _linked(*numbers: int) -> tuple[LinkedIssue, ...]:
    return tuple(LinkedIssue(number, "t", "OPEN", ()) for number in numbers)


def _candidate(number: int) -> LinkedPullRequest:
    return LinkedPullRequest(number, f"PR {number}", "OPEN", "alice")


def _pr(body: str) -> PullRequestSnapshot:
    return PullRequestSnapshot(5, "Impl", body, "sha", "open", False, True, "alice", (), "")


def test_discover_filters_and_dedupes_across_pages() -> None:
    github = FakeGitHub(
        pages=[
            CrossReferencePage(
                (
                    _ref(1),
                    _ref(2, state="CLOSED"),
                    _ref(3, state="MERGED"),
                    _ref(None),
                    _ref(4, owner="fork", repo="widgets"),
                    _ref(5, owner="ACME", repo="Widgets", author=None),
                ),
                has_next_page=True,
                end_cursor="c1",
            ),
            CrossReferencePage((_ref(1), _ref(6, owner="", repo="")), False, None),
        ]
    )

    candidates = discover_candidate_prs(github, 10)

    assert [candidate.number for candidate in candidates] == [1, 5, 6]
    assert candidates[1].author_login == "ghost"
    assert github.cursors == [None, "c1"]


def test_discover_stops_when_cursor_is_missing(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    github = FakeGitHub(pages=[CrossReferencePage((_ref(1),), True, None)])

    assert [candidate.number for candidate in discover_candidate_prs(github, 10)] == [1]
    assert github.cursors == [None]
    assert "event=link_discovery_cursor_missing" in capsys.readouterr().err


def test_discover_caps_scanned_events() -> None:
    full_page = CrossReferencePage(tuple(_ref(n) for n in range(1, 101)), True, "c1")
    github = FakeGitHub(pages=[full_page, CrossReferencePage((_ref(500),), False, None)])

    candidates = discover_candidate_prs(github, 10)

    assert len(candidates) == 100
    assert github.cursors == [None]


def test_discover_returns_empty_for_missing_issue() -> None:
    assert discover_candidate_prs(FakeGitHub(), 10) == ()


def test_verify_keeps_only_prs_that_close_the_issue() -> None:
    github = FakeGitHub(
        closing={1: _linked(10), 2: _linked(11), 3: _linked(11, 10)},
    )
    verified = verify_candidates(github, 10, tuple(_candidate(n) for n in (1, 2, 3)))
    assert [pr.number for pr in verified] == [1, 3]


def test_verify_skips_stale_candidates_quietly(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    github = FakeGitHub(
        closing={
            1: GitHubNotFoundError(
                "Could not resolve to a PullRequest with the number of 1.", status_code=404
            ),
        }
    )

    assert verify_candidates(github, 10, (_candidate(1),)) == ()
    stderr = capsys.readouterr().err
    assert "event=link_stale_candidates_skipped" in stderr
    assert "event=link_verification_failed" not in stderr


def test_verify_tolerates_partial_hard_failures(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    github = FakeGitHub(closing={1: RuntimeError("boom"), 2: _linked(10)})

    verified = verify_candidates(github, 10, (_candidate(1), _candidate(2)))

    assert [pr.number for pr in verified] == [2]
    assert "event=link_verification_failed" in capsys.readouterr().err


def test_verify_raises_when_every_lookup_hard_fails() -> None:
    github = FakeGitHub(closing={1: RuntimeError("boom"), 2: RuntimeError("bang")})
    expected = "All 2 closing-reference verification"
    with pytest.raises(LinkResolutionError, match=expected) as exc_info:
        verify_candidates(github, 10, (_candidate(1), _candidate(2)))
    assert exc_info.value.ref == IssueRef("acme", "widgets", 10)


def test_verify_lookups_run_under_the_callers_repo_context() -> None:
    seen: list[str | None] = []

    class ContextRecordingGitHub(FakeGitHub):
        def get_closing_issue_references(self, pr_number: int) -> tuple[LinkedIssue, ...]:
            seen.append(getattr(observability._repo_context, "repo_full_name", None))
            return super().get_closing_issue_references(pr_number)

    github = ContextRecordingGitHub(closing={1: _linked(10), 2: _linked(10)})
    with logging_repo_context("acme/widgets"):
        verified = verify_candidates(github, 10, (_candidate(1), _candidate(2)))

    assert [pr.number for pr in verified] == [1, 2]
    assert seen == ["acme/widgets", "acme/widgets"]


def test_verify_runs_many_batches() -> None:
    closing: dict[int, tuple[LinkedIssue, ...] | Exception] = {
        n: _linked(10) for n in range(1, 13) if n % 2
    }
    github = FakeGitHub(closing=closing)
    verified = verify_candidates(github, 10, tuple(_candidate(n) for n in range(1, 13)))
    assert [pr.number for pr in verified] == [1, 3, 5, 7, 9, 11]


def test_find_linked_open_prs_combines_discovery_and_verification() -> None:
    github = FakeGitHub(
        pages=[CrossReferencePage((_ref(1), _ref(2)), False, None)],
        closing={1: _linked(10)},
    )
    assert [pr.number for pr in find_linked_open_prs(github, 10)] == [1]
    assert find_linked_open_prs(FakeGitHub(), 10) == ()


def test_resolve_closing_issues_prefers_graphql() -> None:
    github = FakeGitHub(closing={5: _linked(1)})
    assert resolve_closing_issues(github, _pr("Fixes #2")) == _linked(1)


def test_resolve_closing_issues_falls_back_to_body(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)
    github = FakeGitHub(
        closing={
            5: GitHubGraphQLError(
                ("Field 'closingIssuesReferences' doesn't exist on type 'PullRequest'",)
            )
        },
        issues={
            2: Issue(2, "Idea", "", "u", ("quorum:ready-to-implement",), state="open"),
            3: Issue(3, "Other PR", "", "u", (), is_pull_request=True),
        },
    )

    linked = resolve_closing_issues(github, _pr("Fixes #2 and closes #3"))

    assert linked == (LinkedIssue(2, "Idea", "OPEN", ("quorum:ready-to-implement",)),)
    assert "event=closing_references_fallback" in capsys.readouterr().err


def test_resolve_closing_issues_reraises_other_graphql_errors() -> None:
    github = FakeGitHub(closing={5: GitHubGraphQLError(("Something else",))})
    with pytest.raises(GitHubGraphQLError):
        resolve_closing_issues(github, _pr("Fixes #2"))


def test_closing_issues_from_body_wraps_fetch_failures() -> None:
    github = FakeGitHub(issues={2: GitHubNotFoundError("gone", status_code=404)})
    expected = "issue #2 referenced by pull request #5"
    with pytest.raises(LinkResolutionError, match=expected) as exc_info:
        closing_issues_from_body(github, _pr("Fixes #2"))
    assert exc_info.value.ref == PullRequestRef("acme", "widgets", 5)
    assert closing_issues_from_body(github, _pr("no references")) == ()
