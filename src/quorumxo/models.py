from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


VotingOutcome = Literal["ready", "rejected", "needs_more_discussion", "inconclusive", "skipped"]
VotingRound = Literal["voting", "extended_voting"]
CheckSeverity = Literal["hard", "advisory"]
MergeReadinessActionKind = Literal["skipped", "added", "removed", "noop"]
LabelRemoval = Literal["removed", "absent"]
IntakeTrigger = Literal["opened", "updated", "edited"]
StaleAction = Literal["none", "warn", "close", "recover"]


@dataclass(frozen=True)
class IssueRef:
    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class PullRequestRef:
    owner: str
    repo: str
    number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class Issue:
    """An issue or pull request as returned by the issues API."""

    number: int
    title: str
    body: str
    html_url: str
    labels: tuple[str, ...]
    author_login: str = ""
    state: str = "open"
    created_at: str = ""
    is_pull_request: bool = False


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    body: str
    head_sha: str
    state: str
    merged: bool
    mergeable: bool | None
    author_login: str
    labels: tuple[str, ...]
    created_at: str


@dataclass(frozen=True)
class IssueComment:
    comment_id: int
    body: str
    author_login: str
    html_url: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class Reaction:
    content: str
    user_login: str | None


@dataclass(frozen=True)
class Review:
    reviewer_login: str
    state: str
    submitted_at: str


@dataclass(frozen=True)
class CheckRun:
    check_id: int
    name: str
    status: str
    conclusion: str | None


@dataclass(frozen=True)
class CheckRunListing:
    total_count: int
    runs: tuple[CheckRun, ...]


@dataclass(frozen=True)
class CombinedStatus:
    state: str
    total_count: int


@dataclass(frozen=True)
class LabelEvent:
    action: Literal["labeled", "unlabeled"]
    label: str
    created_at: str


@dataclass(frozen=True)
class LinkedIssue:
    number: int
    title: str
    state: str
    labels: tuple[str, ...]


@dataclass(frozen=True)
class LinkedPullRequest:
    number: int
    title: str
    state: str
    author_login: str


@dataclass(frozen=True)
class CrossReference:
    pr_number: int | None
    title: str
    state: str
    author_login: str | None
    repo_owner: str
    repo_name: str


@dataclass(frozen=True)
class CrossReferencePage:
    items: tuple[CrossReference, ...]
    has_next_page: bool
    end_cursor: str | None


@dataclass(frozen=True)
class VoteCounts:
    thumbs_up: int = 0
    thumbs_down: int = 0
    confused: int = 0
    eyes: int = 0


@dataclass(frozen=True)
class ValidatedVotes:
    counts: VoteCounts
    voters: frozenset[str]
    participants: frozenset[str]

    @property
    def discarded(self) -> frozenset[str]:
        return self.participants - self.voters


@dataclass(frozen=True)
class PreflightCheck:
    name: str
    passed: bool
    severity: CheckSeverity
    detail: str


@dataclass(frozen=True)
class PreflightResult:
    checks: tuple[PreflightCheck, ...]

    @property
    def all_hard_checks_passed(self) -> bool:
        return all(check.passed for check in self.checks if check.severity == "hard")


@dataclass(frozen=True)
class MergeReadinessAction:
    kind: MergeReadinessActionKind
    reason: str | None = None
    labeled: bool | None = None


@dataclass(frozen=True)
class ClosedPullRequestResult:
    pull_request: PullRequestRef
    merged: bool
    labels_cleared: tuple[str, ...] = ()
    implemented: tuple[IssueRef, ...] = ()
    superseded: tuple[PullRequestRef, ...] = ()
