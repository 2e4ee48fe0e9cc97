from __future__ import annotations

import pytest

from quorumxo.labels import (
    LABELS,
    has_label,
    label_applied_at,
    label_name,
    present_label,
    purpose_of,
    query_names,
)
from quorumxo.models import (
    IssueRef,
    LabelEvent,
    PreflightCheck,
    PreflightResult,
    PullRequestRef,
    ValidatedVotes,
    VoteCounts,
)


def test_refs_expose_full_name() -> None:
    assert IssueRef("acme", "widgets", 7).full_name == "acme/widgets"
    assert PullRequestRef("acme", "widgets", 9).full_name == "acme/widgets"


def test_validated_votes_discarded_is_participants_minus_voters() -> None:
    votes = ValidatedVotes(
        counts=VoteCounts(thumbs_up=1),
        voters=frozenset({"alice"}),
        participants=frozenset({"alice", "bob"}),
    )
    assert votes.discarded == frozenset({"bob"})


def test_preflight_result_ignores_advisory_failures() -> None:
    result = PreflightResult(
        checks=(
            PreflightCheck("a", True, "hard", "ok"),
            PreflightCheck("b", False, "advisory", "missing"),
        )
    )
    assert result.all_hard_checks_passed is True

    failing = PreflightResult(checks=(PreflightCheck("a", False, "hard", "no"),))
    assert failing.all_hard_checks_passed is False


def test_empty_preflight_result_passes() -> None:
    assert PreflightResult(checks=()).all_hard_checks_passed is True


def test_label_name_and_query_names_put_canonical_first() -> None:
    assert label_name("merge_ready") == "quorum:merge-ready"
    assert query_names("merge_ready") == ("quorum:merge-ready", "merge-ready")
    assert query_names("implementation")[0] == label_name("implementation")


def test_every_purpose_has_distinct_names() -> None:
    seen: set[str] = set()
    for spec in LABELS.values():
        for name in spec.all_names:
            assert name.lower() not in seen
            seen.add(name.lower())


@pytest.mark.parametrize(
    ("labels", "expected"),
    [
        (("bug", "quorum:candidate"), "quorum:candidate"),
        (("Implementation",), "Implementation"),
        (("bug",), None),
        ((), None),
    ],
)
def test_present_label_returns_literal_label(
    labels: tuple[str, ...], expected: str | None
) -> None:
    assert present_label(labels, "implementation") == expected
    assert has_label(labels, "implementation") is (expected is not None)


def test_purpose_of_resolves_legacy_and_unknown_names() -> None:
    assert purpose_of("phase:voting") == "voting"
    assert purpose_of("QUORUM:VOTING") == "voting"
    assert purpose_of("bug") is None


def test_label_applied_at_tracks_last_application() -> None:
    events = (
        LabelEvent("labeled", "phase:voting", "2026-01-01T00:00:00Z"),
        LabelEvent("labeled", "bug", "2026-01-02T00:00:00Z"),
        LabelEvent("unlabeled", "phase:voting", "2026-01-03T00:00:00Z"),
        LabelEvent("labeled", "quorum:voting", "2026-01-04T00:00:00Z"),
    )
    assert label_applied_at(events, "voting") == "2026-01-04T00:00:00Z"
    assert label_applied_at(events, "ready") is None


def test_label_applied_at_is_none_after_removal() -> None:
    events = (
        LabelEvent("labeled", "quorum:stale", "2026-01-01T00:00:00Z"),
        LabelEvent("unlabeled", "stale", "2026-01-02T00:00:00Z"),
    )
    assert label_applied_at(events, "stale") is None
