from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Final, Literal

from quorumxo.models import LabelEvent


LabelPurpose = Literal[
    "discussion",
    "voting",
    "extended_voting",
    "ready",
    "rejected",
    "inconclusive",
    "implementation",
    "stale",
    "implemented",
    "needs_human",
    "merge_ready",
]


@dataclass(frozen=True)
class LabelSpec:
    name: str
    legacy_names: tuple[str, ...] = ()

    @property
    def all_names(self) -> tuple[str, ...]:
        return (self.name, *self.legacy_names)


# Canonical names first; legacy names are still recognized on existing items.
LABELS: Final[dict[LabelPurpose, LabelSpec]] = {
    "discussion": LabelSpec("quorum:discussion", ("phase:discussion",)),
    "voting": LabelSpec("quorum:voting", ("phase:voting",)),
    "extended_voting": LabelSpec("quorum:extended-voting", ("phase:extended-voting",)),
    "ready": LabelSpec("quorum:ready-to-implement", ("phase:ready-to-implement",)),
    "rejected": LabelSpec("quorum:rejected", ("rejected",)),
    "inconclusive": LabelSpec("quorum:inconclusive", ("inconclusive",)),
    "implementation": LabelSpec("quorum:candidate", ("implementation",)),
    "stale": LabelSpec("quorum:stale", ("stale",)),
    "implemented": LabelSpec("quorum:implemented", ("implemented",)),
    "needs_human": LabelSpec("quorum:needs-human", ("blocked:human-help-needed",)),
    "merge_ready": LabelSpec("quorum:merge-ready", ("merge-ready",)),
}

GOVERNANCE_PURPOSES: Final[tuple[LabelPurpose, ...]] = (
    "implementation",
    "merge_ready",
)


def label_name(purpose: LabelPurpose) -> str:
    return LABELS[purpose].name


def query_names(purpose: LabelPurpose) -> tuple[str, ...]:
    return LABELS[purpose].all_names


def present_label(labels: Iterable[str], purpose: LabelPurpose) -> str | None:
    """Return the literal label on the item that serves ``purpose``, if any."""
    wanted = {name.lower() for name in LABELS[purpose].all_names}
    for label in labels:
        if label.lower() in wanted:
            return label
    return None


def has_label(labels: Iterable[str], purpose: LabelPurpose) -> bool:
    return present_label(labels, purpose) is not None


def purpose_of(label: str) -> LabelPurpose | None:
    normalized = label.lower()
    for purpose, spec in LABELS.items():
        if normalized in {name.lower() for name in spec.all_names}:
            return purpose
    return None


def label_applied_at(events: Iterable[LabelEvent], purpose: LabelPurpose) -> str | None:
    """Timestamp of the ``labeled`` event that put ``purpose`` on the item.

    Returns None when the label was removed again after its last application.
    """
    applied_at: str | None = None
    for event in events:
        if purpose_of(event.label) != purpose:
            continue
        applied_at = event.created_at if event.action == "labeled" else None
    return applied_at
