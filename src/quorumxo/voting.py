from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import Final, Literal

from quorumxo.config import VotingRules
from quorumxo.models import Reaction, ValidatedVotes, VoteCounts
from quorumxo.observability import log_event


LOGGER = logging.getLogger("quorumxo.voting")

VoteCategory = Literal["thumbs_up", "thumbs_down", "confused", "eyes"]
TallyOutcome = Literal["ready", "rejected", "needs_more_discussion", "inconclusive"]

VOTE_REACTIONS: Final[dict[str, VoteCategory]] = {
    "+1": "thumbs_up",
    "-1": "thumbs_down",
    "confused": "confused",
    "eyes": "eyes",
}


def determine_outcome(counts: VoteCounts) -> TallyOutcome:
    # Order matters: abstention majority is checked before the yes/no split.
    if counts.confused > counts.thumbs_up + counts.thumbs_down:
        return "needs_more_discussion"
    if counts.thumbs_up > counts.thumbs_down:
        return "ready"
    if counts.thumbs_down > counts.thumbs_up:
        return "rejected"
    return "inconclusive"


def validate_reactions(reactions: Iterable[Reaction]) -> ValidatedVotes:
    """Count one vote per user; users reacting in more than one category cast no vote."""
    categories_by_user: dict[str, set[VoteCategory]] = {}
    anonymous = 0
    for reaction in reactions:
        category = VOTE_REACTIONS.get(reaction.content)
        if category is None:
            continue
        if not reaction.user_login:
            anonymous += 1
            continue
        login = reaction.user_login.strip().lower()
        categories_by_user.setdefault(login, set()).add(category)

    totals: dict[VoteCategory, int] = {"thumbs_up": 0, "thumbs_down": 0, "confused": 0, "eyes": 0}
    voters: set[str] = set()
    for login, categories in categories_by_user.items():
        if len(categories) != 1:
            continue
        voters.add(login)
        totals[next(iter(categories))] += 1

    participants = frozenset(categories_by_user)
    if anonymous or len(voters) != len(participants):
        log_event(
            LOGGER,
            "vote_reactions_discarded",
            anonymous_count=anonymous,
            conflicting_voters=sorted(participants - voters),
        )
    return ValidatedVotes(
        counts=VoteCounts(**totals),
        voters=frozenset(voters),
        participants=participants,
    )


def requirement_failure(votes: ValidatedVotes, rules: VotingRules) -> str | None:
    """Return why a tally cannot be trusted, or None when every voting rule is met."""
    if len(votes.voters) < rules.min_voters:
        return f"quorum not met ({len(votes.voters)} of {rules.min_voters} voters)"
    if rules.required_voters and rules.required_voters_min > 0:
        participated = votes.participants.intersection(rules.required_voters)
        if len(participated) < rules.required_voters_min:
            missing = sorted(set(rules.required_voters) - participated)
            return f"required voters missing: {', '.join(missing)}"
    return None


def is_unanimous(counts: VoteCounts) -> bool:
    decisive = (counts.thumbs_up, counts.thumbs_down, counts.confused)
    return sum(1 for value in decisive if value > 0) == 1


def decide_outcome(votes: ValidatedVotes, rules: VotingRules | None = None) -> TallyOutcome:
    if rules is not None:
        failure = requirement_failure(votes, rules)
        if failure is not None:
            log_event(LOGGER, "voting_requirements_not_met", reason=failure)
            return "inconclusive"
        if rules.requires == "unanimous" and not is_unanimous(votes.counts):
            return "inconclusive"
    return determine_outcome(votes.counts)
