from __future__ import annotations

from quorumxo.models import VoteCounts, VotingOutcome, VotingRound


def discussion_welcome() -> str:
    return (
        "Discussion is open for this proposal. When the discussion window closes, "
        "a voting comment will be posted here."
    )


def voting_start() -> str:
    return (
        "Voting is open. React to THIS comment to vote:\n\n"
        "- :+1: ready to implement\n"
        "- :-1: reject\n"
        "- :confused: needs more discussion\n"
        "- :eyes: watching (not counted)\n\n"
        "Reacting with more than one of these counts as no vote."
    )


def _tally_line(counts: VoteCounts) -> str:
    return (
        f":+1: {counts.thumbs_up} | :-1: {counts.thumbs_down} | "
        f":confused: {counts.confused} | :eyes: {counts.eyes}"
    )


def voting_ended(
    outcome: VotingOutcome,
    counts: VoteCounts,
    *,
    voting_round: VotingRound,
    requirement_failure: str | None = None,
) -> str:
    tally = _tally_line(counts)
    if outcome == "ready":
        return f"Voting passed. This proposal is ready to implement.\n\n{tally}"
    if outcome == "rejected":
        return f"Voting closed: this proposal was rejected.\n\n{tally}"
    if outcome == "needs_more_discussion":
        return f"Voters asked for more discussion. Returning to the discussion phase.\n\n{tally}"
    reason = f" ({requirement_failure})" if requirement_failure else ""
    if voting_round == "voting":
        return f"Voting was inconclusive{reason}. Extended voting is now open.\n\n{tally}"
    return f"Extended voting was still inconclusive{reason}. Closing this proposal.\n\n{tally}"


def voting_comment_not_found() -> str:
    return (
        "The voting comment for this issue could not be found, so the vote cannot be "
        "counted. A maintainer needs to repost the vote or decide the outcome manually."
    )


def issue_voting_passed(issue_number: int, author_login: str) -> str:
    mention = f"@{author_login} " if author_login else ""
    return (
        f"{mention}Issue #{issue_number} passed voting and is ready for implementation. "
        "Push a new commit or add a comment to activate this pull request."
    )


def implementation_welcome(issue_number: int) -> str:
    return (
        f"This pull request is now a tracked implementation candidate for Issue #{issue_number}."
    )


def issue_new_pr(pr_number: int, total: int) -> str:
    return f"New implementation candidate: #{pr_number} ({total} active)."


def issue_not_ready(issue_number: int) -> str:
    return (
        f"Issue #{issue_number} has not passed voting yet. This pull request will not be "
        "tracked until it does."
    )


def issue_ready_needs_update(issue_number: int) -> str:
    return (
        f"Issue #{issue_number} is ready for implementation. Push a new commit or comment "
        "to activate this pull request."
    )


def pr_no_room(max_prs: int, active: tuple[int, ...], *, closing: bool) -> str:
    listed = ", ".join(f"#{number}" for number in active) or "none"
    action = "Closing this pull request." if closing else "It will be reconsidered later."
    return f"The limit of {max_prs} active implementations is reached ({listed}). {action}"


def stale_warning(days_inactive: int, close_after_days: int) -> str:
    return (
        f"This pull request has had no activity for {days_inactive} days. It will be "
        f"closed after {close_after_days} days of inactivity."
    )


def stale_closed(days_inactive: int) -> str:
    return f"Closing this pull request after {days_inactive} days of inactivity."


def issue_implemented(pr_number: int) -> str:
    return f"Implemented: merged via #{pr_number}."


def pr_superseded(merged_pr_number: int) -> str:
    return f"Implemented via #{merged_pr_number}. Closing this competing implementation."
