from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Final, Literal

from quorumxo import bot_comments, messages
from quorumxo.config import VotingRules
from quorumxo.github_gateway import GitHubGateway
from quorumxo.labels import LabelPurpose, label_name, present_label
from quorumxo.models import Issue, IssueComment, VotingOutcome, VotingRound
from quorumxo.observability import log_event
from quorumxo.voting import TallyOutcome, decide_outcome, requirement_failure, validate_reactions


LOGGER = logging.getLogger("quorumxo.governance")


@dataclass(frozen=True)
class OutcomeTransition:
    label: LabelPurpose
    close: bool = False
    lock: bool = False
    unlock: bool = False
    close_reason: str = "not_planned"


# Ready stays open and unlocked so later automation can still comment on it.
OUTCOME_TRANSITIONS: Final[dict[tuple[VotingRound, TallyOutcome], OutcomeTransition]] = {
    ("voting", "ready"): OutcomeTransition("ready"),
    ("voting", "rejected"): OutcomeTransition("rejected", close=True, lock=True),
    ("voting", "inconclusive"): OutcomeTransition("extended_voting"),
    ("voting", "needs_more_discussion"): OutcomeTransition("discussion", unlock=True),
    ("extended_voting", "ready"): OutcomeTransition("ready"),
    ("extended_voting", "rejected"): OutcomeTransition("rejected", close=True, lock=True),
    ("extended_voting", "inconclusive"): OutcomeTransition("inconclusive", close=True, lock=True),
    ("extended_voting", "needs_more_discussion"): OutcomeTransition("discussion", unlock=True),
}


@dataclass(frozen=True)
class TransitionIntent:
    add_label: str
    comment: str
    remove_label: str | None = None
    close: bool = False
    lock: bool = False
    unlock: bool = False
    close_reason: str = "not_planned"


def apply_transition(github: GitHubGateway, issue_number: int, intent: TransitionIntent) -> None:
    """Apply one transition; the new label lands before the old one is removed.

    A failure partway through leaves both phase labels in place, so the next
    sweep still finds the issue under its old phase and retries.
    """
    if intent.unlock and not intent.lock:
        github.unlock_issue(issue_number)
    github.add_labels(issue_number, (intent.add_label,))
    github.post_issue_comment(issue_number, intent.comment)
    if intent.close:
        github.close_issue(issue_number, reason=intent.close_reason)
    if intent.remove_label is not None and intent.remove_label != intent.add_label:
        github.remove_label(issue_number, intent.remove_label)
    if intent.lock:
        github.lock_issue(issue_number, reason="resolved")


class GovernanceService:
    def __init__(
        self,
        github: GitHubGateway,
        *,
        bot_logins: frozenset[str],
        rules: VotingRules | None = None,
    ) -> None:
        self._github = github
        self._bot_logins = bot_logins
        self._rules = rules

    def start_discussion(self, issue: Issue) -> bool:
        comments = self._github.list_issue_comments(issue.number)
        if bot_comments.has_welcome(comments, bot_logins=self._bot_logins):
            return False
        if present_label(issue.labels, "discussion") is None:
            self._github.add_labels(issue.number, (label_name("discussion"),))
        self._github.post_issue_comment(
            issue.number,
            bot_comments.build_welcome_comment(messages.discussion_welcome(), issue.number),
        )
        log_event(LOGGER, "discussion_started", issue_number=issue.number)
        return True

    def transition_to_voting(self, issue: Issue) -> None:
        comments = self._github.list_issue_comments(issue.number)
        cycle = bot_comments.next_voting_cycle(comments, bot_logins=self._bot_logins)
        apply_transition(
            self._github,
            issue.number,
            TransitionIntent(
                add_label=label_name("voting"),
                comment=bot_comments.build_voting_comment(
                    messages.voting_start(), issue.number, cycle
                ),
                remove_label=present_label(issue.labels, "discussion") or label_name("discussion"),
            ),
        )
        log_event(
            LOGGER,
            "phase_transition_applied",
            issue_number=issue.number,
            from_phase="discussion",
            to_phase="voting",
            cycle=cycle,
        )

    def post_voting_comment(self, issue: Issue) -> Literal["posted", "skipped"]:
        comments = self._github.list_issue_comments(issue.number)
        if bot_comments.current_voting_comment(comments, bot_logins=self._bot_logins) is not None:
            return "skipped"
        cycle = bot_comments.next_voting_cycle(comments, bot_logins=self._bot_logins)
        self._github.post_issue_comment(
            issue.number,
            bot_comments.build_voting_comment(messages.voting_start(), issue.number, cycle),
        )
        log_event(LOGGER, "voting_comment_posted", issue_number=issue.number, cycle=cycle)
        return "posted"

    def end_voting(self, issue: Issue) -> VotingOutcome:
        return self._finish_round(issue, "voting")

    def resolve_extended_voting(self, issue: Issue) -> VotingOutcome:
        return self._finish_round(issue, "extended_voting")

    def _finish_round(self, issue: Issue, voting_round: VotingRound) -> VotingOutcome:
        comments = self._github.list_issue_comments(issue.number)
        voting_comment = bot_comments.current_voting_comment(
            comments, bot_logins=self._bot_logins
        )
        if voting_comment is None:
            self._request_human_help(issue, comments)
            return "skipped"

        votes = validate_reactions(self._github.list_comment_reactions(voting_comment.comment_id))
        outcome = decide_outcome(votes, self._rules)
        failure = requirement_failure(votes, self._rules) if self._rules else None
        transition = OUTCOME_TRANSITIONS[(voting_round, outcome)]
        apply_transition(
            self._github,
            issue.number,
            TransitionIntent(
                add_label=label_name(transition.label),
                comment=messages.voting_ended(
                    outcome,
                    votes.counts,
                    voting_round=voting_round,
                    requirement_failure=failure,
                ),
                remove_label=present_label(issue.labels, voting_round) or label_name(voting_round),
                close=transition.close,
                lock=transition.lock,
                unlock=transition.unlock,
            ),
        )
        log_event(
            LOGGER,
            "phase_transition_applied",
            issue_number=issue.number,
            from_phase=voting_round,
            to_phase=transition.label,
            outcome=outcome,
            thumbs_up=votes.counts.thumbs_up,
            thumbs_down=votes.counts.thumbs_down,
            confused=votes.counts.confused,
            voters=len(votes.voters),
        )
        return outcome

    def _request_human_help(self, issue: Issue, comments: tuple[IssueComment, ...]) -> None:
        error_code = bot_comments.VOTING_COMMENT_NOT_FOUND
        if bot_comments.has_human_help(comments, error_code, bot_logins=self._bot_logins):
            log_event(LOGGER, "human_help_already_requested", issue_number=issue.number)
            return
        self._github.post_issue_comment(
            issue.number,
            bot_comments.build_human_help_comment(
                messages.voting_comment_not_found(), issue.number, error_code
            ),
        )
        try:
            self._github.add_labels(issue.number, (label_name("needs_human"),))
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "needs_human_label_failed",
                level=logging.WARNING,
                issue_number=issue.number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        log_event(
            LOGGER,
            "human_help_requested",
            level=logging.WARNING,
            issue_number=issue.number,
            error_code=error_code,
        )
