from __future__ import annotations

from datetime import datetime, timedelta
import logging

from quorumxo import messages
from quorumxo.activity import latest_activity
from quorumxo.github_gateway import GitHubGateway
from quorumxo.intake import remove_governance_labels
from quorumxo.labels import label_name, present_label
from quorumxo.models import Issue, StaleAction
from quorumxo.observability import log_event


LOGGER = logging.getLogger("quorumxo.stale")


def days_inactive(last_activity: datetime, now: datetime) -> int:
    return (now - last_activity) // timedelta(days=1)


def stale_action(days: int, stale_days: int, *, has_stale_label: bool) -> StaleAction:
    """Warn once at ``stale_days``, close at twice that, recover when activity resumes."""
    if days >= 2 * stale_days:
        return "close"
    if days >= stale_days:
        return "none" if has_stale_label else "warn"
    return "recover" if has_stale_label else "none"


def process_stale_pr(
    github: GitHubGateway,
    pr: Issue,
    stale_days: int,
    *,
    bot_logins: frozenset[str],
    now: datetime,
) -> StaleAction:
    last_activity = latest_activity(github, pr.number, pr.created_at, bot_logins=bot_logins)
    days = days_inactive(last_activity, now)
    stale_label = present_label(pr.labels, "stale")
    action = stale_action(days, stale_days, has_stale_label=stale_label is not None)

    if action == "close":
        github.post_issue_comment(pr.number, messages.stale_closed(days))
        github.close_issue(pr.number, reason="not_planned")
        remove_governance_labels(github, pr.number, pr.labels)
        if stale_label is not None:
            github.remove_label(pr.number, stale_label)
        log_event(LOGGER, "stale_pr_closed", pr_number=pr.number, days_inactive=days)
    elif action == "warn":
        github.add_labels(pr.number, (label_name("stale"),))
        github.post_issue_comment(pr.number, messages.stale_warning(days, 2 * stale_days))
        log_event(LOGGER, "stale_pr_warned", pr_number=pr.number, days_inactive=days)
    elif action == "recover" and stale_label is not None:
        github.remove_label(pr.number, stale_label)
        log_event(LOGGER, "stale_pr_recovered", pr_number=pr.number, days_inactive=days)
    return action
