from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Final

from quorumxo.activity import parse_timestamp
from quorumxo.config import RepoConfig, RuntimeConfig
from quorumxo.github_gateway import GitHubGateway, parse_issue, parse_pull_request
from quorumxo.governance import GovernanceService
from quorumxo.intake import process_closed_pr, process_intake
from quorumxo.labels import purpose_of
from quorumxo.linking import resolve_closing_issues
from quorumxo.models import IntakeTrigger, PullRequestSnapshot
from quorumxo.observability import log_event
from quorumxo.preflight import evaluate_merge_readiness


LOGGER = logging.getLogger("quorumxo.webhooks")

_READINESS_PR_ACTIONS: Final[frozenset[str]] = frozenset(
    {"synchronize", "labeled", "unlabeled", "reopened"}
)
_INTAKE_PR_ACTIONS: Final[dict[str, IntakeTrigger]] = {
    "opened": "opened",
    "edited": "edited",
    "synchronize": "updated",
}


class EventProcessingError(RuntimeError):
    def __init__(self, message: str, *, failed: tuple[int, ...]) -> None:
        super().__init__(message)
        self.failed = failed


@dataclass(frozen=True)
class EventResult:
    event: str
    handled: bool
    actions: tuple[str, ...] = ()


def handle_event(
    name: str,
    payload: dict[str, object],
    github: GitHubGateway,
    repo: RepoConfig,
    runtime: RuntimeConfig,
) -> EventResult:
    """Route one decoded webhook delivery to the engine with the context it already carries."""
    action = _as_str(payload.get("action"))
    event = f"{name}.{action}" if action else name
    if name == "pull_request_review" and action in {"submitted", "dismissed"}:
        return _handle_review(event, payload, github, repo, runtime)
    if name == "pull_request":
        return _handle_pull_request(event, action, payload, github, repo, runtime)
    if name in {"check_run", "check_suite"} and action == "completed":
        return _handle_check_completion(event, name, payload, github, repo)
    if name == "status":
        return _handle_status(event, payload, github, repo)
    if name == "issues" and action == "opened":
        return _handle_issue_opened(event, payload, github, repo, runtime)
    if name == "issues" and action == "labeled":
        return _handle_issue_labeled(event, payload, github, repo, runtime)
    return _ignored(event, "unsupported event")


def _handle_review(
    event: str,
    payload: dict[str, object],
    github: GitHubGateway,
    repo: RepoConfig,
    runtime: RuntimeConfig,
) -> EventResult:
    pr = parse_pull_request(_require_dict(payload, "pull_request"))
    if pr.state != "open":
        return _ignored(event, "pull request is not open")
    actions: list[str] = []
    review = _as_dict(payload.get("review")) or {}
    approved = _as_str(review.get("state")).lower() == "approved"
    if approved and repo.pr is not None and repo.pr.intake_min_approvals > 0:
        actions.append(_run_intake(github, pr, "updated", repo, runtime))
    actions.append(_evaluate_readiness(github, pr, repo))
    return _handled(event, actions)


def _handle_pull_request(
    event: str,
    action: str,
    payload: dict[str, object],
    github: GitHubGateway,
    repo: RepoConfig,
    runtime: RuntimeConfig,
) -> EventResult:
    pr = parse_pull_request(_require_dict(payload, "pull_request"))
    if action == "closed":
        return _handle_closed_pull_request(event, pr, github, repo)
    if pr.state != "open":
        return _ignored(event, "pull request is not open")
    actions: list[str] = []
    trigger = _INTAKE_PR_ACTIONS.get(action)
    if trigger is not None:
        edited_at: datetime | None = None
        if trigger == "edited":
            updated_at = _as_str(_require_dict(payload, "pull_request").get("updated_at"))
            edited_at = parse_timestamp(updated_at) if updated_at else None
        actions.append(_run_intake(github, pr, trigger, repo, runtime, edited_at=edited_at))
    if action in _READINESS_PR_ACTIONS and _tracks_readiness(action, payload):
        actions.append(_evaluate_readiness(github, pr, repo))
    if not actions:
        return _ignored(event, "unsupported action")
    return _handled(event, actions)


def _handle_closed_pull_request(
    event: str, pr: PullRequestSnapshot, github: GitHubGateway, repo: RepoConfig
) -> EventResult:
    if repo.pr is None and repo.governance is None:
        return _ignored(event, "feature disabled")
    linked = resolve_closing_issues(github, pr) if pr.merged else ()
    result = process_closed_pr(github, pr, linked)
    actions = [f"#{pr.number}:closed:labels_cleared"]
    actions.extend(f"#{issue.number}:implemented" for issue in result.implemented)
    actions.extend(f"#{competing.number}:superseded" for competing in result.superseded)
    return _handled(event, actions)


def _handle_check_completion(
    event: str,
    name: str,
    payload: dict[str, object],
    github: GitHubGateway,
    repo: RepoConfig,
) -> EventResult:
    check = _require_dict(payload, name)
    head_sha = _as_str(check.get("head_sha"))
    numbers: list[int] = []
    for entry in _as_list(check.get("pull_requests")):
        number = _as_int((_as_dict(entry) or {}).get("number"))
        if number is not None:
            numbers.append(number)
    if not numbers or not head_sha:
        return _ignored(event, "no associated pull requests")

    def evaluate(number: int) -> str:
        labels = github.get_issue(number).labels
        result = evaluate_merge_readiness(
            github, number, repo.pr, labels=labels, head_sha=head_sha
        )
        return f"#{number}:merge_ready:{result.kind}"

    return _handled(event, _for_each_pr(event, tuple(numbers), evaluate))


def _handle_status(
    event: str, payload: dict[str, object], github: GitHubGateway, repo: RepoConfig
) -> EventResult:
    if repo.pr is None or repo.pr.merge_ready is None:
        return _ignored(event, "feature disabled")
    sha = _as_str(payload.get("sha"))
    if not sha:
        return _ignored(event, "missing sha")
    matching = {pr.number: pr for pr in github.list_open_pull_requests() if pr.head_sha == sha}
    if not matching:
        return _ignored(event, "no open pull request at this commit")
    actions = _for_each_pr(
        event,
        tuple(matching),
        lambda number: _evaluate_readiness(github, matching[number], repo),
    )
    return _handled(event, actions)


def _handle_issue_opened(
    event: str,
    payload: dict[str, object],
    github: GitHubGateway,
    repo: RepoConfig,
    runtime: RuntimeConfig,
) -> EventResult:
    if repo.governance is None:
        return _ignored(event, "feature disabled")
    issue = parse_issue(_require_dict(payload, "issue"), is_pull_request=False)
    service = GovernanceService(
        github, bot_logins=runtime.bot_logins, rules=repo.governance.voting
    )
    started = service.start_discussion(issue)
    return _handled(event, [f"#{issue.number}:discussion:{'started' if started else 'skipped'}"])


def _handle_issue_labeled(
    event: str,
    payload: dict[str, object],
    github: GitHubGateway,
    repo: RepoConfig,
    runtime: RuntimeConfig,
) -> EventResult:
    label = _as_dict(payload.get("label")) or {}
    if purpose_of(_as_str(label.get("name"))) != "voting":
        return _ignored(event, "label not tracked")
    sender = _as_dict(payload.get("sender")) or {}
    if _as_str(sender.get("type")) == "Bot" or runtime.is_bot(_as_str(sender.get("login"))):
        # Automated transitions post their own voting comment.
        return _ignored(event, "labeled by automation")
    if repo.governance is None:
        return _ignored(event, "feature disabled")
    issue = parse_issue(_require_dict(payload, "issue"), is_pull_request=False)
    service = GovernanceService(
        github, bot_logins=runtime.bot_logins, rules=repo.governance.voting
    )
    result = service.post_voting_comment(issue)
    return _handled(event, [f"#{issue.number}:voting_comment:{result}"])


def _tracks_readiness(action: str, payload: dict[str, object]) -> bool:
    if action not in {"labeled", "unlabeled"}:
        return True
    label = _as_dict(payload.get("label")) or {}
    return purpose_of(_as_str(label.get("name"))) == "implementation"


def _evaluate_readiness(github: GitHubGateway, pr: PullRequestSnapshot, repo: RepoConfig) -> str:
    result = evaluate_merge_readiness(
        github,
        pr.number,
        repo.pr,
        labels=pr.labels,
        head_sha=pr.head_sha,
        author_login=pr.author_login,
        mergeable=pr.mergeable,
    )
    return f"#{pr.number}:merge_ready:{result.kind}"


def _run_intake(
    github: GitHubGateway,
    pr: PullRequestSnapshot,
    trigger: IntakeTrigger,
    repo: RepoConfig,
    runtime: RuntimeConfig,
    *,
    edited_at: datetime | None = None,
) -> str:
    if repo.pr is None:
        return f"#{pr.number}:intake:disabled"
    linked = resolve_closing_issues(github, pr)
    decision = process_intake(
        github,
        pr,
        linked,
        trigger,
        repo.pr,
        bot_logins=runtime.bot_logins,
        edited_at=edited_at,
    )
    return f"#{pr.number}:intake:{decision}"


def _for_each_pr(
    event: str, numbers: tuple[int, ...], fn: Callable[[int], str]
) -> list[str]:
    actions: list[str] = []
    failed: list[int] = []
    for number in numbers:
        try:
            actions.append(fn(number))
        except Exception as exc:  # noqa: BLE001
            failed.append(number)
            log_event(
                LOGGER,
                "event_item_failed",
                level=logging.ERROR,
                event_name=event,
                pr_number=number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
    if failed:
        raise EventProcessingError(
            f"{len(failed)} pull request(s) failed while handling {event}",
            failed=tuple(failed),
        )
    return actions


def _handled(event: str, actions: list[str]) -> EventResult:
    log_event(LOGGER, "event_handled", event_name=event, actions=actions)
    return EventResult(event=event, handled=True, actions=tuple(actions))


def _ignored(event: str, reason: str) -> EventResult:
    log_event(LOGGER, "event_ignored", event_name=event, reason=reason)
    return EventResult(event=event, handled=False)


def _require_dict(payload: dict[str, object], key: str) -> dict[str, object]:
    value = _as_dict(payload.get(key))
    if value is None:
        raise ValueError(f"Webhook payload is missing object field {key!r}")
    return value


def _as_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    return {str(key): item for key, item in value.items()}


def _as_list(value: object) -> list[object]:
    return list(value) if isinstance(value, list) else []


def _as_str(value: object) -> str:
    return value if isinstance(value, str) else ""


def _as_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value
