from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Final, cast
from urllib.parse import quote, urlencode

from quorumxo.models import (
    CheckRun,
    CheckRunListing,
    CombinedStatus,
    CrossReference,
    CrossReferencePage,
    Issue,
    IssueComment,
    LabelEvent,
    LabelRemoval,
    LinkedIssue,
    PullRequestSnapshot,
    Reaction,
    Review,
)
from quorumxo.observability import log_event
from quorumxo.shell import CommandTimeoutError, run


LOGGER = logging.getLogger("quorumxo.github_gateway")
PAGE_SIZE: Final[int] = 100

CLOSING_ISSUES_QUERY: Final[str] = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      closingIssuesReferences(first: 10) {
        nodes {
          number
          title
          state
          labels(first: 20) { nodes { name } }
        }
      }
    }
  }
}
"""

CROSS_REFERENCES_QUERY: Final[str] = """
query($owner: String!, $repo: String!, $number: Int!, $after: String) {
  repository(owner: $owner, name: $repo) {
    issue(number: $number) {
      timelineItems(itemTypes: [CROSS_REFERENCED_EVENT], first: 100, after: $after) {
        pageInfo { hasNextPage endCursor }
        nodes {
          ... on CrossReferencedEvent {
            source {
              ... on PullRequest {
                number
                title
                state
                author { login }
                repository { name owner { login } }
              }
            }
          }
        }
      }
    }
  }
}
"""

PR_BODY_LAST_EDITED_QUERY: Final[str] = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) { lastEditedAt }
  }
}
"""


class GitHubRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubNotFoundError(GitHubRequestError):
    """The target no longer exists (404/410)."""


class GitHubConflictError(GitHubRequestError):
    """The request conflicts with current state (409/422)."""


class GitHubTransientError(GitHubRequestError):
    """Recoverable GitHub failure; the next sweep retries."""


class GitHubGraphQLError(GitHubRequestError):
    def __init__(self, messages: tuple[str, ...]) -> None:
        super().__init__("; ".join(messages) or "GraphQL request failed", status_code=200)
        self.messages = messages


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    timeout_seconds: float | None = 60
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_open_issues_with_any_labels(self, labels: tuple[str, ...]) -> list[Issue]:
        return self._dedupe_by_number(
            [issue for label in labels for issue in self.list_open_issues_with_label(label)],
            fetched_label_count=len(labels),
        )

    def list_open_pull_requests_with_any_labels(self, labels: tuple[str, ...]) -> list[Issue]:
        return self._dedupe_by_number(
            [pr for label in labels for pr in self.list_open_pull_requests_with_label(label)],
            fetched_label_count=len(labels),
        )

    def list_open_issues_with_label(self, label: str) -> list[Issue]:
        items = self._list_open_items_with_label(label)
        return [item for item in items if not item.is_pull_request]

    def list_open_pull_requests_with_label(self, label: str) -> list[Issue]:
        items = self._list_open_items_with_label(label)
        return [item for item in items if item.is_pull_request]

    def list_open_pull_requests(self) -> list[PullRequestSnapshot]:
        path = f"/repos/{self.owner}/{self.name}/pulls"
        items = [
            parse_pull_request(item_obj)
            for item_obj in self._get_all_pages(path, {"state": "open"})
        ]
        log_event(LOGGER, "github_read", endpoint="open_pulls", count=len(items))
        return items

    def get_issue(self, issue_number: int) -> Issue:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}"
        payload = _require_object(self._api_json("GET", path), what="issue")
        return parse_issue(payload, is_pull_request="pull_request" in payload)

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload = _require_object(self._api_json("GET", path), what="pull request")
        return parse_pull_request(payload)

    def list_issue_comments(self, issue_number: int) -> tuple[IssueComment, ...]:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        comments = tuple(_parse_comment(item) for item in self._get_all_pages(path, {}))
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            issue_number=issue_number,
            count=len(comments),
        )
        return comments

    def list_pull_request_review_comments(self, pr_number: int) -> tuple[IssueComment, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments"
        return tuple(_parse_comment(item) for item in self._get_all_pages(path, {}))

    def list_comment_reactions(self, comment_id: int) -> tuple[Reaction, ...]:
        path = f"/repos/{self.owner}/{self.name}/issues/comments/{comment_id}/reactions"
        reactions: list[Reaction] = []
        for item in self._get_all_pages(path, {}):
            user_obj = _as_object_dict(item.get("user"))
            login = _as_login(user_obj.get("login")) if user_obj else ""
            reactions.append(
                Reaction(content=_as_string(item.get("content")), user_login=login or None)
            )
        return tuple(reactions)

    def list_reviews(self, pr_number: int) -> tuple[Review, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews"
        reviews: list[Review] = []
        for item in self._get_all_pages(path, {}):
            user_obj = _as_object_dict(item.get("user"))
            reviews.append(
                Review(
                    reviewer_login=_as_login(user_obj.get("login") if user_obj else None),
                    state=_as_string(item.get("state")).upper(),
                    submitted_at=_as_string(item.get("submitted_at")),
                )
            )
        return tuple(reviews)

    def list_pull_request_commit_dates(self, pr_number: int) -> tuple[str, ...]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/commits"
        dates: list[str] = []
        for item in self._get_all_pages(path, {}):
            commit_obj = _as_object_dict(item.get("commit"))
            committer = _as_object_dict(commit_obj.get("committer")) if commit_obj else None
            date = _as_string(committer.get("date") if committer else None)
            if date:
                dates.append(date)
        return tuple(dates)

    def list_check_runs(self, ref: str) -> CheckRunListing:
        query = urlencode({"per_page": str(PAGE_SIZE)})
        path = f"/repos/{self.owner}/{self.name}/commits/{ref}/check-runs?{query}"
        payload = _require_object(self._api_json("GET", path), what="check runs")
        runs: list[CheckRun] = []
        raw_runs = payload.get("check_runs")
        if isinstance(raw_runs, list):
            for item in raw_runs:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                runs.append(
                    CheckRun(
                        check_id=_as_int(item_obj.get("id"), field="id"),
                        name=_as_string(item_obj.get("name")),
                        status=_as_string(item_obj.get("status")).lower(),
                        conclusion=_normalize_optional_lower_str(item_obj.get("conclusion")),
                    )
                )
        total_count = _as_optional_int(payload.get("total_count"))
        return CheckRunListing(
            total_count=total_count if total_count is not None else len(runs),
            runs=tuple(runs),
        )

    def get_combined_status(self, ref: str) -> CombinedStatus:
        path = f"/repos/{self.owner}/{self.name}/commits/{ref}/status"
        payload = _require_object(self._api_json("GET", path), what="combined status")
        return CombinedStatus(
            state=_as_string(payload.get("state")).lower(),
            total_count=_as_optional_int(payload.get("total_count")) or 0,
        )

    def list_label_events(self, issue_number: int) -> tuple[LabelEvent, ...]:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/events"
        events: list[LabelEvent] = []
        for item in self._get_all_pages(path, {}):
            action = _as_string(item.get("event"))
            label_obj = _as_object_dict(item.get("label"))
            if action not in {"labeled", "unlabeled"} or label_obj is None:
                continue
            events.append(
                LabelEvent(
                    action="labeled" if action == "labeled" else "unlabeled",
                    label=_as_string(label_obj.get("name")),
                    created_at=_as_string(item.get("created_at")),
                )
            )
        return tuple(events)

    def get_closing_issue_references(self, pr_number: int) -> tuple[LinkedIssue, ...]:
        data = self._graphql(
            CLOSING_ISSUES_QUERY,
            {"owner": self.owner, "repo": self.name, "number": pr_number},
        )
        repository = _as_object_dict(data.get("repository"))
        pull_request = _as_object_dict(repository.get("pullRequest")) if repository else None
        if pull_request is None:
            raise GitHubNotFoundError(
                f"Could not resolve to a PullRequest with the number of {pr_number}."
            )
        references = _as_object_dict(pull_request.get("closingIssuesReferences"))
        issues: list[LinkedIssue] = []
        for node in _nodes(references):
            labels_obj = _as_object_dict(node.get("labels"))
            issues.append(
                LinkedIssue(
                    number=_as_int(node.get("number"), field="number"),
                    title=_as_string(node.get("title")),
                    state=_as_string(node.get("state")).upper(),
                    labels=tuple(
                        _as_string(label.get("name"))
                        for label in _nodes(labels_obj)
                        if label.get("name")
                    ),
                )
            )
        return tuple(issues)

    def get_pull_request_body_edited_at(self, pr_number: int) -> str | None:
        """When the description was last edited; None if it never was."""
        data = self._graphql(
            PR_BODY_LAST_EDITED_QUERY,
            {"owner": self.owner, "repo": self.name, "number": pr_number},
        )
        repository = _as_object_dict(data.get("repository"))
        pull_request = _as_object_dict(repository.get("pullRequest")) if repository else None
        if pull_request is None:
            raise GitHubNotFoundError(
                f"Could not resolve to a PullRequest with the number of {pr_number}."
            )
        return _as_optional_str(pull_request.get("lastEditedAt"))

    def list_cross_reference_page(
        self, issue_number: int, after: str | None = None
    ) -> CrossReferencePage:
        data = self._graphql(
            CROSS_REFERENCES_QUERY,
            {"owner": self.owner, "repo": self.name, "number": issue_number, "after": after},
        )
        repository = _as_object_dict(data.get("repository"))
        issue = _as_object_dict(repository.get("issue")) if repository else None
        if issue is None:
            raise GitHubNotFoundError(
                f"Could not resolve to an Issue with the number of {issue_number}."
            )
        timeline = _as_object_dict(issue.get("timelineItems")) or {}
        page_info = _as_object_dict(timeline.get("pageInfo")) or {}
        items: list[CrossReference] = []
        for node in _nodes(timeline):
            source = _as_object_dict(node.get("source")) or {}
            author = _as_object_dict(source.get("author"))
            source_repo = _as_object_dict(source.get("repository")) or {}
            source_owner = _as_object_dict(source_repo.get("owner")) or {}
            number = source.get("number")
            author_login = _as_login(author.get("login")) if author else ""
            items.append(
                CrossReference(
                    pr_number=_as_optional_int(number) if isinstance(number, int) else None,
                    title=_as_string(source.get("title")),
                    state=_as_string(source.get("state")).upper(),
                    author_login=author_login or None,
                    repo_owner=_as_string(source_owner.get("login")),
                    repo_name=_as_string(source_repo.get("name")),
                )
            )
        return CrossReferencePage(
            items=tuple(items),
            has_next_page=page_info.get("hasNextPage") is True,
            end_cursor=_as_optional_str(page_info.get("endCursor")),
        )

    def post_issue_comment(self, issue_number: int, body: str) -> int:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            payload = self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                level=logging.WARNING,
                repo_full_name=self.full_name,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        comment_id = _as_int(_require_object(payload, what="comment").get("id"), field="id")
        log_event(
            LOGGER,
            "github_issue_comment_posted",
            issue_number=issue_number,
            comment_id=comment_id,
        )
        return comment_id

    def add_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/labels"
        self._api_json("POST", path, payload={"labels": list(labels)})
        log_event(LOGGER, "github_labels_added", issue_number=issue_number, labels=labels)

    def remove_label(self, issue_number: int, label: str) -> LabelRemoval:
        encoded = quote(label, safe="")
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/labels/{encoded}"
        try:
            self._api_json("DELETE", path)
        except GitHubNotFoundError:
            return "absent"
        log_event(LOGGER, "github_label_removed", issue_number=issue_number, label=label)
        return "removed"

    def close_issue(self, issue_number: int, *, reason: str = "not_planned") -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}"
        self._api_json("PATCH", path, payload={"state": "closed", "state_reason": reason})
        log_event(LOGGER, "github_issue_closed", issue_number=issue_number, reason=reason)

    def lock_issue(self, issue_number: int, *, reason: str = "resolved") -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/lock"
        self._api_json("PUT", path, payload={"lock_reason": reason})
        log_event(LOGGER, "github_issue_locked", issue_number=issue_number, reason=reason)

    def unlock_issue(self, issue_number: int) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/lock"
        try:
            self._api_json("DELETE", path)
        except GitHubNotFoundError:
            # Not locked.
            return
        log_event(LOGGER, "github_issue_unlocked", issue_number=issue_number)

    def _list_open_items_with_label(self, label: str) -> list[Issue]:
        path = f"/repos/{self.owner}/{self.name}/issues"
        items = [
            parse_issue(item_obj, is_pull_request="pull_request" in item_obj)
            for item_obj in self._get_all_pages(path, {"state": "open", "labels": label})
        ]
        log_event(LOGGER, "github_read", endpoint="issues_by_label", label=label, count=len(items))
        return items

    def _dedupe_by_number(self, items: list[Issue], *, fetched_label_count: int) -> list[Issue]:
        deduped: dict[int, Issue] = {}
        for item in items:
            existing = deduped.get(item.number)
            if existing is None:
                deduped[item.number] = item
                continue
            merged_labels = list(existing.labels)
            for candidate in item.labels:
                if candidate not in merged_labels:
                    merged_labels.append(candidate)
            deduped[item.number] = Issue(
                number=existing.number,
                title=existing.title,
                body=existing.body,
                html_url=existing.html_url,
                labels=tuple(merged_labels),
                author_login=existing.author_login or item.author_login,
                state=existing.state,
                created_at=existing.created_at,
                is_pull_request=existing.is_pull_request,
            )
        result = [deduped[number] for number in sorted(deduped)]
        log_event(
            LOGGER,
            "items_deduped",
            fetched_label_count=fetched_label_count,
            deduped_count=len(result),
        )
        return result

    def _get_all_pages(self, path: str, params: dict[str, str]) -> list[dict[str, object]]:
        out: list[dict[str, object]] = []
        page = 1
        while True:
            query = urlencode({**params, "per_page": str(PAGE_SIZE), "page": str(page)})
            payload = self._api_json("GET", f"{path}?{query}")
            if not isinstance(payload, list):
                raise GitHubRequestError(f"Unexpected GitHub response: expected list for {path}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    out.append(item_obj)
            if len(payload) < PAGE_SIZE:
                return out
            page += 1

    def _graphql(self, query: str, variables: dict[str, object]) -> dict[str, object]:
        payload = _require_object(
            self._api_json("POST", "graphql", payload={"query": query, "variables": variables}),
            what="graphql",
        )
        raw_errors = payload.get("errors")
        if isinstance(raw_errors, list) and raw_errors:
            messages: list[str] = []
            rate_limited = False
            for entry in raw_errors:
                entry_obj = _as_object_dict(entry) or {}
                messages.append(_as_string(entry_obj.get("message")))
                rate_limited = rate_limited or entry_obj.get("type") == "RATE_LIMITED"
            if rate_limited:
                raise GitHubTransientError("; ".join(messages), status_code=200)
            raise GitHubGraphQLError(tuple(messages))
        data = _as_object_dict(payload.get("data"))
        if data is None:
            raise GitHubTransientError("GraphQL response is missing data")
        return data

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper]
        if method_upper == "GET":
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
        cmd.extend(["--include", path])
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)

        try:
            raw = run(
                cmd,
                input_text=stdin_payload,
                check=False,
                timeout_seconds=self.timeout_seconds,
            )
        except CommandTimeoutError as exc:
            log_event(
                LOGGER,
                "github_request_timed_out",
                level=logging.WARNING,
                method=method_upper,
                path=path,
            )
            raise GitHubTransientError(f"GitHub {method_upper} timed out for path {path}") from exc

        try:
            status_code, headers, body = _parse_http_response(raw)
        except RuntimeError as exc:
            log_event(
                LOGGER,
                "github_request_malformed",
                level=logging.WARNING,
                method=method_upper,
                path=path,
                error=str(exc),
                raw_preview=_preview_for_log(raw),
            )
            raise GitHubTransientError(
                f"GitHub {method_upper} failed for path {path}: {exc}"
            ) from exc

        if status_code == 304 and method_upper == "GET":
            cached_payload = self._cached_get_payload_by_path.get(path)
            if cached_payload is None:
                raise GitHubTransientError(f"GitHub returned 304 for uncached path: {path}")
            return cached_payload

        if status_code < 200 or status_code >= 300:
            error = _classify_failure(
                status_code, headers, body, method=method_upper, path=path
            )
            log_event(
                LOGGER,
                "github_request_failed",
                level=logging.WARNING,
                method=method_upper,
                path=path,
                status_code=status_code,
                error_type=type(error).__name__,
            )
            raise error

        if not body.strip():
            return None
        try:
            payload_obj = json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubTransientError(
                f"GitHub {method_upper} returned invalid JSON for path {path}"
            ) from exc

        if method_upper == "GET":
            etag = headers.get("etag")
            if etag:
                self._etags_by_path[path] = etag
                self._cached_get_payload_by_path[path] = payload_obj
        return payload_obj


def _classify_failure(
    status_code: int,
    headers: dict[str, str],
    body: str,
    *,
    method: str,
    path: str,
) -> GitHubRequestError:
    detail = body.strip() or "<empty>"
    message = f"GitHub {method} {path} failed with status {status_code}: {detail}"
    if status_code in {404, 410}:
        return GitHubNotFoundError(message, status_code=status_code)
    if status_code in {409, 422}:
        return GitHubConflictError(message, status_code=status_code)
    if status_code == 429 or status_code >= 500:
        return GitHubTransientError(message, status_code=status_code)
    if status_code == 403 and _is_rate_limited(headers, body):
        return GitHubTransientError(message, status_code=status_code)
    return GitHubRequestError(message, status_code=status_code)


def _is_rate_limited(headers: dict[str, str], body: str) -> bool:
    if headers.get("x-ratelimit-remaining") == "0" or "retry-after" in headers:
        return True
    return "rate limit" in body.lower()


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def parse_issue(item_obj: dict[str, object], *, is_pull_request: bool) -> Issue:
    user_obj = _as_object_dict(item_obj.get("user"))
    return Issue(
        number=_as_int(item_obj.get("number"), field="number"),
        title=_as_string(item_obj.get("title")),
        body=_as_string(item_obj.get("body")),
        html_url=_as_string(item_obj.get("html_url")),
        labels=_label_names(item_obj.get("labels")),
        author_login=_as_login(user_obj.get("login") if user_obj else None),
        state=_as_string(item_obj.get("state")).lower() or "open",
        created_at=_as_string(item_obj.get("created_at")),
        is_pull_request=is_pull_request,
    )


def parse_pull_request(payload: dict[str, object]) -> PullRequestSnapshot:
    number = _as_int(payload.get("number"), field="number")
    head = _as_object_dict(payload.get("head"))
    user_obj = _as_object_dict(payload.get("user"))
    head_sha = _as_string(head.get("sha") if head else None)
    if not head_sha:
        raise GitHubRequestError(f"Pull request #{number} payload is missing head sha")
    mergeable = payload.get("mergeable")
    return PullRequestSnapshot(
        number=number,
        title=_as_string(payload.get("title")),
        body=_as_string(payload.get("body")),
        head_sha=head_sha,
        state=_as_string(payload.get("state")).lower(),
        merged=bool(payload.get("merged")) or bool(payload.get("merged_at")),
        mergeable=mergeable if isinstance(mergeable, bool) else None,
        author_login=_as_login(user_obj.get("login") if user_obj else None),
        labels=_label_names(payload.get("labels")),
        created_at=_as_string(payload.get("created_at")),
    )


def _parse_comment(item_obj: dict[str, object]) -> IssueComment:
    user_obj = _as_object_dict(item_obj.get("user"))
    return IssueComment(
        comment_id=_as_int(item_obj.get("id"), field="id"),
        body=_as_string(item_obj.get("body")),
        author_login=_as_login(user_obj.get("login") if user_obj else None),
        html_url=_as_string(item_obj.get("html_url")),
        created_at=_as_string(item_obj.get("created_at")),
        updated_at=_as_string(item_obj.get("updated_at")),
    )


def _label_names(value: object) -> tuple[str, ...]:
    names: list[str] = []
    if isinstance(value, list):
        for entry in value:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            name = entry_obj.get("name")
            if isinstance(name, str):
                names.append(name)
    return tuple(names)


def _nodes(container: dict[str, object] | None) -> list[dict[str, object]]:
    if container is None:
        return []
    raw_nodes = container.get("nodes")
    if not isinstance(raw_nodes, list):
        return []
    return [node for node in (_as_object_dict(item) for item in raw_nodes) if node is not None]


def _require_object(payload: object, *, what: str) -> dict[str, object]:
    payload_obj = _as_object_dict(payload)
    if payload_obj is None:
        raise GitHubRequestError(f"Unexpected GitHub response: expected object for {what}")
    return payload_obj


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _normalize_optional_lower_str(value: object) -> str | None:
    raw = _as_optional_str(value)
    if raw is None:
        return None
    normalized = raw.strip().lower()
    return normalized or None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_login(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubRequestError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubRequestError(
                f"Unexpected GitHub response value for {field}: {value}"
            ) from exc
    raise GitHubRequestError(f"Unexpected GitHub response type for {field}")


def _as_optional_int(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise GitHubRequestError("Unexpected GitHub response type for optional int field")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubRequestError(
                f"Unexpected GitHub response value for optional int field: {value}"
            ) from exc
    raise GitHubRequestError("Unexpected GitHub response type for optional int field")
