from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import re
from typing import Final, Literal, cast

from quorumxo.models import IssueComment


CommentType = Literal["voting", "welcome", "status", "error", "notification"]
NotificationKind = Literal["voting-passed", "implementation-welcome", "issue-new-pr"]

COMMENT_TYPES: Final[frozenset[str]] = frozenset(
    {"voting", "welcome", "status", "error", "notification"}
)
VOTING_COMMENT_NOT_FOUND: Final[str] = "VOTING_COMMENT_NOT_FOUND"
METADATA_PATTERN = re.compile(r"<!--\s*quorumxo-metadata:\s*(\{.*?\})\s*-->", re.DOTALL)
LEGACY_VOTING_SIGNATURE: Final[str] = "React to THIS comment to vote"
LEGACY_NOTIFICATION_SIGNATURES: Final[dict[str, tuple[str, ...]]] = {
    "voting-passed": (
        "passed voting and is ready for implementation",
        "is ready for implementation!\n\nPush a new commit or add a comment to activate it "
        "for implementation tracking.",
    ),
}
LEGACY_ISSUE_REFERENCE_PATTERN = re.compile(r"\bIssue #(\d+)\b")


@dataclass(frozen=True)
class CommentMetadata:
    comment_type: CommentType
    reference_number: int
    created_at: str
    cycle: int | None = None
    error_code: str | None = None
    kind: str | None = None


def metadata_tag(metadata: CommentMetadata) -> str:
    payload: dict[str, object] = {
        "version": 1,
        "type": metadata.comment_type,
        "reference": metadata.reference_number,
        "created_at": metadata.created_at,
    }
    if metadata.cycle is not None:
        payload["cycle"] = metadata.cycle
    if metadata.error_code is not None:
        payload["error_code"] = metadata.error_code
    if metadata.kind is not None:
        payload["kind"] = metadata.kind
    return f"<!-- quorumxo-metadata: {json.dumps(payload, sort_keys=True)} -->"


def parse_metadata(body: str | None) -> CommentMetadata | None:
    if not body:
        return None
    match = METADATA_PATTERN.search(body)
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or parsed.get("version") != 1:
        return None
    comment_type = parsed.get("type")
    reference = parsed.get("reference")
    if comment_type not in COMMENT_TYPES:
        return None
    if not isinstance(reference, int) or isinstance(reference, bool):
        return None
    cycle = parsed.get("cycle")
    error_code = parsed.get("error_code")
    kind = parsed.get("kind")
    if comment_type == "notification" and not isinstance(kind, str):
        return None
    if comment_type == "error" and not isinstance(error_code, str):
        return None
    return CommentMetadata(
        comment_type=cast(CommentType, comment_type),
        reference_number=reference,
        created_at=str(parsed.get("created_at", "")),
        cycle=cycle if isinstance(cycle, int) and not isinstance(cycle, bool) else None,
        error_code=error_code if isinstance(error_code, str) else None,
        kind=kind if isinstance(kind, str) else None,
    )


def build_voting_comment(content: str, issue_number: int, cycle: int) -> str:
    metadata = CommentMetadata("voting", issue_number, _now_iso(), cycle=cycle)
    return f"{metadata_tag(metadata)}\n{content}"


def build_welcome_comment(content: str, issue_number: int) -> str:
    metadata = CommentMetadata("welcome", issue_number, _now_iso())
    return f"{metadata_tag(metadata)}\n{content}"


def build_human_help_comment(content: str, issue_number: int, error_code: str) -> str:
    metadata = CommentMetadata("error", issue_number, _now_iso(), error_code=error_code)
    return f"{metadata_tag(metadata)}\n{content}"


def build_notification_comment(
    content: str, reference_number: int, kind: NotificationKind
) -> str:
    metadata = CommentMetadata("notification", reference_number, _now_iso(), kind=kind)
    return f"{metadata_tag(metadata)}\n{content}"


def is_automated(comment: IssueComment, bot_logins: frozenset[str]) -> bool:
    return comment.author_login.strip().lower() in bot_logins


def has_notification(
    comments: Iterable[IssueComment],
    kind: NotificationKind,
    reference_number: int,
    *,
    bot_logins: frozenset[str],
) -> bool:
    """Whether one of our comments already delivered ``kind`` for ``reference_number``.

    Metadata-tagged comments are checked first; comments posted before tagging
    existed are matched by their plain-text signature plus an exact
    ``Issue #N`` reference.
    """
    legacy_signatures = LEGACY_NOTIFICATION_SIGNATURES.get(kind, ())
    for comment in comments:
        if not is_automated(comment, bot_logins):
            continue
        metadata = parse_metadata(comment.body)
        if metadata is not None:
            if (
                metadata.comment_type == "notification"
                and metadata.kind == kind
                and metadata.reference_number == reference_number
            ):
                return True
            continue
        if any(signature in comment.body for signature in legacy_signatures) and (
            _has_legacy_issue_reference(comment.body, reference_number)
        ):
            return True
    return False


def has_human_help(
    comments: Iterable[IssueComment], error_code: str, *, bot_logins: frozenset[str]
) -> bool:
    for comment in comments:
        if not is_automated(comment, bot_logins):
            continue
        metadata = parse_metadata(comment.body)
        if metadata is not None and metadata.error_code == error_code:
            return True
    return False


def has_welcome(comments: Iterable[IssueComment], *, bot_logins: frozenset[str]) -> bool:
    for comment in comments:
        if not is_automated(comment, bot_logins):
            continue
        metadata = parse_metadata(comment.body)
        if metadata is not None and metadata.comment_type == "welcome":
            return True
    return False


def voting_comments(
    comments: Iterable[IssueComment], *, bot_logins: frozenset[str]
) -> list[tuple[IssueComment, int]]:
    """Our voting comments with their cycle; untagged legacy ones rank as cycle 0."""
    found: list[tuple[IssueComment, int]] = []
    for comment in comments:
        if not is_automated(comment, bot_logins):
            continue
        metadata = parse_metadata(comment.body)
        if metadata is not None:
            if metadata.comment_type == "voting":
                found.append((comment, metadata.cycle or 1))
            continue
        if LEGACY_VOTING_SIGNATURE in comment.body:
            found.append((comment, 0))
    return found


def current_voting_comment(
    comments: Iterable[IssueComment], *, bot_logins: frozenset[str]
) -> IssueComment | None:
    found = voting_comments(comments, bot_logins=bot_logins)
    if not found:
        return None
    # Later comments win ties so a re-posted cycle supersedes the original.
    return max(found, key=lambda item: (item[1], item[0].comment_id))[0]


def next_voting_cycle(comments: Iterable[IssueComment], *, bot_logins: frozenset[str]) -> int:
    return len(voting_comments(comments, bot_logins=bot_logins)) + 1


def _has_legacy_issue_reference(body: str, issue_number: int) -> bool:
    return any(
        int(match.group(1)) == issue_number
        for match in LEGACY_ISSUE_REFERENCE_PATTERN.finditer(body)
    )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
