from __future__ import annotations

import re
from typing import Final


CLOSING_KEYWORD_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\b\s*:?\s+([^\s]+)",
    re.IGNORECASE,
)
_FENCE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*(`{3,}|~{3,})(.*)$")
_INLINE_CODE_PATTERN: Final[re.Pattern[str]] = re.compile(r"(`+).*?\1")
_TRAILING_PUNCTUATION: Final[re.Pattern[str]] = re.compile(r"[),.;:!?]+$")
_SHORT_REFERENCE: Final[re.Pattern[str]] = re.compile(r"^#(\d+)$")
_QUALIFIED_REFERENCE: Final[re.Pattern[str]] = re.compile(
    r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)#(\d+)$"
)
_URL_REFERENCE: Final[re.Pattern[str]] = re.compile(
    r"^https?://github\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)/issues/(\d+)/?$",
    re.IGNORECASE,
)


def strip_code_and_quotes(body: str) -> str:
    """Drop fenced blocks, inline code spans and quoted lines from markdown."""
    kept: list[str] = []
    fence: str | None = None
    for line in body.splitlines():
        fence_match = _FENCE_PATTERN.match(line)
        if fence is not None:
            # Closes only on a bare run of the same character, at least as long as the opener.
            if (
                fence_match is not None
                and not fence_match.group(2).strip()
                and fence_match.group(1)[0] == fence[0]
                and len(fence_match.group(1)) >= len(fence)
            ):
                fence = None
            continue
        if fence_match is not None:
            fence = fence_match.group(1)
            continue
        if line.lstrip().startswith(">"):
            continue
        # An unclosed backtick run swallows the rest of the line.
        kept.append(_INLINE_CODE_PATTERN.sub(" ", line).split("`", 1)[0])
    return "\n".join(kept)


def parse_closing_issue_numbers(body: str | None, *, owner: str, repo: str) -> tuple[int, ...]:
    """Issue numbers in ``owner/repo`` that ``body`` closes, in order of first mention."""
    if not body:
        return ()
    found: list[int] = []
    for match in CLOSING_KEYWORD_PATTERN.finditer(strip_code_and_quotes(body)):
        number = _reference_number(match.group(1), owner=owner, repo=repo)
        if number is not None and number not in found:
            found.append(number)
    return tuple(found)


def _reference_number(token: str, *, owner: str, repo: str) -> int | None:
    target = _TRAILING_PUNCTUATION.sub("", token)
    short = _SHORT_REFERENCE.match(target)
    if short:
        return _positive(short.group(1))
    qualified = _QUALIFIED_REFERENCE.match(target) or _URL_REFERENCE.match(target)
    if qualified is None:
        return None
    if qualified.group(1).lower() != owner.lower() or qualified.group(2).lower() != repo.lower():
        return None
    return _positive(qualified.group(3))


def _positive(digits: str) -> int | None:
    number = int(digits)
    return number if number > 0 else None
