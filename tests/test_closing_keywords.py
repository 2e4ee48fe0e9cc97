from __future__ import annotations

from hypothesis import given, strategies as st
import pytest

from quorumxo.closing_keywords import parse_closing_issue_numbers, strip_code_and_quotes


def _parse(body: str | None) -> tuple[int, ...]:
    return parse_closing_issue_numbers(body, owner="acme", repo="widgets")


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        (None, ()),
        ("", ()),
        ("Fixes #12", (12,)),
        ("closes #1, resolves #2 and FIXED #3.", (1, 2, 3)),
        ("Close: #4", (4,)),
        ("fix #5\nfixes #5", (5,)),
        ("Resolves acme/widgets#6", (6,)),
        ("Resolves ACME/Widgets#7", (7,)),
        ("Resolves other/widgets#8", ()),
        ("Fixes https://github.com/acme/widgets/issues/9", (9,)),
        ("Fixes https://github.com/acme/widgets/issues/10/", (10,)),
        ("Fixes https://github.com/other/widgets/issues/11", ()),
        ("Fixes https://github.com/acme/widgets/pull/12", ()),
        ("Fixes #0", ()),
        ("Fixes #abc", ()),
        ("prefixes #13", ()),
        ("Related to #14", ()),
        ("Fixes (#15)", ()),
        ("Fixes #16)", (16,)),
    ],
)
def test_parse_closing_issue_numbers(body: str | None, expected: tuple[int, ...]) -> None:
    assert _parse(body) == expected


def test_code_and_quotes_are_ignored() -> None:
    body = "\n".join(
        (
            "Real change, fixes #1",
            "```",
            "fixes #2",
            "```",
            "~~~~python",
            "fixes #3",
            "~~~",
            "still code: fixes #4",
            "~~~~",
            "> fixes #5",
            "   > closes #6",
            "Use `fixes #7` in the body, then closes #8",
            "``code with ` inside fixes #9`` and resolves #10",
            "unclosed `fixes #11",
        )
    )
    assert _parse(body) == (1, 8, 10)


def test_fence_needs_matching_character_and_bare_closer() -> None:
    body = "\n".join(("```", "~~~", "fixes #1", "``` trailing", "fixes #2", "````", "fixes #3"))
    assert _parse(body) == (3,)


def test_unterminated_fence_swallows_the_rest() -> None:
    assert strip_code_and_quotes("before\n```\nfixes #1\n") == "before"


@given(st.text())
def test_parser_never_fails_and_returns_positive_unique_numbers(body: str) -> None:
    numbers = _parse(body)
    assert all(number > 0 for number in numbers)
    assert len(set(numbers)) == len(numbers)


@given(st.lists(st.integers(min_value=1, max_value=99999), min_size=1, max_size=5))
def test_every_listed_reference_is_found_in_order(numbers: list[int]) -> None:
    body = " ".join(f"Fixes #{number}." for number in numbers)
    assert _parse(body) == tuple(dict.fromkeys(numbers))


@given(st.integers(min_value=1, max_value=99999))
def test_references_inside_fences_are_never_found(number: int) -> None:
    assert _parse(f"```\nFixes #{number}\n```") == ()
