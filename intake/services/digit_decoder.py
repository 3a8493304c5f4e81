"""
Spoken-Number Decoder.

Turns an agent's spoken readback of a claim / policy / file number into a
canonical string of digits and uppercase letters. Readbacks mix notations
inside one utterance ("L as in Larry, A 3 5 9", "two eight three, dash
nine seven five one", "six zeros, then 2, 3"), so decoding is done by a
small ordered set of independent matchers. Each matcher yields fragments
tagged with their position in the text, and the fragments are merged in
document order rather than in matcher order.

Pure functions only: no I/O, no state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator

# Claim / policy numbers shorter than this are treated as decoder noise.
MIN_CLAIM_LENGTH = 5

NUMBER_WORDS: dict[str, str] = {
    "zero": "0", "oh": "0",
    "one": "1", "two": "2", "three": "3", "four": "4", "five": "5",
    "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

COUNT_WORDS: dict[str, int] = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

_WORD = r"(?:zero|oh|one|two|three|four|five|six|seven|eight|nine)"
_DIGIT_OR_WORD = rf"(?:\d|{_WORD})"

# "six zeros", "7 zeroes"
_ZERO_RUN = re.compile(
    r"\b(?P<count>one|two|three|four|five|six|seven|eight|nine|ten|\d{1,2})\s+zero(?:e)?s\b",
    re.IGNORECASE,
)
_ZERO_SEPARATORS = re.compile(r"[\s,;:\-–—]*")
_ZERO_TOKEN = re.compile(r"(?:0+|zero|oh)(?!\w)", re.IGNORECASE)
_MASK = "|"  # Not a separator for any matcher, so masked spans break runs

_LETTER_EXAMPLE = re.compile(r"\b([A-Za-z])\s+as\s+in\s+[A-Za-z]+\b", re.IGNORECASE)
_DASH_RUN = re.compile(r"(?<!\d)\d+(?:-\d+)+(?!\d)")
# Digit groups and standalone capital letters separated by spaces/commas
_DIGIT_RUN = re.compile(r"(?<![\w\-'])(?:\d+|[A-Z])(?:[\s,]+(?:\d+|[A-Z]))*(?![\w\-'])")
_WORD_RUN = re.compile(rf"\b{_WORD}(?:[\s,]+{_WORD})+\b", re.IGNORECASE)
_ENDS_WITH = re.compile(
    rf"\bends?\s+(?:with|in)\s+(?:an?\s+)?({_DIGIT_OR_WORD})\b(?![\s,]+{_DIGIT_OR_WORD}\b)",
    re.IGNORECASE,
)
_DASH_SUFFIX = re.compile(
    rf"\bdash\s+({_DIGIT_OR_WORD})\b(?![\s,]+{_DIGIT_OR_WORD}\b)",
    re.IGNORECASE,
)
_RUN_TOKEN = re.compile(r"\d+|[A-Z]")
# A lone digit straight after an "N zeros" phrase ("three zeros, then 7")
_AFTER_ZERO_RUN = re.compile(r"\|[\s,;:\-–—]*(?:(?:then|followed\s+by|and)[\s,]*)?$", re.IGNORECASE)


@dataclass(frozen=True)
class DecodedFragment:
    """A decoded piece of the readback and the span it came from."""
    start: int
    end: int
    value: str
    matcher: str


Matcher = Callable[[str], Iterator[DecodedFragment]]


def _digit_for(token: str) -> str:
    token = token.lower()
    return NUMBER_WORDS.get(token, token)


def _count_following_zeros(text: str, pos: int) -> int:
    """Count literal zero tokens spoken right after ``pos``."""
    count = 0
    while True:
        pos = _ZERO_SEPARATORS.match(text, pos).end()
        token = _ZERO_TOKEN.match(text, pos)
        if token is None:
            return count
        value = token.group(0)
        count += len(value) if value.isdigit() else 1
        pos = token.end()


def contract_zero_runs(text: str) -> tuple[str, list[DecodedFragment]]:
    """
    Resolve "N zeros" phrases before any other matcher sees the text.

    When the speaker also spells the zeros out right after the phrase,
    the phrase is dropped and the explicit zeros are left for the digit
    and word matchers. Otherwise the phrase expands to N zeros in place.
    Every phrase is masked in the returned text so its count word cannot
    be picked up again as a digit.
    """
    fragments: list[DecodedFragment] = []
    masked = text
    for match in _ZERO_RUN.finditer(text):
        raw_count = match.group("count").lower()
        count = int(raw_count) if raw_count.isdigit() else COUNT_WORDS[raw_count]
        start, end = match.span()
        masked = masked[:start] + _MASK * (end - start) + masked[end:]

        if count and _count_following_zeros(text, end) >= min(count, 2):
            continue
        if count:
            fragments.append(DecodedFragment(start, end, "0" * count, "zero_run"))
    return masked, fragments


def match_letter_examples(text: str) -> Iterator[DecodedFragment]:
    """"L as in Larry" -> "L"."""
    for match in _LETTER_EXAMPLE.finditer(text):
        yield DecodedFragment(match.start(), match.end(), match.group(1).upper(), "letter_example")


def match_dash_runs(text: str) -> Iterator[DecodedFragment]:
    """"2-8-3-9" -> "2839"."""
    for match in _DASH_RUN.finditer(text):
        yield DecodedFragment(match.start(), match.end(), match.group(0).replace("-", ""), "dash_run")


def match_digit_runs(text: str) -> Iterator[DecodedFragment]:
    """
    "8 7 9 6" -> "8796"; "A 3 5" -> "A35".

    A run needs at least two tokens or one multi-digit group, and at least
    one digit; a lone digit is left to the suffix matchers unless it
    directly follows a zero run.
    """
    for match in _DIGIT_RUN.finditer(text):
        tokens = _RUN_TOKEN.findall(match.group(0))
        digit_tokens = [t for t in tokens if t.isdigit()]
        if not digit_tokens:
            continue
        if len(tokens) < 2 and len(digit_tokens[0]) < 2 and not _AFTER_ZERO_RUN.search(text, 0, match.start()):
            continue
        yield DecodedFragment(match.start(), match.end(), "".join(tokens), "digit_run")


def match_word_runs(text: str) -> Iterator[DecodedFragment]:
    """"two, eight three" -> "283". Single number words are ignored."""
    for match in _WORD_RUN.finditer(text):
        words = re.split(r"[\s,]+", match.group(0).strip())
        yield DecodedFragment(match.start(), match.end(), "".join(_digit_for(w) for w in words), "word_run")


def match_ends_with(text: str) -> Iterator[DecodedFragment]:
    """"ends with a five" -> "5"."""
    for match in _ENDS_WITH.finditer(text):
        yield DecodedFragment(match.start(), match.end(), _digit_for(match.group(1)), "ends_with")


def match_dash_suffix(text: str) -> Iterator[DecodedFragment]:
    """Trailing "dash 5" / "dash one" -> one digit."""
    for match in _DASH_SUFFIX.finditer(text):
        yield DecodedFragment(match.start(), match.end(), _digit_for(match.group(1)), "dash_suffix")


MATCHERS: tuple[Matcher, ...] = (
    match_letter_examples,
    match_dash_runs,
    match_digit_runs,
    match_word_runs,
    match_ends_with,
    match_dash_suffix,
)


def merge_fragments(fragments: list[DecodedFragment]) -> list[DecodedFragment]:
    """
    Order fragments by position and drop overlaps.

    The earliest-starting fragment wins; on equal starts the longer one
    wins. A fragment overlapping an accepted one is discarded.
    """
    accepted: list[DecodedFragment] = []
    covered_until = -1
    for fragment in sorted(fragments, key=lambda f: (f.start, f.start - f.end)):
        if fragment.start < covered_until:
            continue
        accepted.append(fragment)
        covered_until = fragment.end
    return accepted


def decode_fragments(text: str) -> list[DecodedFragment]:
    """Run every matcher over ``text`` and return the merged fragments."""
    if not text:
        return []
    masked, fragments = contract_zero_runs(text)
    for matcher in MATCHERS:
        fragments.extend(matcher(masked))
    return merge_fragments(fragments)


def decode_spoken_number(text: str) -> str:
    """
    Decode a spoken readback into digits and uppercase letters.

    Returns an empty string when nothing decodable is present.

    Example:
        >>> decode_spoken_number("L as in Larry, two eight three, dash 5")
        'L2835'
    """
    return "".join(fragment.value for fragment in decode_fragments(text))


def decode_claim_number(text: str, min_length: int = MIN_CLAIM_LENGTH) -> str | None:
    """Decode a readback and keep it only if it is long enough to be a claim number."""
    decoded = decode_spoken_number(text)
    if len(decoded) < min_length:
        return None
    return decoded
