"""Tests for the spoken-number decoder."""
from __future__ import annotations

import pytest

from intake.services.digit_decoder import (
    MIN_CLAIM_LENGTH,
    decode_claim_number,
    decode_fragments,
    decode_spoken_number,
)


@pytest.mark.parametrize("canonical", ["283997515", "00000023", "12345", "4410028"])
def test_canonical_digit_strings_decode_to_themselves(canonical):
    assert decode_spoken_number(canonical) == canonical
    assert decode_spoken_number(decode_spoken_number(canonical)) == canonical


def test_zero_run_phrase_equals_explicit_zeros():
    assert decode_spoken_number("six zeros") == "000000"
    assert decode_spoken_number("0 0 0 0 0 0") == "000000"
    assert decode_spoken_number("1 2 3 six zeros 4 5") == decode_spoken_number("1 2 3 0 0 0 0 0 0 4 5")


def test_zero_run_followed_by_spelled_zeros_is_not_doubled():
    text = "Let me confirm: six zeros—0 0 0 0 0 0, then 2, 3, is that correct?"

    assert decode_spoken_number(text) == "00000023"


def test_zero_run_with_digit_count_expands_in_place():
    assert decode_spoken_number("4 5, 3 zeros, then 7") == "450007"


def test_mixed_word_run_and_dash_word():
    assert decode_spoken_number("two eight three, dash nine seven five one") == "2839751"


def test_dash_joined_digits():
    assert decode_spoken_number("It's 2-8-3-9-9-7-5-1, right?") == "28399751"
    assert decode_spoken_number("283-997") == "283997"


def test_letter_by_example_and_interleaved_letters():
    text = "L as in Larry, A 3 5 9 0 5 2 5 8 2 1 3 0 0 0 0 5"

    assert decode_spoken_number(text) == "LA3590525821300005"


def test_standalone_capitals_inside_a_digit_run():
    assert decode_spoken_number("the claim number is W C 4 4 7 1 2") == "WC44712"


def test_fragments_are_merged_in_spoken_order():
    fragments = decode_fragments("B as in boy, 7 7 1, dash 4")

    assert [f.value for f in fragments] == ["B", "771", "4"]
    assert [f.matcher for f in fragments] == ["letter_example", "digit_run", "dash_suffix"]


def test_ends_with_captures_single_trailing_digit():
    assert decode_spoken_number("4 4 7 2 and it ends with a five") == "44725"


def test_dash_suffix_only_when_not_starting_a_run():
    assert decode_spoken_number("1 2 3 4 dash 5") == "12345"
    # "dash nine seven" is a word run, not a one-digit suffix
    assert decode_spoken_number("dash nine seven") == "97"


def test_lone_tokens_are_ignored():
    assert decode_spoken_number("Yes, one moment please") == ""
    assert decode_spoken_number("I have 1 question") == ""
    assert decode_spoken_number("") == ""


def test_decode_claim_number_applies_minimum_length():
    assert decode_claim_number("is that 4 5 correct") is None
    assert decode_claim_number("1 2 3 4") is None
    assert decode_claim_number("1 2 3 4 5") == "12345"
    assert len(decode_claim_number("oh oh one two three")) >= MIN_CLAIM_LENGTH
