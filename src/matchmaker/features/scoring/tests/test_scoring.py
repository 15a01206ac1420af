from __future__ import annotations

import itertools

import pytest

from matchmaker.core.errors import InvalidInputError
from matchmaker.features.scoring.service import (
    InterestRules,
    normalize_interests,
    score,
    session_interests,
)


def test_jaccard_scenario_gaming_music_vs_gaming_movies():
    a = frozenset({"gaming", "music"})
    b = frozenset({"gaming", "movies"})
    assert score(a, b) == pytest.approx(1 / 3)


def test_identical_sets_score_one_and_disjoint_score_zero():
    a = frozenset({"art", "books"})
    assert score(a, a) == 1.0
    assert score(a, frozenset({"travel"})) == 0.0


def test_empty_sets_score_zero():
    assert score(frozenset(), frozenset()) == 0.0
    assert score(frozenset({"x"}), frozenset()) == 0.0
    assert score(frozenset(), frozenset({"x"})) == 0.0


def test_score_is_symmetric_and_bounded():
    samples = [
        frozenset(),
        frozenset({"a"}),
        frozenset({"a", "b"}),
        frozenset({"b", "c", "d"}),
        frozenset({"a", "b", "c", "d", "e"}),
    ]
    for a, b in itertools.product(samples, repeat=2):
        s = score(a, b)
        assert s == score(b, a)
        assert 0.0 <= s <= 1.0


def test_equal_ratios_produce_equal_scores():
    # 1/3 vs 2/6 must tie exactly so arrival order decides
    one_third = score(frozenset({"a", "b"}), frozenset({"a", "c"}))
    two_sixths = score(frozenset({"a", "b", "c", "d"}), frozenset({"a", "b", "e", "f"}))
    assert one_third == two_sixths


def test_normalize_lowercases_trims_dedupes_and_drops_empty():
    got = normalize_interests(["  Gaming", "gaming ", "MUSIC", "", "   "])
    assert got == frozenset({"gaming", "music"})


def test_normalize_strips_markup_and_caps_length():
    rules = InterestRules(max_interests=5, max_interest_length=4)
    got = normalize_interests(["<b>jazz</b>", "photography"], rules)
    assert got == frozenset({"bjaz", "phot"})


def test_normalize_rejects_bare_string_and_non_strings():
    with pytest.raises(InvalidInputError):
        normalize_interests("gaming")
    with pytest.raises(InvalidInputError):
        normalize_interests(["gaming", 3])


def test_normalize_rejects_too_many_interests():
    with pytest.raises(InvalidInputError):
        normalize_interests(["a", "b", "c"], InterestRules(max_interests=2))


def test_session_interests_modes():
    a = frozenset({"gaming", "music"})
    b = frozenset({"gaming", "movies"})
    assert session_interests(a, b) == ("gaming",)
    assert session_interests(a, b, mode="union") == ("gaming", "movies", "music")
    with pytest.raises(ValueError):
        session_interests(a, b, mode="xor")
