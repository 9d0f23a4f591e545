from __future__ import annotations

import pytest

from setu.lang.normalizer import FillerFilter, normalize, strip_fillers, tokens


@pytest.mark.parametrize(
    "raw",
    [
        "  Gas gas!! ",
        "a . .",
        "?bijli?",
        "",
        "हाँ हाँ।",
        "'quoted' words",
        "x  y   y",
        "Bijli BIJLI ka bill.",
        "...",
    ],
)
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize(raw)
    assert normalize(once) == once


def test_adjacent_duplicates_collapse() -> None:
    assert normalize("gas gas") == "gas"
    assert normalize("bijli bijli kaise") == "bijli kaise"


def test_non_adjacent_repeats_are_kept() -> None:
    assert normalize("gas bill gas") == "gas bill gas"


def test_case_and_edge_punctuation() -> None:
    assert normalize("  Bijli Bill?! ") == "bijli bill"
    assert normalize('"stop."') == "stop"


def test_danda_survives_normalization() -> None:
    assert normalize("बिजली बिल।") == "बिजली बिल।"


def test_bad_input_yields_empty_string() -> None:
    assert normalize(None) == ""
    assert normalize(42) == ""
    assert normalize("   ") == ""
    assert normalize("?!") == ""


def test_strip_fillers_keeps_possessive() -> None:
    assert strip_fillers("bijli ka bill", "hi") == "bijli ka bill"
    assert strip_fillers("mai bijli ka bil bharungi", "hi") == "bijli ka bil bharungi"


def test_strip_fillers_unknown_language_uses_every_list() -> None:
    assert strip_fillers("mujhe gas chahiye", "xx") == "gas"
    assert strip_fillers("mujhe gas chahiye") == "gas"


def test_keep_list_wins_over_filler_list() -> None:
    filters = FillerFilter.from_mapping({"fillers": {"common": ["ka", "please"]}, "keep": ["ka"]})
    assert filters.strip("please bijli ka bill", "en") == "bijli ka bill"
    assert filters.removed("please bijli ka bill", "en") == ["please"]


def test_filler_table_requires_mapping() -> None:
    with pytest.raises(ValueError):
        FillerFilter.from_mapping({"keep": ["ka"]})


def test_tokens_split_on_any_whitespace() -> None:
    assert tokens(" gas \t bill ") == ["gas", "bill"]
    assert tokens("") == []
