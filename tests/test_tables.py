from __future__ import annotations

from pathlib import Path

import pytest

from conftest import make_table

from setu.intent.tables import PhraseTable, TableError, load_phrase_table
from setu.orchestrator.events import ActionKind


def test_packaged_table_loads(phrase_table: PhraseTable) -> None:
    assert len(phrase_table) > 50
    entry = phrase_table.get("bijli ka bill")
    assert entry is not None
    assert entry.action is ActionKind.NAVIGATE_BILL_ELECTRICITY
    assert entry.response_for("en").startswith("Opening the electricity bill")


def test_yes_is_loaded_as_text_not_boolean(phrase_table: PhraseTable) -> None:
    assert phrase_table.get("yes").action is ActionKind.CONFIRM_YES
    assert phrase_table.get("no").action is ActionKind.CONFIRM_NO
    assert "true" not in phrase_table


def test_phrases_are_normalized_on_load() -> None:
    table = make_table([{"action": "go_back", "phrases": ["  Go  Back! "]}])
    assert "go back" in table


def test_duplicate_phrase_is_rejected() -> None:
    with pytest.raises(TableError, match="Duplicate phrase 'gas'"):
        make_table(
            [
                {"action": "navigate_bill_gas", "phrases": ["gas"]},
                {"action": "navigate_complaint", "phrases": ["Gas"]},
            ]
        )


def test_unknown_action_is_rejected() -> None:
    with pytest.raises(TableError, match="Unknown action kind 'launch_rocket'"):
        make_table([{"action": "launch_rocket", "phrases": ["rocket"]}])


def test_group_without_phrases_is_rejected() -> None:
    with pytest.raises(TableError):
        make_table([{"action": "go_home", "phrases": []}])


def test_longest_first_keeps_registration_order_within_length() -> None:
    table = make_table(
        [
            {"action": "navigate_bill_gas", "phrases": ["gas"]},
            {"action": "navigate_bill_water", "phrases": ["pani bill"]},
            {"action": "navigate_bill_gas", "phrases": ["gas bill"]},
        ]
    )
    assert [entry.phrase for entry in table.longest_first()] == ["pani bill", "gas bill", "gas"]


def test_response_falls_back_to_fallback_language() -> None:
    table = make_table([{"action": "go_home", "responses": {"en": "Going home"}, "phrases": ["home"]}])
    assert table.get("home").response_for("pa") == "Going home"
    assert table.get("home").response_for("pa", fallback="hi") == ""


def test_missing_or_malformed_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_phrase_table(tmp_path / "absent.yml")
    broken = tmp_path / "broken.yml"
    broken.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(TableError):
        load_phrase_table(broken)
