"""Block catalog tests."""

from __future__ import annotations

import pytest

from prompt_lab.blocks import (
    block_ids,
    default_block_states,
    display_name_for,
    get_block_definition,
    is_known_block,
    required_block_ids,
)


def test_catalog_order_is_canonical() -> None:
    assert block_ids() == ("task", "persona", "context", "constraints", "examples", "format", "instruction")


def test_only_task_is_required() -> None:
    assert required_block_ids() == ("task",)
    assert get_block_definition("task").display_name == "Task"


def test_unknown_block_lookup() -> None:
    assert is_known_block("persona") is True
    assert is_known_block("mood") is False
    assert display_name_for("mood") == "mood"
    with pytest.raises(KeyError):
        get_block_definition("mood")


def test_default_block_states_are_empty_and_collapsed() -> None:
    states = default_block_states()

    assert [state.id for state in states] == list(block_ids())
    assert all(state.content == "" and state.is_collapsed for state in states)
