"""Unit tests for plain-text CLI rendering."""

from __future__ import annotations

import io

import pytest

from conveyor.ui.render import CLIRenderer, create_renderer


@pytest.mark.unit
def test_table_pads_columns_and_fills_short_rows() -> None:
    out = io.StringIO()
    renderer = CLIRenderer(stream=out)

    renderer.table(
        ["Stage", "State"], [["Checkout", "succeeded"], ["Test"]], title="Stages:"
    )

    assert out.getvalue() == (
        "\n"
        "Stages:\n"
        "  Stage     State\n"
        "  --------  ---------\n"
        "  Checkout  succeeded\n"
        "  Test\n"
    )


@pytest.mark.unit
def test_empty_table_and_next_steps_print_nothing() -> None:
    out = io.StringIO()
    renderer = CLIRenderer(stream=out)

    renderer.table(["Run"], [])
    renderer.next_steps([])

    assert out.getvalue() == ""


@pytest.mark.unit
def test_states_are_colored_only_when_enabled() -> None:
    assert CLIRenderer(color=False).state("failed") == "failed"
    assert CLIRenderer(color=True).state("failed") == "\033[31mfailed\033[0m"
    assert CLIRenderer(color=True).state("running") == "running"


@pytest.mark.unit
def test_no_color_env_disables_color(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")

    assert create_renderer().color is False
    assert create_renderer(no_color=True, verbose=True).verbose is True
