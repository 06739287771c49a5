"""
conveyor — unit tests for ``${VAR}`` templating

File: tests/unit/pipeline/test_templating.py
Last updated: 2026-10-19
"""

from __future__ import annotations

import pytest

from conveyor.domain.errors import TemplateError
from conveyor.pipeline.templating import placeholders, render, render_argv


@pytest.mark.unit
def test_render_substitutes_every_placeholder() -> None:
    env = {"IMAGE": "registry.example.com/app", "IMAGE_TAG": "12"}

    assert render("${IMAGE}:${IMAGE_TAG}", env) == "registry.example.com/app:12"


@pytest.mark.unit
def test_substituted_values_are_not_rescanned() -> None:
    assert render("${A}", {"A": "${B}", "B": "never"}) == "${B}"


@pytest.mark.unit
def test_escaped_placeholder_is_left_literal() -> None:
    assert render("echo $${HOME} ${USER}", {"USER": "ci"}) == "echo ${HOME} ci"


@pytest.mark.unit
def test_undefined_variable_raises_template_error() -> None:
    with pytest.raises(TemplateError, match=r"undefined variable \$\{GIT_COMMIT\}"):
        render("git checkout ${GIT_COMMIT}", {})


@pytest.mark.unit
def test_bare_dollar_text_is_untouched() -> None:
    assert render("cost $5 and $HOME", {}) == "cost $5 and $HOME"


@pytest.mark.unit
def test_render_argv_keeps_argument_boundaries() -> None:
    argv = render_argv(("deploy.sh", "${ENVIRONMENT}", "${IMAGE_REF}"), {
        "ENVIRONMENT": "staging",
        "IMAGE_REF": "app:1 --force",
    })

    assert argv == ("deploy.sh", "staging", "app:1 --force")


@pytest.mark.unit
def test_placeholders_lists_names_in_first_seen_order() -> None:
    assert placeholders("${B} ${A} ${B} $${C}") == ("B", "A")
