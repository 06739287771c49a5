"""``${VAR}`` substitution for command templates."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Final

from conveyor.domain.errors import TemplateError

# ``$${NAME}`` escapes to a literal ``${NAME}``.
_PLACEHOLDER: Final[re.Pattern[str]] = re.compile(r"\$(\$?)\{([A-Za-z_][A-Za-z0-9_]*)\}")


def render(template: str, env: Mapping[str, str]) -> str:
    """Substitute every ``${NAME}`` in one pass; substituted text is never re-scanned."""

    def _replace(match: re.Match[str]) -> str:
        escaped, name = match.group(1), match.group(2)
        if escaped:
            return "${" + name + "}"
        try:
            return env[name]
        except KeyError:
            raise TemplateError(f"undefined variable ${{{name}}} in {template!r}") from None

    return _PLACEHOLDER.sub(_replace, template)


def render_argv(argv: Sequence[str], env: Mapping[str, str]) -> tuple[str, ...]:
    return tuple(render(item, env) for item in argv)


def placeholders(template: str) -> tuple[str, ...]:
    """Names referenced by ``template`` in order of first appearance."""

    seen: dict[str, None] = {}
    for match in _PLACEHOLDER.finditer(template):
        if not match.group(1):
            seen.setdefault(match.group(2), None)
    return tuple(seen)


__all__ = ["placeholders", "render", "render_argv"]
