"""
render.py

Responsibility: Render the Jinja2 placeholders used in pipeline configuration.

Command argv entries, the binary path and packaging step paths may contain
`{{ ... }}` expressions (e.g. `target/{{ triple }}/release/{{ binary }}`).
Rendering is strict: an unknown variable is an error, never an empty string.

This module intentionally does NOT know about subprocesses, archives or HTTP.
"""

from __future__ import annotations

from typing import Any, Iterable

from jinja2 import Environment, StrictUndefined, TemplateError


class RenderError(RuntimeError):
    pass


_ENV = Environment(
    autoescape=False,
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def render_value(text: str, context: dict[str, Any]) -> str:
    # Plain strings skip the template engine entirely.
    if ("{{" not in text) and ("{%" not in text) and ("{#" not in text):
        return text
    try:
        return _ENV.from_string(text).render(**context)
    except TemplateError as e:
        raise RenderError(f"Failed rendering {text!r}: {e}") from e


def render_argv(argv: Iterable[str], context: dict[str, Any]) -> list[str]:
    return [render_value(arg, context) for arg in argv]
