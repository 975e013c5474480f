"""Collect CloudFormation stack outputs and render them as text, JSON, or a template.

Three output modes are supported:

* ``TabularMode`` -- ``key<TAB>value`` lines sorted by key
* ``JsonMode`` -- a single JSON object, two-space indented, keys sorted
* ``TemplateMode`` -- a Jinja2 template rendered with strict lookups

Programmatic::

    from output_render import JsonMode, OutputPair, collect_outputs, render

    outputs = collect_outputs([OutputPair("ApiUrl", "https://api.example.com/")])
    sys.stdout.buffer.write(render(outputs, JsonMode()))

Every output referenced by a template must exist: a missing key raises
``RenderError`` instead of rendering as an empty string.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from jinja2 import (
    Environment,
    StrictUndefined,
    Template,
    TemplateError,
    TemplateSyntaxError,
    UndefinedError,
)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CfnOutputError(Exception):
    """Base class for every failure that ends an invocation."""


class ConfigError(CfnOutputError, ValueError):
    """Invalid combination of inputs, detected before any AWS call."""


class TemplateParseError(CfnOutputError):
    """The template could not be compiled."""


class StackLookupError(CfnOutputError, LookupError):
    """DescribeStacks failed or did not match exactly one stack."""


class RenderError(CfnOutputError):
    """A template referenced a missing output or failed while it ran."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class SinkError(CfnOutputError):
    """The rendered output could not be written."""


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OutputPair:
    """One entry of a stack's ``Outputs`` list; either side may be missing."""

    key: str | None
    value: str | None


def pairs_from_stack(stack: Mapping[str, Any]) -> list[OutputPair]:
    """Extract ``OutputPair``s from a ``describe_stacks`` stack dict."""
    return [
        OutputPair(key=out.get("OutputKey"), value=out.get("OutputValue"))
        for out in stack.get("Outputs") or []
    ]


def collect_outputs(pairs: Iterable[OutputPair]) -> Mapping[str, str]:
    """Build a read-only key -> value mapping, skipping incomplete pairs.

    A later pair with the same key overwrites an earlier one.
    """
    collected: dict[str, str] = {}
    for pair in pairs:
        if pair.key is None or pair.value is None:
            continue
        collected[pair.key] = pair.value
    return MappingProxyType(collected)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_ENV = Environment(
    undefined=StrictUndefined,
    autoescape=False,  # plain text, not HTML
    keep_trailing_newline=True,
)

# Jinja2 phrases undefined lookups as "'Name' is undefined" or
# "'dict object' has no attribute 'Name'".
_UNDEFINED_RE = re.compile(r"^'(?P<key>.+)' is undefined$")
_NO_MEMBER_RE = re.compile(r"^'dict object' has no (?:attribute|element) '(?P<key>.+)'$")


@dataclass(frozen=True)
class ParsedTemplate:
    """A compiled template ready to render against stack outputs."""

    template: Template
    name: str


def parse_template(source: str, name: str = "<template>") -> ParsedTemplate:
    """Compile *source* with strict undefined-variable handling.

    Raises ``TemplateParseError`` on syntax errors.
    """
    try:
        template = _ENV.from_string(source)
    except TemplateSyntaxError as exc:
        raise TemplateParseError(f"{name}:{exc.lineno}: {exc.message}") from exc
    return ParsedTemplate(template=template, name=name)


def _missing_key(exc: UndefinedError) -> str | None:
    message = str(exc)
    for pattern in (_UNDEFINED_RE, _NO_MEMBER_RE):
        match = pattern.search(message)
        if match:
            return match.group("key")
    return None


# ---------------------------------------------------------------------------
# Render modes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TabularMode:
    """``key<TAB>value`` lines, sorted by key."""


@dataclass(frozen=True)
class JsonMode:
    """A single indented JSON object with sorted keys."""


@dataclass(frozen=True)
class TemplateMode:
    """Substitute outputs into a pre-parsed template."""

    template: ParsedTemplate


RenderMode = TabularMode | JsonMode | TemplateMode


def _render_tabular(outputs: Mapping[str, str]) -> str:
    return "".join(f"{key}\t{outputs[key]}\n" for key in sorted(outputs))


def _render_json(outputs: Mapping[str, str]) -> str:
    return json.dumps(dict(outputs), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def _render_template(outputs: Mapping[str, str], parsed: ParsedTemplate) -> str:
    # Outputs are top-level names; the whole map is also reachable as
    # ``outputs`` unless a stack output of that name shadows it.
    context: dict[str, Any] = {"outputs": dict(outputs), **outputs}
    try:
        return parsed.template.render(context)
    except UndefinedError as exc:
        key = _missing_key(exc)
        raise RenderError(f"{parsed.name}: {exc}", key=key) from exc
    except (TemplateError, TypeError, ValueError, ArithmeticError, LookupError) as exc:
        raise RenderError(f"{parsed.name}: {exc}") from exc


def render(outputs: Mapping[str, str], mode: RenderMode) -> bytes:
    """Render *outputs* in the given mode and return UTF-8 bytes.

    Raises ``RenderError`` when a template references a missing output or
    fails while it runs.
    """
    if isinstance(mode, TabularMode):
        text = _render_tabular(outputs)
    elif isinstance(mode, JsonMode):
        text = _render_json(outputs)
    elif isinstance(mode, TemplateMode):
        text = _render_template(outputs, mode.template)
    else:
        raise TypeError(f"Unknown render mode {mode!r}")
    return text.encode("utf-8")
