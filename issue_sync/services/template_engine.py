"""
Sandboxed template rendering for tracker issues.

Templates are Jinja2 sources rendered in an immutable sandbox: they can
read the issue data and call a fixed set of helper filters, but cannot
mutate the context, reach private attributes, or touch the filesystem
or network. Rendering is a pure function of (template, data).
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from dateutil import parser as date_parser
from jinja2 import ChainableUndefined, Template, TemplateError, Undefined
from jinja2 import TemplateSyntaxError as JinjaTemplateSyntaxError
from jinja2.sandbox import ImmutableSandboxedEnvironment

logger = logging.getLogger(__name__)


class TemplateSyntaxError(Exception):
    """Raised when a template source cannot be compiled."""

    def __init__(self, message: str, lineno: Optional[int] = None):
        super().__init__(message)
        self.lineno = lineno


class TemplateRenderError(Exception):
    """Raised when a compiled template fails while rendering."""
    pass


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: str


# Helper filters

def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, Undefined):
        return None
    return str(value)


def trim(value: Any) -> str:
    text = _text(value)
    return text.strip() if text is not None else ""


def upper(value: Any) -> str:
    text = _text(value)
    return text.upper() if text is not None else ""


def lower(value: Any) -> str:
    text = _text(value)
    return text.lower() if text is not None else ""


def default_if_empty(value: Any, default: str = "") -> str:
    text = _text(value)
    return text if text else default


def remove_spaces(value: Any) -> str:
    text = _text(value)
    return re.sub(r"\s+", "", text) if text is not None else ""


def normalize_spaces(value: Any) -> str:
    text = _text(value)
    return " ".join(text.split()) if text is not None else ""


def format_date(value: Any, fmt: str = "%Y-%m-%d") -> Any:
    """Reformat an ISO date/datetime; anything unparseable is returned unchanged."""
    if isinstance(value, (date, datetime)):
        return value.strftime(fmt)
    text = _text(value)
    if not text:
        return value if text is not None else ""
    try:
        return date_parser.isoparse(text.strip()).strftime(fmt)
    except (ValueError, OverflowError):
        return value


def to_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def to_json(value: Any) -> str:
    if isinstance(value, Undefined):
        value = None
    return json.dumps(value, ensure_ascii=False, default=str)


def from_json(value: Any) -> Any:
    text = _text(value)
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


DEFAULT_FILTERS: Mapping[str, Callable[..., Any]] = MappingProxyType({
    "trim": trim,
    "upper": upper,
    "lower": lower,
    "default_if_empty": default_if_empty,
    "remove_spaces": remove_spaces,
    "normalize_spaces": normalize_spaces,
    "format_date": format_date,
    "to_float": to_float,
    "to_int": to_int,
    "json": to_json,
    "from_json": from_json,
})


class TemplateEngine:
    """
    Renders templates against an issue's data.

    Each engine owns its own sandboxed environment, configured once with
    the helper filters it was given; nothing is shared between engines.
    """

    def __init__(self, filters: Optional[Mapping[str, Callable[..., Any]]] = None):
        self._env = ImmutableSandboxedEnvironment(
            undefined=ChainableUndefined,
            autoescape=False,
        )
        self._env.filters.update(DEFAULT_FILTERS if filters is None else filters)

    def compile(self, template_source: str) -> Template:
        """
        Compile a template source.

        Raises:
            TemplateSyntaxError: If the source is not a valid template
        """
        try:
            return self._env.from_string(template_source)
        except JinjaTemplateSyntaxError as e:
            raise TemplateSyntaxError(
                f"Syntax error on line {e.lineno}: {e.message}",
                lineno=e.lineno
            ) from e

    def render_compiled(self, template: Template, data: Any) -> str:
        """
        Render an already compiled template.

        The context exposes the top-level keys of ``data`` plus ``data``
        itself for whole-document access.

        Raises:
            TemplateRenderError: If rendering fails
        """
        try:
            return template.render(self._build_context(data))
        except TemplateError as e:
            raise TemplateRenderError(f"Template rendering failed: {e}") from e
        except (TypeError, ValueError, ArithmeticError, LookupError) as e:
            raise TemplateRenderError(f"Template rendering failed: {e}") from e

    def render(self, template_source: str, data: Any) -> str:
        """Compile and render ``template_source`` against ``data``."""
        return self.render_compiled(self.compile(template_source), data)

    def validate(self, template_source: str) -> ValidationResult:
        """Syntax-only check of a template source; no data is needed."""
        if not template_source or not template_source.strip():
            return ValidationResult(valid=False, message="Template is empty")
        try:
            self.compile(template_source)
        except TemplateSyntaxError as e:
            return ValidationResult(valid=False, message=str(e))
        return ValidationResult(valid=True, message="Template syntax is valid")

    def test_render(self, template_source: str, sample_json: str) -> str:
        """
        Render a template against sample JSON text for interactive testing.

        Raises:
            TemplateRenderError: If the sample is not JSON or rendering fails
            TemplateSyntaxError: If the template does not compile
        """
        try:
            data = json.loads(sample_json)
        except ValueError as e:
            raise TemplateRenderError(f"Sample data is not valid JSON: {e}") from e
        return self.render(template_source, data)

    @staticmethod
    def _build_context(data: Any) -> dict:
        context = dict(data) if isinstance(data, Mapping) else {}
        context["data"] = data
        return context


def get_template_engine() -> TemplateEngine:
    """Factory function to create a template engine with the default helpers."""
    return TemplateEngine()
