"""Template rendering engine for Pageturtle.

This module uses Jinja2 to compose rendered fragments with layout templates.
Templates only ever see plain data: the context is converted to a tree of
strings, numbers, booleans, lists and mappings before rendering, and the
environment is sandboxed, so rendering is deterministic and side-effect free.

Key classes and functions:
- TemplateEngine: ``render(template_id, context)`` plus template fingerprints.
- to_context: Validate and convert a context tree.

Template lookup order: the project's templates directory, then the defaults
shipped with the package.

Error mapping:
- A missing template raises TemplateNotFound.
- Printing or iterating a key absent from the context raises MissingVariable.
  Conditionals treat an absent key as false.
- Syntax errors raise TemplateError with the offending line.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import (
    ChoiceLoader,
    FileSystemLoader,
    StrictUndefined,
    TemplateSyntaxError,
    UndefinedError,
    meta,
    select_autoescape,
)
from jinja2 import TemplateNotFound as JinjaTemplateNotFound
from jinja2.sandbox import ImmutableSandboxedEnvironment, SecurityError

from .errors import MissingVariable, TemplateError, TemplateNotFound
from .utils import digest_parts

__all__ = ["BUILTIN_TEMPLATES_DIR", "TemplateEngine", "to_context"]

BUILTIN_TEMPLATES_DIR = Path(__file__).parent / "templates"


class _UndefinedKeyError(UndefinedError):
    """UndefinedError that remembers which key was missing."""

    def __init__(self, key: str, message: str):
        super().__init__(message)
        self.key = key


class _ContextUndefined(StrictUndefined):
    """Undefined value that is falsy in conditionals and fails everywhere else."""

    __slots__ = ()

    def _fail_with_undefined_error(self, *args: Any, **kwargs: Any):
        raise _UndefinedKeyError(self._undefined_name or "?", self._undefined_message)

    __iter__ = __str__ = __len__ = _fail_with_undefined_error
    __eq__ = __ne__ = __hash__ = __contains__ = _fail_with_undefined_error

    def __bool__(self) -> bool:
        return False


def to_context(value: Any, path: str = "context") -> Any:
    """Convert a value into template context data.

    Accepted values are strings (``Markup`` is kept as trusted HTML), numbers,
    booleans, lists/tuples and string-keyed mappings, nested freely. Mapping
    entries whose value is None are dropped so that templates see the key as
    absent.

    Args:
        value: Value to convert.
        path: Dotted location of the value, for error messages.

    Returns:
        The converted value (lists and dicts are copied).

    Raises:
        TypeError: If the value, or anything nested in it, has another type.
    """
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        converted: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path}: mapping keys must be strings, got {key!r}")
            if item is None:
                continue
            converted[key] = to_context(item, f"{path}.{key}")
        return converted
    if isinstance(value, (list, tuple)):
        return [to_context(item, f"{path}[{index}]") for index, item in enumerate(value)]
    raise TypeError(f"{path}: unsupported context value of type {type(value).__name__}")


class TemplateEngine:
    """Template rendering engine using a sandboxed Jinja2 environment.

    Attributes:
        templates_dir: Project template directory (may not exist).
        env: Jinja2 environment.
    """

    def __init__(self, templates_dir: Path, builtin_dir: Path | None = None):
        """Initialize the template engine.

        Args:
            templates_dir: Project directory with templates overriding the defaults.
            builtin_dir: Directory of fallback templates; defaults to the packaged ones.
        """
        self.templates_dir = templates_dir
        search = [FileSystemLoader(str(templates_dir))]
        search.append(FileSystemLoader(str(builtin_dir or BUILTIN_TEMPLATES_DIR)))
        self.env = ImmutableSandboxedEnvironment(
            loader=ChoiceLoader(search),
            autoescape=select_autoescape(["html", "xml"]),
            undefined=_ContextUndefined,
            keep_trailing_newline=True,
        )

    def reload(self) -> None:
        """Drop compiled templates.

        Jinja only checks the cached file for staleness, so a project override
        created after a built-in template was loaded would otherwise be missed.
        """
        self.env.cache.clear()

    def render(self, template_id: str, context: Mapping[str, Any]) -> str:
        """Render a template with the given context.

        Args:
            template_id: Template name, e.g. ``post.html``.
            context: Context tree; see to_context for the accepted types.

        Returns:
            Rendered HTML string.

        Raises:
            TemplateNotFound: If the template (or one it extends/includes) is missing.
            MissingVariable: If the template outputs or iterates an absent key.
            TemplateError: On syntax errors or invalid context values.
        """
        try:
            data = to_context(context)
        except TypeError as exc:
            raise TemplateError(template_id, str(exc)) from exc
        try:
            template = self.env.get_template(template_id)
            return template.render(data)
        except JinjaTemplateNotFound as exc:
            raise TemplateNotFound(exc.name or template_id) from exc
        except TemplateSyntaxError as exc:
            name = exc.name or template_id
            raise TemplateError(
                name, f"syntax error on line {exc.lineno}: {exc.message}"
            ) from exc
        except _UndefinedKeyError as exc:
            raise MissingVariable(template_id, exc.key) from exc
        except UndefinedError as exc:
            raise TemplateError(template_id, str(exc)) from exc
        except SecurityError as exc:
            raise TemplateError(template_id, f"unsafe operation: {exc}") from exc

    def fingerprint(self, template_id: str) -> str:
        """Hash a template together with every template it statically references.

        Referenced templates (``extends``, ``include``, ``import``) are
        followed recursively. The digest changes whenever any source in that
        closure changes.

        Args:
            template_id: Template name.

        Returns:
            sha256 hex digest.

        Raises:
            TemplateNotFound: If the template or a referenced one is missing.
            TemplateError: If a template cannot be parsed.
        """
        parts: list[str] = []
        seen: set[str] = set()
        pending = [template_id]
        while pending:
            name = pending.pop(0)
            if name in seen:
                continue
            seen.add(name)
            source = self._source(name)
            parts.extend([name, source])
            try:
                ast = self.env.parse(source, name=name)
            except TemplateSyntaxError as exc:
                raise TemplateError(
                    name, f"syntax error on line {exc.lineno}: {exc.message}"
                ) from exc
            referenced = sorted(ref for ref in meta.find_referenced_templates(ast) if ref)
            pending.extend(referenced)
        return digest_parts(parts)

    def _source(self, template_id: str) -> str:
        try:
            source, _filename, _uptodate = self.env.loader.get_source(self.env, template_id)
        except JinjaTemplateNotFound as exc:
            raise TemplateNotFound(template_id) from exc
        return source
