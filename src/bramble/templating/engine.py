"""Template language provider backed by a sandboxed Jinja2 environment."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

import jinja2
from jinja2 import ChainableUndefined, pass_context
from jinja2.runtime import Context
from jinja2.sandbox import SandboxedEnvironment

from bramble.config import Helper
from bramble.errors import CompileError, RenderError
from bramble.templating.helpers import SystemKeyAuthoriser, default_helpers

logger = logging.getLogger(__name__)


class CompiledTemplate:
    """An immutable compiled template.

    ``render`` keeps no state between calls, so one instance can be
    shared by any number of concurrent renders.
    """

    __slots__ = ("name", "source", "_template")

    def __init__(self, name: str, source: str, template: jinja2.Template) -> None:
        self.name = name
        self.source = source
        self._template = template

    def render(self, context: Mapping[str, Any]) -> str:
        """Render against a context model.

        Raises:
            RenderError: If evaluation fails for any reason.
        """
        try:
            return self._template.render(context)
        except RenderError as exc:
            raise RenderError(f"{self.name}: {exc}") from exc
        except jinja2.TemplateError as exc:
            raise RenderError(f"{self.name}: {exc.message or exc}") from exc
        except Exception as exc:
            # Errors raised by expressions themselves, e.g. 1 / 0 or 'a' + 1.
            raise RenderError(f"{self.name}: {exc}") from exc

    def __repr__(self) -> str:
        return f"CompiledTemplate({self.name!r})"


def _bind_helper(name: str, helper: Helper):
    @pass_context
    def call(context: Context, *args: Any, **options: Any) -> Any:
        try:
            return helper(args, options, context.get_all())
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"helper '{name}' failed: {exc}") from exc

    call.__name__ = name
    return call


class TemplateEngine:
    """Compiles template sources into :class:`CompiledTemplate` values.

    Expressions use Jinja2 syntax (``{{ request.path }}``,
    ``{% if ... %}``) in a sandbox: attribute access to private members
    and unsafe callables is refused at render time. Undefined names render
    as empty strings and may be chained (``request.query.missing.x``).

    Helpers are installed as template globals. The built-ins are
    ``systemValue``, ``now`` and ``randomValue``; entries in ``helpers``
    with the same name replace them.
    """

    def __init__(
        self,
        helpers: Mapping[str, Helper] | None = None,
        permitted_system_keys: Iterable[str] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            helpers: Extra named helpers, ``(args, options, context) -> value``.
            permitted_system_keys: Patterns of environment keys ``systemValue``
                may read, or None for unrestricted access.
        """
        self.authoriser = SystemKeyAuthoriser(permitted_system_keys)
        self._environment = SandboxedEnvironment(
            autoescape=False,
            keep_trailing_newline=True,
            undefined=ChainableUndefined,
        )
        table = {**default_helpers(self.authoriser), **(helpers or {})}
        for name, helper in table.items():
            self._environment.globals[name] = _bind_helper(name, helper)
        self.helper_names = frozenset(table)

    def compile(self, source: str) -> CompiledTemplate:
        """Compile a template source.

        Raises:
            CompileError: If the source is not a valid template.
        """
        name = f"inline@{uuid.uuid4().hex[:8]}"
        try:
            template = self._environment.from_string(source)
        except jinja2.TemplateSyntaxError as exc:
            raise CompileError(f"{name}:{exc.lineno}: {exc.message}") from exc
        logger.debug("Compiled template %s (%d chars)", name, len(source))
        return CompiledTemplate(name, source, template)
