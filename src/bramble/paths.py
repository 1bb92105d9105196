"""Path templates with named segment captures, e.g. ``/users/{id}/orders``."""

from __future__ import annotations

import re

VARIABLE_SEGMENT = re.compile(r"^\{(\w+)\}$")


class PathTemplate:
    """A URL path pattern whose ``{name}`` segments capture one path segment each.

    Literal segments must match exactly; captured segments match any
    non-empty value.
    """

    def __init__(self, template: str) -> None:
        self.template = template
        self._parts = _split(template)
        self._variables: dict[int, str] = {}
        for index, part in enumerate(self._parts):
            match = VARIABLE_SEGMENT.match(part)
            if match:
                name = match.group(1)
                if name in self._variables.values():
                    raise ValueError(f"duplicate path variable '{name}' in {template!r}")
                self._variables[index] = name

    @property
    def variable_names(self) -> list[str]:
        return list(self._variables.values())

    def matches(self, path: str) -> bool:
        return self._capture(path) is not None

    def parse(self, path: str) -> dict[str, str]:
        """Extract named captures from a path.

        Args:
            path: The request path, without query string.

        Returns:
            Mapping of variable name to the captured segment.

        Raises:
            ValueError: If the path does not match this template.
        """
        captured = self._capture(path)
        if captured is None:
            raise ValueError(f"path {path!r} does not match template {self.template!r}")
        return captured

    def _capture(self, path: str) -> dict[str, str] | None:
        parts = _split(path)
        if len(parts) != len(self._parts):
            return None

        captured: dict[str, str] = {}
        for index, (actual, expected) in enumerate(zip(parts, self._parts, strict=True)):
            name = self._variables.get(index)
            if name is not None:
                if not actual:
                    return None
                captured[name] = actual
            elif actual != expected:
                return None
        return captured

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PathTemplate) and other.template == self.template

    def __hash__(self) -> int:
        return hash(self.template)

    def __repr__(self) -> str:
        return f"PathTemplate({self.template!r})"


def _split(path: str) -> list[str]:
    return path.strip("/").split("/")
