"""Context model assembly: the names a response template can see.

Every template is rendered against a fresh, read-only mapping with two
reserved entries:

``parameters``
    the transformer parameters of the response definition.
``request``
    facts about the incoming request: ``id``, ``url``, ``path``,
    ``pathSegments``, ``query``, ``method``, ``scheme``, ``host``,
    ``port``, ``baseUrl``, ``clientIp``, ``headers``, ``cookies``, ``body``.

``request.path`` renders as the full path; ``request.path[0]`` is the
first segment and ``request.path.id`` the ``{id}`` capture of the stub's
path template. Multi-valued entries (query parameters, headers, cookies)
render as their only value when there is exactly one.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from bramble.errors import ModelBuildError
from bramble.models import Request  # noqa: TCH001
from bramble.paths import PathTemplate  # noqa: TCH001

RESERVED_NAMES = frozenset({"parameters", "request"})


class MultiValue(tuple):
    """Ordered values of one query parameter, header or cookie."""

    @property
    def first(self) -> str | None:
        return self[0] if self else None

    @property
    def last(self) -> str | None:
        return self[-1] if self else None

    def __str__(self) -> str:
        if not self:
            return ""
        if len(self) == 1:
            return str(self[0])
        return "[" + ", ".join(str(value) for value in self) + "]"


class MultiValueMap(Mapping[str, MultiValue]):
    """Read-only name -> MultiValue mapping, optionally case-insensitive."""

    def __init__(
        self, items: Iterable[tuple[str, Iterable[str]]], case_insensitive: bool = False
    ) -> None:
        self._case_insensitive = case_insensitive
        self._values: dict[str, MultiValue] = {}
        self._names: dict[str, str] = {}
        for name, values in items:
            folded = self._fold(name)
            existing = self._values.get(folded, MultiValue())
            self._values[folded] = MultiValue((*existing, *values))
            self._names.setdefault(folded, name)

    def _fold(self, name: str) -> str:
        return name.lower() if self._case_insensitive else name

    def __getitem__(self, name: str) -> MultiValue:
        return self._values[self._fold(name)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"MultiValueMap({dict(self.items())!r})"


class RequestPath:
    """The request path, indexable by segment position or capture name."""

    def __init__(self, path: str, captures: Mapping[str, str]) -> None:
        self._path = path
        self._segments = tuple(segment for segment in path.split("/") if segment)
        self._captures = dict(captures)

    @property
    def segments(self) -> tuple[str, ...]:
        return self._segments

    def __getitem__(self, item: int | str) -> str:
        if isinstance(item, int):
            return self._segments[item]
        return self._captures[item]

    def __getattr__(self, name: str) -> str:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._captures[name]
        except KeyError:
            raise AttributeError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __str__(self) -> str:
        return self._path

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RequestPath):
            return other._path == self._path
        return other == self._path

    def __hash__(self) -> int:
        return hash(self._path)

    def __repr__(self) -> str:
        return f"RequestPath({self._path!r})"


class RequestTemplateModel(Mapping[str, Any]):
    """Read-only view of a request for template evaluation."""

    def __init__(self, entries: Mapping[str, Any]) -> None:
        self._entries = dict(entries)

    @classmethod
    def from_request(
        cls, request: Request, path_template: PathTemplate | None = None
    ) -> RequestTemplateModel:
        """Build the model for a request.

        Args:
            request: The incoming request.
            path_template: The matched stub's path template, if it has one.
                Its named captures become addressable through ``request.path``.

        Returns:
            A RequestTemplateModel for the request.
        """
        path = request.path
        captures: dict[str, str] = {}
        if path_template is not None and path_template.matches(path):
            captures = path_template.parse(path)
        request_path = RequestPath(path, captures)

        return cls(
            {
                "id": request.id,
                "url": request.url,
                "path": request_path,
                "pathSegments": request_path.segments,
                "query": MultiValueMap(request.query_parameters.items()),
                "method": request.method.upper(),
                "scheme": request.scheme,
                "host": request.host,
                "port": request.port,
                "baseUrl": request.base_url,
                "clientIp": request.client_ip,
                "headers": MultiValueMap(
                    ((h.key, h.values) for h in request.headers.all()), case_insensitive=True
                ),
                "cookies": MultiValueMap(request.cookies.items()),
                "body": request.body or "",
            }
        )

    def __getitem__(self, name: str) -> Any:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def build_model(
    request: Request,
    path_template: PathTemplate | None,
    parameters: Mapping[str, Any],
    extra: Mapping[str, Any] | None = None,
) -> Mapping[str, Any]:
    """Assemble the context model for one render pass.

    Entries are added in order: ``parameters``, ``request``, then ``extra``.

    Raises:
        ModelBuildError: If an ``extra`` entry uses a reserved name.
    """
    model: dict[str, Any] = {
        "parameters": MappingProxyType(dict(parameters)),
        "request": RequestTemplateModel.from_request(request, path_template),
    }
    for name, value in (extra or {}).items():
        if name in RESERVED_NAMES:
            raise ModelBuildError(
                f"Extra model element '{name}' collides with a reserved model name"
            )
        model[name] = value
    return MappingProxyType(model)
