"""Core data models for Bramble stubs, requests and responses."""

from __future__ import annotations

import enum
import json
import uuid
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qs, urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    field_validator,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from bramble.paths import PathTemplate

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class HttpHeader(BaseModel):
    """A single header key with its ordered values."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Header name as originally written")
    values: tuple[str, ...] = Field(default=(), description="Values in declaration order")

    @classmethod
    def of(cls, key: str, *values: str) -> HttpHeader:
        return cls(key=key, values=values)

    def first_value(self) -> str | None:
        return self.values[0] if self.values else None

    def is_single_valued(self) -> bool:
        return len(self.values) == 1


class HttpHeaders(RootModel[tuple[HttpHeader, ...]]):
    """Ordered, case-insensitive collection of multi-valued headers.

    Accepts the mapping form used in stub files, where each value is
    either a string or a list of strings::

        {"Content-Type": "application/json", "X-Trace": ["a", "b"]}

    Repeated keys (compared case-insensitively) are merged into the first
    occurrence, keeping value order.
    """

    model_config = ConfigDict(frozen=True)

    root: tuple[HttpHeader, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _coerce_mapping(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return [
                {"key": key, "values": [value] if isinstance(value, str) else list(value)}
                for key, value in data.items()
            ]
        return data

    @field_validator("root")
    @classmethod
    def _merge_duplicate_keys(cls, headers: tuple[HttpHeader, ...]) -> tuple[HttpHeader, ...]:
        merged: dict[str, HttpHeader] = {}
        for header in headers:
            existing = merged.get(header.key.lower())
            if existing is None:
                merged[header.key.lower()] = header
            else:
                merged[header.key.lower()] = HttpHeader(
                    key=existing.key, values=existing.values + header.values
                )
        return tuple(merged.values())

    @model_serializer(mode="plain")
    def _serialize(self) -> dict[str, str | list[str]]:
        return {
            header.key: header.values[0] if header.is_single_valued() else list(header.values)
            for header in self.root
        }

    @classmethod
    def of(cls, headers: Mapping[str, str | Iterable[str]] | Iterable[HttpHeader]) -> HttpHeaders:
        """Build headers from a mapping or an iterable of HttpHeader."""
        if isinstance(headers, Mapping):
            return cls.model_validate(headers)
        return cls(tuple(headers))

    def all(self) -> tuple[HttpHeader, ...]:
        return self.root

    def keys(self) -> list[str]:
        return [header.key for header in self.root]

    def get_header(self, key: str) -> HttpHeader | None:
        wanted = key.lower()
        for header in self.root:
            if header.key.lower() == wanted:
                return header
        return None

    def first_value(self, key: str) -> str | None:
        header = self.get_header(key)
        return header.first_value() if header else None


class Request(BaseModel):
    """An incoming HTTP request as seen by the mock server."""

    model_config = _CAMEL

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    method: str = Field(description="HTTP method: GET, POST, etc.")
    url: str = Field(description="Path plus query string, e.g. '/users/1?expand=true'")
    scheme: str = Field(default="http")
    host: str = Field(default="localhost")
    port: int = Field(default=80)
    client_ip: str = Field(default="127.0.0.1")
    headers: HttpHeaders = Field(default_factory=HttpHeaders)
    cookies: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    body: str | None = Field(default=None, description="Request body decoded as text")
    logged_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def query_parameters(self) -> dict[str, list[str]]:
        return parse_qs(urlsplit(self.url).query, keep_blank_values=True)

    @property
    def base_url(self) -> str:
        default_port = {"http": 80, "https": 443}.get(self.scheme)
        if self.port == default_port:
            return f"{self.scheme}://{self.host}"
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def absolute_url(self) -> str:
        return f"{self.base_url}{self.url}"

    def header(self, key: str) -> HttpHeader | None:
        return self.headers.get_header(key)


class RequestPattern(BaseModel):
    """Criteria a stub uses to claim a request.

    At most one of ``url``, ``url_path`` and ``url_path_template`` may be
    given; none means any URL matches.
    """

    model_config = _CAMEL

    method: str = Field(default="ANY")
    url: str | None = Field(default=None, description="Exact path and query")
    url_path: str | None = Field(default=None, description="Exact path, query ignored")
    url_path_template: str | None = Field(
        default=None, description="Path with named captures, e.g. '/users/{id}'"
    )

    @model_validator(mode="after")
    def _single_url_matcher(self) -> RequestPattern:
        given = [v for v in (self.url, self.url_path, self.url_path_template) if v is not None]
        if len(given) > 1:
            raise ValueError("only one of url, urlPath and urlPathTemplate may be set")
        return self

    @property
    def path_template(self) -> PathTemplate | None:
        if self.url_path_template is None:
            return None
        return PathTemplate(self.url_path_template)

    def matches(self, request: Request) -> bool:
        if self.method.upper() not in ("ANY", request.method.upper()):
            return False
        if self.url is not None:
            return self.url == request.url
        if self.url_path is not None:
            return self.url_path == request.path
        if self.path_template is not None:
            return self.path_template.matches(request.path)
        return True


class ResponseDefinition(BaseModel):
    """Declarative description of a stubbed response or proxy target.

    Any of the text body, body file name, header values, proxy base URL
    and additional proxy request headers may carry template expressions.
    Instances are immutable; the transformer builds new ones.
    """

    model_config = _CAMEL

    status: int = Field(default=200)
    status_message: str | None = Field(default=None)
    body: str | None = Field(default=None, description="Inline text body")
    json_body: Any | None = Field(default=None, description="Inline JSON body")
    body_file_name: str | None = Field(
        default=None, description="Body file relative to the file root"
    )
    headers: HttpHeaders | None = Field(default=None)
    proxy_base_url: str | None = Field(default=None)
    additional_proxy_request_headers: HttpHeaders | None = Field(default=None)
    fixed_delay_milliseconds: int | None = Field(default=None, ge=0)
    transformers: tuple[str, ...] = Field(default=())
    transformer_parameters: dict[str, Any] | None = Field(default=None)

    @model_validator(mode="after")
    def _single_body_source(self) -> ResponseDefinition:
        if self.body is not None and self.json_body is not None:
            raise ValueError("body and jsonBody are mutually exclusive")
        if self.specifies_text_body_content and self.body_file_name is not None:
            raise ValueError("an inline body and bodyFileName are mutually exclusive")
        return self

    @property
    def specifies_text_body_content(self) -> bool:
        return self.body is not None or self.json_body is not None

    @property
    def specifies_body_file(self) -> bool:
        return self.body_file_name is not None

    @property
    def is_json_body(self) -> bool:
        return self.json_body is not None

    @property
    def text_body(self) -> str | None:
        if self.json_body is not None:
            return json.dumps(self.json_body)
        return self.body

    @property
    def is_proxy_response(self) -> bool:
        return self.proxy_base_url is not None

    @classmethod
    def plain_text(cls, status: int, message: str) -> ResponseDefinition:
        return cls(
            status=status,
            headers=HttpHeaders.of({"Content-Type": "text/plain"}),
            body=message,
        )


class StubMapping(BaseModel):
    """A request pattern paired with the response it produces."""

    model_config = _CAMEL

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str | None = Field(default=None)
    request: RequestPattern = Field(default_factory=RequestPattern)
    response: ResponseDefinition = Field(default_factory=ResponseDefinition)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubEventType(enum.StrEnum):
    """Severity of a diagnostic sub-event."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class SubEvent(BaseModel):
    """A diagnostic record attached to a serve event."""

    model_config = ConfigDict(frozen=True)

    type: SubEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def error(cls, message: str) -> SubEvent:
        return cls(type=SubEventType.ERROR, data={"message": message})

    @property
    def message(self) -> str | None:
        return self.data.get("message")


class ServeEvent(BaseModel):
    """One served request: the request, its stub and the response in progress.

    Only ``sub_events`` changes after construction.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    request: Request
    stub_mapping: StubMapping
    response_definition: ResponseDefinition
    sub_events: list[SubEvent] = Field(default_factory=list)

    @classmethod
    def of(cls, request: Request, stub: StubMapping) -> ServeEvent:
        return cls(request=request, stub_mapping=stub, response_definition=stub.response)

    def append_sub_event(self, sub_event: SubEvent) -> None:
        self.sub_events.append(sub_event)
