"""The response-template transformer.

Renders the templated fields of a stub's response definition (body, body
file, headers, proxy URL and proxy request headers) against the incoming
request, producing a new response definition. Any template failure fails
the whole response: the caller receives a plain-text 500 and the serve
event gains an error sub-event.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

from bramble.config import TemplatingConfig
from bramble.errors import RenderError, TemplateError
from bramble.files import FileSource  # noqa: TCH001
from bramble.models import (
    HttpHeader,
    HttpHeaders,
    Request,
    ResponseDefinition,
    ServeEvent,
    StubMapping,
    SubEvent,
)
from bramble.templating.cache import TemplateCache, TemplateCacheKey
from bramble.templating.engine import TemplateEngine
from bramble.templating.model import build_model

logger = logging.getLogger(__name__)

NAME = "response-template"

TEMPLATE_ID_PATTERN = re.compile(r"inline@[a-z0-9]+:")

KeyFactory = Callable[[StubMapping, str, int], TemplateCacheKey]


def clean_error_message(raw: str) -> str:
    """Strip internal template identifiers and keep only the first line."""
    return TEMPLATE_ID_PATTERN.sub("", raw).split("\n", 1)[0].strip()


def parameter_flag(parameters: Mapping[str, Any], name: str, default: bool = False) -> bool:
    value = parameters.get(name, default)
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class ResponseTemplateTransformer:
    """Applies response templating to served stubs.

    One instance owns one template cache for its whole lifetime. Register
    it with a :class:`~bramble.stubs.StubRegistry` so the cache is dropped
    whenever stubs are removed or reset.

    Subclasses may override :meth:`extra_model_elements` to expose
    additional names to templates.
    """

    name = NAME

    def __init__(
        self,
        files: FileSource,
        config: TemplatingConfig | None = None,
        engine: TemplateEngine | None = None,
    ) -> None:
        """Initialize the transformer.

        Args:
            files: Source of body files.
            config: Templating configuration; defaults apply when None.
            engine: Template engine to compile with. Built from ``config``
                (helpers and permitted system keys) when None.
        """
        self.config = config or TemplatingConfig()
        self.files = files
        self.engine = engine or TemplateEngine(
            helpers=self.config.helpers,
            permitted_system_keys=self.config.permitted_system_keys,
        )
        self.cache = TemplateCache(self.engine, self.config.max_cache_entries)

    @property
    def applies_globally(self) -> bool:
        return self.config.global_

    def applies_to(self, stub: StubMapping) -> bool:
        return self.applies_globally or self.name in stub.response.transformers

    @property
    def cache_size(self) -> int:
        return self.cache.size()

    @property
    def max_cache_entries(self) -> int | None:
        return self.cache.capacity()

    def transform(self, serve_event: ServeEvent) -> ResponseDefinition:
        """Render the serve event's response definition.

        Args:
            serve_event: The request, its matched stub and the response
                definition to render.

        Returns:
            A new response definition. On any template failure this is a
            500 with a one-line plain-text explanation, and an error
            sub-event is appended to ``serve_event``.
        """
        try:
            return self._render(serve_event)
        except TemplateError as exc:
            message = clean_error_message(str(exc))
            logger.warning(
                "Response templating failed for request %s: %s", serve_event.request.id, message
            )
            serve_event.append_sub_event(SubEvent.error(message))
            return ResponseDefinition.plain_text(500, message)

    def extra_model_elements(
        self,
        request: Request,
        response_definition: ResponseDefinition,
        files: FileSource,
        parameters: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        """Override to add names to the template model.

        Names must not be ``parameters`` or ``request``.
        """
        return {}

    def _render(self, serve_event: ServeEvent) -> ResponseDefinition:
        request = serve_event.request
        definition = serve_event.response_definition
        stub = serve_event.stub_mapping
        parameters = definition.transformer_parameters or {}

        model = build_model(
            request,
            stub.request.path_template,
            parameters,
            self.extra_model_elements(request, definition, self.files, parameters),
        )

        changes: dict[str, Any] = {}

        if definition.specifies_text_body_content:
            template = self.cache.get(
                TemplateCacheKey.for_inline_body(stub), definition.text_body or ""
            )
            changes.update(_body_changes(template.render(model), definition.is_json_body))
        elif definition.specifies_body_file:
            file_name_template = self.cache.get_uncached(definition.body_file_name or "")
            resolved_path = file_name_template.render(model)

            if parameter_flag(parameters, "disableBodyFileTemplating"):
                changes["body_file_name"] = resolved_path
            else:
                template = self.cache.get(
                    TemplateCacheKey.for_file_body(stub, resolved_path),
                    self.files.read_text_file(resolved_path),
                )
                changes.update(_body_changes(template.render(model), is_json=False))
                changes["body_file_name"] = None

        if definition.headers is not None:
            changes["headers"] = self._render_headers(
                definition.headers, stub, model, TemplateCacheKey.for_header
            )

        if definition.proxy_base_url is not None:
            template = self.cache.get(
                TemplateCacheKey.for_proxy_url(stub), definition.proxy_base_url
            )
            changes["proxy_base_url"] = template.render(model)

            if definition.additional_proxy_request_headers is not None:
                rendered = self._render_headers(
                    definition.additional_proxy_request_headers,
                    stub,
                    model,
                    TemplateCacheKey.for_proxy_header,
                )
                # The proxied request carries one value per header.
                changes["additional_proxy_request_headers"] = HttpHeaders.of(
                    HttpHeader.of(header.key, *header.values[:1]) for header in rendered.all()
                )

        return definition.model_copy(update=changes)

    def _render_headers(
        self,
        headers: HttpHeaders,
        stub: StubMapping,
        model: Mapping[str, Any],
        key_for: KeyFactory,
    ) -> HttpHeaders:
        rendered = []
        for header in headers.all():
            values = [
                self.cache.get(key_for(stub, header.key, index), value).render(model)
                for index, value in enumerate(header.values)
            ]
            rendered.append(HttpHeader(key=header.key, values=tuple(values)))
        return HttpHeaders.of(rendered)

    def after_stub_removed(self, stub: StubMapping) -> None:
        self.cache.invalidate_all()

    def after_stubs_reset(self) -> None:
        self.cache.invalidate_all()


def _body_changes(rendered: str, is_json: bool) -> dict[str, Any]:
    if not is_json:
        return {"body": rendered, "json_body": None}
    try:
        return {"body": None, "json_body": json.loads(rendered)}
    except json.JSONDecodeError as exc:
        raise RenderError(f"Rendered body is not valid JSON: {exc.msg}") from exc
