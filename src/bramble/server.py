"""FastAPI host for Bramble.

Serves registered stubs through the response-template transformer and
exposes a small admin API under ``/__admin`` for managing stubs and
inspecting the request journal and template cache.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bramble.config import BrambleConfig, load_config
from bramble.errors import ConfigError, FileAccessError
from bramble.files import DirectoryFileSource
from bramble.journal import RequestJournal
from bramble.models import HttpHeader, HttpHeaders
from bramble.models import Request as StubRequest
from bramble.models import ResponseDefinition, ServeEvent, StubMapping, SubEvent
from bramble.stubs import StubRegistry, load_mappings
from bramble.transformer import ResponseTemplateTransformer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

ADMIN_PREFIX = "/__admin"

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "content-encoding",
        "content-length",
        "host",
        "keep-alive",
        "transfer-encoding",
        "upgrade",
    }
)


class BrambleServer:
    """Mock server that matches requests to stubs and renders their responses.

    Owns the stub registry, the request journal and one response-template
    transformer, which is registered as a stub lifecycle listener.
    """

    def __init__(
        self,
        config: BrambleConfig | None = None,
        transformer: ResponseTemplateTransformer | None = None,
        registry: StubRegistry | None = None,
    ) -> None:
        """Initialize the Bramble server.

        Args:
            config: Optional configuration. If None, loads from bramble.yaml.
            transformer: Transformer to use; built from ``config`` when None.
            registry: Stub registry to serve from; a new one when None.
        """
        self.config = config or load_config()
        self.files = DirectoryFileSource(self.config.files.root)
        self.transformer = transformer or ResponseTemplateTransformer(
            self.files, self.config.templating
        )
        self.registry = registry or StubRegistry()
        self.registry.add_listener(self.transformer)
        self.journal = RequestJournal(
            max_entries=self.config.journal.max_entries,
            log_path=self.config.journal.log_file,
        )
        self._http_client: httpx.AsyncClient | None = None
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            A configured FastAPI instance with admin and stub routes.
        """

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            self._startup()
            yield
            await self._shutdown()

        app = FastAPI(
            title="Bramble",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=lifespan,
        )

        @app.get(f"{ADMIN_PREFIX}/mappings")
        async def list_mappings() -> dict[str, Any]:
            stubs = self.registry.all()
            return {
                "mappings": [_dump(stub) for stub in stubs],
                "meta": {"total": len(stubs)},
            }

        @app.post(f"{ADMIN_PREFIX}/mappings", status_code=201)
        async def add_mapping(stub: StubMapping) -> dict[str, Any]:
            return _dump(self.registry.add(stub))

        @app.post(f"{ADMIN_PREFIX}/mappings/reset")
        async def reset_mappings() -> dict[str, Any]:
            self.registry.reset()
            return {"status": "ok"}

        @app.get(f"{ADMIN_PREFIX}/mappings/{{stub_id}}")
        async def get_mapping(stub_id: str) -> Response:
            stub = self.registry.get(stub_id)
            if stub is None:
                return JSONResponse({"error": "not_found"}, status_code=404)
            return JSONResponse(_dump(stub))

        @app.delete(f"{ADMIN_PREFIX}/mappings/{{stub_id}}")
        async def remove_mapping(stub_id: str) -> Response:
            if self.registry.remove(stub_id) is None:
                return JSONResponse({"error": "not_found"}, status_code=404)
            return JSONResponse({"status": "ok"})

        @app.get(f"{ADMIN_PREFIX}/requests")
        async def list_requests(limit: int | None = None) -> dict[str, Any]:
            events = self.journal.events(limit)
            return {
                "requests": [event.model_dump(mode="json", by_alias=True) for event in events],
                "meta": {"total": len(self.journal)},
            }

        @app.delete(f"{ADMIN_PREFIX}/requests")
        async def reset_requests() -> dict[str, Any]:
            self.journal.reset()
            return {"status": "ok"}

        @app.get(f"{ADMIN_PREFIX}/templating/cache")
        async def cache_status() -> dict[str, Any]:
            stats = self.transformer.cache.stats()
            return {
                "size": self.transformer.cache_size,
                "max_entries": self.transformer.max_cache_entries,
                "hits": stats.hits,
                "misses": stats.misses,
                "waits": stats.waits,
                "compiles": stats.compiles,
            }

        @app.api_route(
            "/{path:path}",
            methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
        )
        async def serve_stub(request: Request, path: str) -> Response:
            return await self._handle_request(request)

        return app

    def _startup(self) -> None:
        """Load stub mappings from the configured directory."""
        try:
            for stub in load_mappings(self.config.files.mappings):
                self.registry.add(stub)
        except ConfigError as exc:
            logger.error("Failed to load stub mappings: %s", exc)
            raise

        logger.info(
            "Bramble started on %s:%d with %d stubs",
            self.config.server.host,
            self.config.server.port,
            len(self.registry),
        )

    async def _shutdown(self) -> None:
        """Clean up resources on server shutdown."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("Bramble shutting down")

    async def _handle_request(self, request: Request) -> Response:
        """Match an incoming request to a stub and serve its response.

        Args:
            request: The incoming FastAPI Request.

        Returns:
            The rendered stub response, or a 404 if no stub matches.
        """
        stub_request = await _to_stub_request(request)
        stub = self.registry.find_match(stub_request)
        if stub is None:
            logger.info("No stub matched %s %s", stub_request.method, stub_request.url)
            return Response(
                content=f"No stub matches {stub_request.method} {stub_request.url}",
                status_code=404,
                media_type="text/plain",
            )

        event = ServeEvent.of(stub_request, stub)
        definition = stub.response
        if self.transformer.applies_to(stub):
            definition = await run_in_threadpool(self.transformer.transform, event)

        try:
            if definition.fixed_delay_milliseconds:
                await asyncio.sleep(definition.fixed_delay_milliseconds / 1000.0)

            if definition.is_proxy_response:
                return await self._proxy(stub_request, definition)
            return self._render_response(definition, event)
        finally:
            self.journal.record(event)

    def _render_response(self, definition: ResponseDefinition, event: ServeEvent) -> Response:
        """Convert a response definition into a Starlette response.

        A body file that cannot be read becomes a plain-text 500, and the
        failure is added to ``event`` as an error sub-event.
        """
        content: bytes | str = definition.text_body or ""
        if definition.specifies_body_file:
            try:
                content = self.files.read_binary_file(definition.body_file_name or "")
            except FileAccessError as exc:
                logger.warning("Serving body file for request %s failed: %s", event.request.id, exc)
                event.append_sub_event(SubEvent.error(str(exc)))
                definition = ResponseDefinition.plain_text(500, str(exc))
                content = definition.text_body or ""

        response = Response(content=content, status_code=definition.status)
        headers = definition.headers or HttpHeaders()
        for header in headers.all():
            for value in header.values:
                response.headers.append(header.key, value)
        if definition.is_json_body and headers.get_header("Content-Type") is None:
            response.headers["Content-Type"] = "application/json"
        return response

    async def _proxy(self, stub_request: StubRequest, definition: ResponseDefinition) -> Response:
        """Forward a request to the definition's proxy base URL."""
        target = (definition.proxy_base_url or "").rstrip("/") + stub_request.url
        outgoing = {
            header.key: header.values[-1]
            for header in stub_request.headers.all()
            if header.key.lower() not in HOP_BY_HOP_HEADERS and header.values
        }
        extra = definition.additional_proxy_request_headers or HttpHeaders()
        for header in extra.all():
            if header.values:
                outgoing[header.key] = header.values[0]

        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)

        try:
            upstream = await self._http_client.request(
                stub_request.method,
                target,
                headers=outgoing,
                content=stub_request.body.encode("utf-8") if stub_request.body else None,
            )
        except httpx.HTTPError as exc:
            logger.warning("Proxy request to %s failed: %s", target, exc)
            return Response(
                content=f"Proxy request to {target} failed",
                status_code=502,
                media_type="text/plain",
            )

        response = Response(content=upstream.content, status_code=upstream.status_code)
        for key, value in upstream.headers.multi_items():
            if key.lower() not in HOP_BY_HOP_HEADERS:
                response.headers.append(key, value)
        return response


async def _to_stub_request(request: Request) -> StubRequest:
    """Build a Bramble request model from a FastAPI request."""
    body_bytes = await request.body()
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    default_port = 443 if request.url.scheme == "https" else 80

    return StubRequest(
        method=request.method,
        url=url,
        scheme=request.url.scheme,
        host=request.url.hostname or "localhost",
        port=request.url.port or default_port,
        client_ip=request.client.host if request.client else "0.0.0.0",
        headers=HttpHeaders.of(
            HttpHeader.of(key, value) for key, value in request.headers.items()
        ),
        cookies={name: (value,) for name, value in request.cookies.items()},
        body=body_bytes.decode("utf-8", errors="replace") if body_bytes else None,
    )


def _dump(stub: StubMapping) -> dict[str, Any]:
    return stub.model_dump(mode="json", by_alias=True, exclude_none=True)


def create_app(config_path: str | None = None) -> FastAPI:
    """Create a Bramble FastAPI application.

    This is the main entry point for ASGI servers like uvicorn.

    Args:
        config_path: Optional path to the bramble.yaml config file.

    Returns:
        A configured FastAPI application.
    """
    config = load_config(config_path)
    server = BrambleServer(config)
    return server.app
