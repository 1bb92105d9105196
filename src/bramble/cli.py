"""Command-line interface for Bramble."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from bramble.config import load_config
from bramble.errors import CompileError, ConfigError
from bramble.files import DirectoryFileSource
from bramble.models import Request, ResponseDefinition, ServeEvent
from bramble.stubs import StubRegistry, load_mappings
from bramble.templating.engine import TemplateEngine
from bramble.transformer import ResponseTemplateTransformer

console = Console()


def _setup_logging(level: str) -> None:
    """Configure logging with the specified level.

    Args:
        level: Logging level string (debug, info, warning, error).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def template_sources(definition: ResponseDefinition) -> Iterator[tuple[str, str]]:
    """Yield (field label, template source) for every templated field."""
    if definition.specifies_text_body_content:
        yield "body", definition.text_body or ""
    if definition.body_file_name is not None:
        yield "bodyFileName", definition.body_file_name
    for header in (definition.headers.all() if definition.headers else ()):
        for index, value in enumerate(header.values):
            yield f"headers.{header.key}[{index}]", value
    if definition.proxy_base_url is not None:
        yield "proxyBaseUrl", definition.proxy_base_url
    extra = definition.additional_proxy_request_headers
    for header in (extra.all() if extra else ()):
        for index, value in enumerate(header.values):
            yield f"additionalProxyRequestHeaders.{header.key}[{index}]", value


@click.group()
@click.option("--config", "-c", default=None, help="Path to bramble.yaml config file")
@click.pass_context
def main(ctx: click.Context, config: str | None) -> None:
    """Bramble: response templating for stub-based HTTP mocks."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    try:
        cfg = load_config(config)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["config"] = cfg
    _setup_logging(cfg.logging.level)


@main.command()
@click.option("--host", default=None, help="Override server host")
@click.option("--port", "-p", default=None, type=int, help="Override server port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the Bramble mock server."""
    import uvicorn

    from bramble.server import create_app

    cfg = ctx.obj["config"]
    server_host = host or cfg.server.host
    server_port = port or cfg.server.port

    console.print(f"[bold green]Starting Bramble on {server_host}:{server_port}[/bold green]")

    app = create_app(ctx.obj["config_path"])
    uvicorn.run(app, host=server_host, port=server_port, log_level=cfg.logging.level)


@main.command()
@click.option("--mappings", "-m", default=None, help="Override the mappings directory")
@click.pass_context
def check(ctx: click.Context, mappings: str | None) -> None:
    """Compile every templated field of every stub mapping."""
    cfg = ctx.obj["config"]
    try:
        stubs = load_mappings(mappings or cfg.files.mappings)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    engine = TemplateEngine(
        helpers=cfg.templating.helpers,
        permitted_system_keys=cfg.templating.permitted_system_keys,
    )
    table = Table(title="Template Check")
    table.add_column("Stub", style="dim")
    table.add_column("Field", style="cyan")
    table.add_column("Status")

    failures = 0
    for stub in stubs:
        for field, source in template_sources(stub.response):
            try:
                engine.compile(source)
                status = "[green]ok[/green]"
            except CompileError as exc:
                failures += 1
                status = f"[red]{escape(str(exc))}[/red]"
            table.add_row(stub.name or stub.id[:12], field, status)

    console.print(table)
    if failures:
        console.print(f"[bold red]{failures} template(s) failed to compile[/bold red]")
        ctx.exit(1)


@main.command()
@click.argument("url")
@click.option("--method", "-X", default="GET", help="HTTP method of the sample request")
@click.option("--header", "-H", "headers", multiple=True, help="Request header 'Name: value'")
@click.option("--body", "-d", default=None, help="Request body")
@click.option("--mappings", "-m", default=None, help="Override the mappings directory")
@click.pass_context
def render(
    ctx: click.Context,
    url: str,
    method: str,
    headers: tuple[str, ...],
    body: str | None,
    mappings: str | None,
) -> None:
    """Render the response a sample request would receive."""
    cfg = ctx.obj["config"]
    try:
        stubs = load_mappings(mappings or cfg.files.mappings)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    registry = StubRegistry()
    for stub in stubs:
        registry.add(stub)

    header_map: dict[str, list[str]] = {}
    for raw in headers:
        name, _, value = raw.partition(":")
        header_map.setdefault(name.strip(), []).append(value.strip())

    request = Request(method=method.upper(), url=url, headers=header_map, body=body)
    stub = registry.find_match(request)
    if stub is None:
        raise click.ClickException(f"No stub matches {request.method} {url}")

    transformer = ResponseTemplateTransformer(
        DirectoryFileSource(cfg.files.root), cfg.templating
    )
    event = ServeEvent.of(request, stub)
    definition = transformer.transform(event) if transformer.applies_to(stub) else stub.response

    click.echo(
        json.dumps(
            definition.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2
        )
    )
    for sub_event in event.sub_events:
        console.print(f"[yellow]{sub_event.type}[/yellow] {escape(sub_event.message or '')}")


if __name__ == "__main__":
    main()
