"""Tests for the FastAPI server."""

from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from bramble.config import BrambleConfig, FilesConfig, TemplatingConfig
from bramble.server import BrambleServer


def _server(tmp_path: Path, **templating: object) -> BrambleServer:
    config = BrambleConfig(
        files=FilesConfig(root=str(tmp_path), mappings=str(tmp_path / "mappings")),
        templating=TemplatingConfig(**templating),
    )
    return BrambleServer(config)


def _client(server: BrambleServer) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=server.app), base_url="http://test")


TEMPLATED_STUB = {
    "request": {"method": "GET", "urlPathTemplate": "/users/{userId}"},
    "response": {
        "status": 200,
        "jsonBody": {"id": "{{ request.path.userId }}", "q": "{{ request.query.q }}"},
        "headers": {"X-Request-Path": "{{ request.path }}"},
    },
}


@pytest.mark.asyncio
async def test_templated_response(tmp_path: Path) -> None:
    """A templated stub added through the admin API should render per request."""
    server = _server(tmp_path)
    async with _client(server) as client:
        created = await client.post("/__admin/mappings", json=TEMPLATED_STUB)
        assert created.status_code == 201

        response = await client.get("/users/42?q=hello")
        assert response.status_code == 200
        assert response.json() == {"id": "42", "q": "hello"}
        assert response.headers["x-request-path"] == "/users/42"
        assert response.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_unmatched_request_returns_404(tmp_path: Path) -> None:
    """Requests with no matching stub should get a plain-text 404."""
    server = _server(tmp_path)
    async with _client(server) as client:
        response = await client.get("/nothing-here")
        assert response.status_code == 404
        assert "No stub matches GET /nothing-here" in response.text


@pytest.mark.asyncio
async def test_template_failure_returns_500_and_journals_error(tmp_path: Path) -> None:
    """A broken template should yield a 500 and an error in the journal."""
    server = _server(tmp_path)
    stub = {
        "request": {"urlPath": "/broken"},
        "response": {"body": "{% if request.path %}never closed"},
    }
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=stub)
        response = await client.get("/broken")

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("text/plain")
        assert "inline@" not in response.text

        journal = (await client.get("/__admin/requests")).json()
        assert journal["meta"]["total"] == 1
        sub_events = journal["requests"][0]["sub_events"]
        assert len(sub_events) == 1
        assert sub_events[0]["type"] == "ERROR"
        assert sub_events[0]["data"]["message"] == response.text


@pytest.mark.asyncio
async def test_body_file_served(tmp_path: Path) -> None:
    """Body files should be read from the file root and rendered."""
    (tmp_path / "greeting.txt").write_text("Hello {{ request.query.name }}")
    server = _server(tmp_path)
    stub = {"request": {"urlPath": "/greet"}, "response": {"bodyFileName": "greeting.txt"}}
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=stub)
        response = await client.get("/greet?name=Ada")
        assert response.text == "Hello Ada"


@pytest.mark.asyncio
async def test_unreadable_body_file_journals_error(tmp_path: Path) -> None:
    """A body file the server cannot read should be a 500 with an error in the journal."""
    server = _server(tmp_path)
    stub = {
        "request": {"urlPath": "/download"},
        "response": {
            "bodyFileName": "{{ request.query.name }}.bin",
            "transformerParameters": {"disableBodyFileTemplating": True},
        },
    }
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=stub)
        response = await client.get("/download?name=missing")

        assert response.status_code == 500
        assert "missing.bin" in response.text

        journal = (await client.get("/__admin/requests")).json()
        sub_events = journal["requests"][0]["sub_events"]
        assert len(sub_events) == 1
        assert sub_events[0]["type"] == "ERROR"
        assert sub_events[0]["data"]["message"] == response.text


@pytest.mark.asyncio
async def test_non_global_templating_skips_unmarked_stubs(tmp_path: Path) -> None:
    """When templating is not global, only stubs naming the transformer render."""
    server = _server(tmp_path, global_=False)
    plain = {"request": {"urlPath": "/plain"}, "response": {"body": "{{ request.path }}"}}
    marked = {
        "request": {"urlPath": "/marked"},
        "response": {"body": "{{ request.path }}", "transformers": ["response-template"]},
    }
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=plain)
        await client.post("/__admin/mappings", json=marked)

        assert (await client.get("/plain")).text == "{{ request.path }}"
        assert (await client.get("/marked")).text == "/marked"


@pytest.mark.asyncio
async def test_cache_status_and_reset(tmp_path: Path) -> None:
    """Resetting mappings should empty the template cache."""
    server = _server(tmp_path)
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=TEMPLATED_STUB)
        await client.get("/users/1")
        await client.get("/users/2")

        status = (await client.get("/__admin/templating/cache")).json()
        assert status["size"] == 2
        assert status["compiles"] == 2
        assert status["hits"] == 2
        assert status["max_entries"] is None

        reset = await client.post("/__admin/mappings/reset")
        assert reset.status_code == 200
        assert (await client.get("/__admin/templating/cache")).json()["size"] == 0
        assert (await client.get("/users/1")).status_code == 404


@pytest.mark.asyncio
async def test_mapping_admin_lifecycle(tmp_path: Path) -> None:
    """Mappings can be listed, fetched and removed by ID."""
    server = _server(tmp_path)
    async with _client(server) as client:
        created = (await client.post("/__admin/mappings", json=TEMPLATED_STUB)).json()
        stub_id = created["id"]
        assert created["request"]["urlPathTemplate"] == "/users/{userId}"

        listing = (await client.get("/__admin/mappings")).json()
        assert listing["meta"]["total"] == 1

        assert (await client.get(f"/__admin/mappings/{stub_id}")).status_code == 200
        assert (await client.delete(f"/__admin/mappings/{stub_id}")).status_code == 200
        assert (await client.get(f"/__admin/mappings/{stub_id}")).status_code == 404
        assert (await client.delete(f"/__admin/mappings/{stub_id}")).status_code == 404


@pytest.mark.asyncio
async def test_journal_reset(tmp_path: Path) -> None:
    server = _server(tmp_path)
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=TEMPLATED_STUB)
        await client.get("/users/1")
        assert (await client.delete("/__admin/requests")).status_code == 200
        assert (await client.get("/__admin/requests")).json()["meta"]["total"] == 0


@pytest.mark.asyncio
async def test_proxy_with_templated_target_and_headers(tmp_path: Path) -> None:
    """Proxy stubs should forward to the rendered target with rendered headers."""
    seen: list[httpx.Request] = []

    def upstream(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="from upstream", headers={"X-Upstream": "yes"})

    server = _server(tmp_path)
    server._http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    stub = {
        "request": {"urlPath": "/orders"},
        "response": {
            "proxyBaseUrl": "http://{{ request.query.region }}.backend.test",
            "additionalProxyRequestHeaders": {
                "X-Forwarded-Path": ["{{ request.path }}", "ignored"]
            },
        },
    }
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=stub)
        response = await client.get("/orders?region=eu")

    assert response.status_code == 200
    assert response.text == "from upstream"
    assert response.headers["x-upstream"] == "yes"
    assert len(seen) == 1
    assert str(seen[0].url) == "http://eu.backend.test/orders?region=eu"
    assert seen[0].headers.get_list("x-forwarded-path") == ["/orders"]


@pytest.mark.asyncio
async def test_proxy_failure_returns_502(tmp_path: Path) -> None:
    """Unreachable proxy targets should yield a 502."""

    def upstream(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    server = _server(tmp_path)
    server._http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    stub = {"request": {"urlPath": "/down"}, "response": {"proxyBaseUrl": "http://down.test"}}
    async with _client(server) as client:
        await client.post("/__admin/mappings", json=stub)
        response = await client.get("/down")

    assert response.status_code == 502
