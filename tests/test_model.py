"""Tests for template context-model assembly."""

import pytest

from bramble.errors import ModelBuildError
from bramble.models import HttpHeaders, Request
from bramble.paths import PathTemplate
from bramble.templating.engine import TemplateEngine
from bramble.templating.model import MultiValue, RequestTemplateModel, build_model


def _make_request(**overrides: object) -> Request:
    fields: dict[str, object] = {
        "method": "post",
        "url": "/users/42/orders/7?sort=asc&tag=a&tag=b",
        "host": "api.example.test",
        "port": 8443,
        "scheme": "https",
        "headers": HttpHeaders.of({"Accept": "application/json", "X-Multi": ["1", "2"]}),
        "cookies": {"session": ("abc",)},
        "body": '{"name": "x"}',
    }
    fields.update(overrides)
    return Request(**fields)


def _render(source: str, model: object) -> str:
    return TemplateEngine().compile(source).render(model)


def test_reserved_entries_present() -> None:
    """The model should carry parameters and request entries."""
    model = build_model(_make_request(), None, {"greeting": "hi"})
    assert set(model) == {"parameters", "request"}
    assert model["parameters"]["greeting"] == "hi"
    assert isinstance(model["request"], RequestTemplateModel)


def test_extra_entries_added_after_reserved() -> None:
    """Extra entries from a collaborator should be added to the model."""
    model = build_model(_make_request(), None, {}, {"tenant": "acme"})
    assert list(model) == ["parameters", "request", "tenant"]
    assert model["tenant"] == "acme"


@pytest.mark.parametrize("name", ["request", "parameters"])
def test_reserved_name_collision_fails(name: str) -> None:
    """Extra entries may never replace reserved entries."""
    with pytest.raises(ModelBuildError):
        build_model(_make_request(), None, {}, {name: "shadow"})


def test_model_is_read_only() -> None:
    """Neither the model nor its parameters can be modified."""
    model = build_model(_make_request(), None, {"a": 1})
    with pytest.raises(TypeError):
        model["tenant"] = "x"  # type: ignore[index]
    with pytest.raises(TypeError):
        model["parameters"]["a"] = 2


def test_request_facts() -> None:
    """Method, URL and connection facts should be exposed."""
    model = build_model(_make_request(), None, {})
    assert _render("{{ request.method }} {{ request.url }}", model) == (
        "POST /users/42/orders/7?sort=asc&tag=a&tag=b"
    )
    assert _render("{{ request.baseUrl }}", model) == "https://api.example.test:8443"
    assert _render("{{ request.host }}:{{ request.port }}", model) == "api.example.test:8443"
    assert _render("{{ request.body }}", model) == '{"name": "x"}'


def test_path_segments_and_captures() -> None:
    """The path should render whole and index by segment or capture name."""
    template = PathTemplate("/users/{userId}/orders/{orderId}")
    model = build_model(_make_request(), template, {})
    assert _render("{{ request.path }}", model) == "/users/42/orders/7"
    assert _render("{{ request.path[1] }}", model) == "42"
    assert _render("{{ request.path.userId }}-{{ request.path.orderId }}", model) == "42-7"
    assert _render("{{ request.pathSegments | length }}", model) == "4"


def test_path_captures_empty_without_template() -> None:
    """Without a path template, capture lookups render empty."""
    model = build_model(_make_request(), None, {})
    assert _render("[{{ request.path.userId }}]", model) == "[]"


def test_query_parameters_single_and_multi() -> None:
    """Single query values render bare; multiple values render as a list."""
    model = build_model(_make_request(), None, {})
    assert _render("{{ request.query.sort }}", model) == "asc"
    assert _render("{{ request.query.tag }}", model) == "[a, b]"
    assert _render("{{ request.query.tag[1] }}", model) == "b"
    assert _render("{{ request.query.tag.first }}", model) == "a"
    assert _render("[{{ request.query.missing }}]", model) == "[]"


def test_headers_case_insensitive() -> None:
    """Header lookups should ignore case."""
    model = build_model(_make_request(), None, {})
    assert _render("{{ request.headers['accept'] }}", model) == "application/json"
    assert _render("{{ request.headers['x-multi'].last }}", model) == "2"


def test_cookies_exposed() -> None:
    """Cookies should be exposed as multi-valued entries."""
    model = build_model(_make_request(), None, {})
    assert _render("{{ request.cookies.session }}", model) == "abc"


def test_multi_value_string_forms() -> None:
    """MultiValue should render empty, single and multiple values distinctly."""
    assert str(MultiValue()) == ""
    assert str(MultiValue(("x",))) == "x"
    assert str(MultiValue(("x", "y"))) == "[x, y]"
    assert MultiValue().first is None
