"""
Unit tests for handler discovery and route matching.
"""

import textwrap
from pathlib import Path

import pytest

from service_sidecar.app.registry import HandlerRegistry, Segment, SegmentKind, resolve_api_dir

OK_HANDLER = """
import httpx

async def handler(request, context):
    return httpx.Response(200, json={"route": context.route, "params": dict(context.params)})
"""


def write_module(root: Path, relative: str, source: str = OK_HANDLER) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source))
    return path


class TestResolveApiDir:
    """Test cases for API directory resolution."""

    def test_explicit_api_dir_wins(self, tmp_path):
        """An explicit directory is used even when a resource root is given."""
        explicit = tmp_path / "handlers"
        explicit.mkdir()
        (tmp_path / "res" / "_up_" / "api").mkdir(parents=True)

        assert resolve_api_dir(explicit, tmp_path / "res") == explicit.resolve()

    def test_packaged_layout_preferred(self, tmp_path):
        """Packaged builds keep handlers under _up_/api."""
        packaged = tmp_path / "_up_" / "api"
        packaged.mkdir(parents=True)
        (tmp_path / "api").mkdir()

        assert resolve_api_dir(None, tmp_path) == packaged.resolve()

    def test_plain_layout_fallback(self, tmp_path):
        """Without _up_, the api directory beside the resources is used."""
        assert resolve_api_dir(None, tmp_path) == (tmp_path / "api").resolve()

    def test_nothing_configured(self):
        """No directory and no resource root yields None."""
        assert resolve_api_dir(None, None) is None


class TestSegment:
    """Test cases for segment parsing."""

    @pytest.mark.parametrize("raw,kind,value", [
        ("news", SegmentKind.STATIC, "news"),
        ("[id]", SegmentKind.DYNAMIC, "id"),
        ("[...path]", SegmentKind.CATCH_ALL, "path"),
        ("[[...path]]", SegmentKind.OPTIONAL_CATCH_ALL, "path"),
    ])
    def test_parse(self, raw, kind, value):
        """Bracket syntax selects the segment kind."""
        segment = Segment.parse(raw)
        assert segment.kind is kind
        assert segment.value == value


class TestHandlerRegistry:
    """Test cases for HandlerRegistry."""

    @pytest.fixture
    def api_dir(self, tmp_path):
        """Create a handler tree covering each route shape."""
        root = tmp_path / "api"
        write_module(root, "news.py")
        write_module(root, "market/index.py")
        write_module(root, "details/[id].py")
        write_module(root, "details/batch.py")
        write_module(root, "feeds/[...path].py")
        write_module(root, "wingbits/[[...path]].py")
        write_module(root, "_cors.py", "VALUE = 1\n")
        write_module(root, "_lib/helpers.py")
        write_module(root, "test_news.py")
        return root

    @pytest.fixture
    def registry(self, api_dir):
        """Build a registry from the handler tree."""
        return HandlerRegistry.discover(api_dir)

    def test_discovers_route_modules(self, registry):
        """Every route module becomes exactly one route."""
        patterns = {route.pattern for route in registry.routes}
        assert patterns == {
            "/api/news",
            "/api/market",
            "/api/details/[id]",
            "/api/details/batch",
            "/api/feeds/[...path]",
            "/api/wingbits/[[...path]]",
        }
        assert len(registry) == 6
        assert registry.failures == ()

    def test_helpers_are_not_routes(self, registry):
        """Underscore modules and tests never match a path."""
        assert registry.match("/api/_cors") is None
        assert registry.match("/api/_lib/helpers") is None
        assert registry.match("/api/test_news") is None

    def test_static_match(self, registry):
        """A static path resolves to its route with no params."""
        route, params = registry.match("/api/news")
        assert route.pattern == "/api/news"
        assert params == {}

    def test_index_maps_to_directory(self, registry):
        """index.py serves its directory path."""
        route, _ = registry.match("/api/market")
        assert route.pattern == "/api/market"

    def test_dynamic_segment(self, registry):
        """Dynamic segments are captured and URL-decoded."""
        route, params = registry.match("/api/details/abc%20123")
        assert route.pattern == "/api/details/[id]"
        assert params == {"id": "abc 123"}

    def test_static_beats_dynamic(self, registry):
        """A static sibling wins over a dynamic segment."""
        route, params = registry.match("/api/details/batch")
        assert route.pattern == "/api/details/batch"
        assert params == {}

    def test_catch_all_requires_a_segment(self, registry):
        """A catch-all needs at least one segment."""
        route, params = registry.match("/api/feeds/a/b/c")
        assert route.pattern == "/api/feeds/[...path]"
        assert params == {"path": "a/b/c"}
        assert registry.match("/api/feeds") is None

    def test_optional_catch_all(self, registry):
        """An optional catch-all also matches its bare prefix."""
        route, params = registry.match("/api/wingbits")
        assert route.pattern == "/api/wingbits/[[...path]]"
        assert params == {"path": ""}

        _, params = registry.match("/api/wingbits/flights/123")
        assert params == {"path": "flights/123"}

    def test_unknown_path(self, registry):
        """Paths without a module do not match."""
        assert registry.match("/api/unknown") is None
        assert registry.match("/api/news/extra") is None

    def test_routes_are_immutable(self, registry):
        """The route table is a tuple."""
        assert isinstance(registry.routes, tuple)

    def test_broken_module_is_isolated(self, tmp_path):
        """A module that fails to import is skipped; the rest still load."""
        root = tmp_path / "api"
        write_module(root, "good.py")
        write_module(root, "broken.py", "raise RuntimeError('boom at import')\n")
        write_module(root, "nohandler.py", "VALUE = 1\n")

        registry = HandlerRegistry.discover(root)

        assert [route.pattern for route in registry.routes] == ["/api/good"]
        failed = {failure.pattern: failure.error for failure in registry.failures}
        assert "boom at import" in failed["/api/broken"]
        assert "handler" in failed["/api/nohandler"]
        assert registry.match("/api/broken") is None

    def test_exit_at_import_is_isolated(self, tmp_path):
        """A module calling sys.exit() at import fails alone."""
        root = tmp_path / "api"
        write_module(root, "bad.py", "import sys\nsys.exit(1)\n")
        write_module(root, "good.py")

        registry = HandlerRegistry.discover(root)

        assert [route.pattern for route in registry.routes] == ["/api/good"]
        failed = {failure.pattern: failure.error for failure in registry.failures}
        assert failed["/api/bad"].startswith("SystemExit")
        assert registry.match("/api/good") is not None

    def test_catch_all_must_be_last(self, tmp_path):
        """A catch-all directory with children is rejected."""
        root = tmp_path / "api"
        write_module(root, "[...path]/more.py")

        registry = HandlerRegistry.discover(root)

        assert len(registry) == 0
        assert registry.failures[0].error == "catch-all segment must be last"

    def test_missing_directory(self, tmp_path):
        """A missing directory yields an empty registry."""
        registry = HandlerRegistry.discover(tmp_path / "nope")
        assert len(registry) == 0
        assert registry.match("/api/news") is None

    def test_no_directory(self):
        """No directory configured yields an empty registry."""
        registry = HandlerRegistry.discover(None)
        assert registry.api_dir is None
        assert len(registry) == 0

    def test_packaged_layout_single_route(self, tmp_path):
        """The _up_/api layout is discovered from the resource root."""
        packaged = tmp_path / "_up_" / "api"
        write_module(packaged, "fred-data.py")

        api_dir = resolve_api_dir(None, tmp_path)
        registry = HandlerRegistry.discover(api_dir)

        assert registry.api_dir == packaged.resolve()
        assert len(registry.routes) == 1
        assert registry.routes[0].pattern == "/api/fred-data"
