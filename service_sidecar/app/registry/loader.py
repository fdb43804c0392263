"""
Handler registry for the sidecar.

Handler modules live under the API directory and are mapped to routes by
their relative path:

    api/news.py                 -> /api/news
    api/market/index.py         -> /api/market
    api/details/[id].py         -> /api/details/[id]
    api/feeds/[...path].py      -> /api/feeds/[...path]   (one or more segments)
    api/docs/[[...path]].py     -> /api/docs/[[...path]]  (zero or more segments)

Files and directories starting with ``_`` or ``.`` are helpers, as are test
modules. Every route module must expose a ``handler(request, context)``
callable.
"""

import hashlib
import importlib.util
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote

from shared.logging import get_logger

logger = get_logger("sidecar.registry")

_CATCH_ALL = re.compile(r"^\[\.\.\.([A-Za-z_][A-Za-z0-9_]*)\]$")
_OPTIONAL_CATCH_ALL = re.compile(r"^\[\[\.\.\.([A-Za-z_][A-Za-z0-9_]*)\]\]$")
_DYNAMIC = re.compile(r"^\[([A-Za-z_][A-Za-z0-9_]*)\]$")


class SegmentKind(Enum):
    """Route segment kinds, in specificity order."""
    STATIC = 0
    DYNAMIC = 1
    CATCH_ALL = 2
    OPTIONAL_CATCH_ALL = 3


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    value: str

    @classmethod
    def parse(cls, raw: str) -> "Segment":
        for pattern, kind in (
            (_OPTIONAL_CATCH_ALL, SegmentKind.OPTIONAL_CATCH_ALL),
            (_CATCH_ALL, SegmentKind.CATCH_ALL),
            (_DYNAMIC, SegmentKind.DYNAMIC),
        ):
            match = pattern.match(raw)
            if match:
                return cls(kind, match.group(1))
        return cls(SegmentKind.STATIC, raw)

    @property
    def is_rest(self) -> bool:
        return self.kind in (SegmentKind.CATCH_ALL, SegmentKind.OPTIONAL_CATCH_ALL)


@dataclass(frozen=True)
class Route:
    """A URL pattern bound to a loaded handler."""

    pattern: str
    segments: Tuple[Segment, ...]
    handler: Callable[..., Any] = field(compare=False)
    source: Path = field(compare=False)

    @property
    def sort_key(self) -> Tuple:
        return (tuple(segment.kind.value for segment in self.segments), -len(self.segments), self.pattern)

    def match(self, path: str) -> Optional[Dict[str, str]]:
        """Return the route params when ``path`` matches, else None."""
        parts = [part for part in path.split("/") if part]
        params: Dict[str, str] = {}

        for index, segment in enumerate(self.segments):
            if segment.is_rest:
                rest = parts[index:]
                if not rest and segment.kind is SegmentKind.CATCH_ALL:
                    return None
                params[segment.value] = "/".join(unquote(part) for part in rest)
                return params

            if index >= len(parts):
                return None
            if segment.kind is SegmentKind.STATIC:
                if parts[index] != segment.value:
                    return None
            else:
                params[segment.value] = unquote(parts[index])

        if len(parts) != len(self.segments):
            return None
        return params


@dataclass(frozen=True)
class LoadFailure:
    """A handler module that could not be turned into a route."""

    source: Path
    pattern: Optional[str]
    error: str

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"source": str(self.source), "route": self.pattern, "error": self.error}


class HandlerLoadError(Exception):
    """A module did not yield a usable handler."""


def resolve_api_dir(
    api_dir: Optional[Union[str, Path]] = None,
    resource_dir: Optional[Union[str, Path]] = None,
) -> Optional[Path]:
    """Find the handler directory.

    An explicit ``api_dir`` wins. Otherwise packaged builds place handlers
    under ``<resource_dir>/_up_/api``; plain checkouts under
    ``<resource_dir>/api``.
    """
    if api_dir:
        return Path(api_dir).expanduser().resolve()
    if not resource_dir:
        return None

    root = Path(resource_dir).expanduser().resolve()
    packaged = root / "_up_" / "api"
    if packaged.is_dir():
        return packaged
    return root / "api"


def _is_helper(relative: Path) -> bool:
    for part in relative.parts:
        if part.startswith("_") or part.startswith("."):
            return True
    stem = relative.stem
    return stem.startswith("test_") or stem.endswith("_test") or stem == "conftest"


def _pattern_for(relative: Path) -> str:
    parts = list(relative.with_suffix("").parts)
    if parts and parts[-1] == "index":
        parts.pop()
    return "/".join(["/api", *parts]) if parts else "/api"


def _module_name(source: Path) -> str:
    digest = hashlib.sha1(str(source).encode("utf-8")).hexdigest()[:12]
    return f"local_api_handler_{re.sub(r'[^0-9A-Za-z_]', '_', source.stem)}_{digest}"


def _load_handler(source: Path) -> Callable[..., Any]:
    module_name = _module_name(source)
    spec = importlib.util.spec_from_file_location(module_name, source)
    if spec is None or spec.loader is None:
        raise HandlerLoadError("not an importable module")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise

    handler = getattr(module, "handler", None)
    if not callable(handler):
        sys.modules.pop(module_name, None)
        raise HandlerLoadError("module does not define a callable 'handler'")
    return handler


class HandlerRegistry:
    """Immutable route table built once at startup."""

    def __init__(
        self,
        routes: Tuple[Route, ...] = (),
        api_dir: Optional[Path] = None,
        failures: Tuple[LoadFailure, ...] = (),
    ):
        self._routes = tuple(sorted(routes, key=lambda route: route.sort_key))
        self.api_dir = api_dir
        self.failures = tuple(failures)

    @classmethod
    def discover(cls, api_dir: Optional[Path]) -> "HandlerRegistry":
        """Scan ``api_dir`` and load every route module in it.

        A module that fails to import, lacks a handler, or duplicates an
        existing route is recorded in ``failures`` and skipped; discovery
        never aborts because of one bad module.
        """
        if api_dir is None:
            logger.info("No API directory configured, serving built-in routes only")
            return cls()
        if not api_dir.is_dir():
            logger.warning("API directory not found", api_dir=str(api_dir))
            return cls(api_dir=api_dir)

        routes: List[Route] = []
        failures: List[LoadFailure] = []
        seen: Dict[str, Path] = {}

        for source in sorted(api_dir.rglob("*.py")):
            relative = source.relative_to(api_dir)
            if _is_helper(relative):
                continue

            pattern = _pattern_for(relative)
            segments = tuple(Segment.parse(part) for part in pattern.strip("/").split("/"))

            if any(segment.is_rest for segment in segments[:-1]):
                failures.append(LoadFailure(source, pattern, "catch-all segment must be last"))
                continue
            if pattern in seen:
                failures.append(LoadFailure(source, pattern, f"duplicates {seen[pattern].name}"))
                continue

            try:
                handler = _load_handler(source)
            except (Exception, SystemExit) as e:
                logger.error(
                    "Failed to load handler module",
                    source=str(relative),
                    route=pattern,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                failures.append(LoadFailure(source, pattern, f"{type(e).__name__}: {e}"))
                continue

            seen[pattern] = source
            routes.append(Route(pattern=pattern, segments=segments, handler=handler, source=source))

        registry = cls(tuple(routes), api_dir=api_dir, failures=tuple(failures))
        logger.info(
            "Handler registry built",
            api_dir=str(api_dir),
            routes=len(registry),
            failures=len(registry.failures),
        )
        return registry

    @property
    def routes(self) -> Tuple[Route, ...]:
        return self._routes

    def match(self, path: str) -> Optional[Tuple[Route, Dict[str, str]]]:
        """Return the most specific route matching ``path`` and its params."""
        for route in self._routes:
            params = route.match(path)
            if params is not None:
                return route, params
        return None

    def __len__(self) -> int:
        return len(self._routes)
