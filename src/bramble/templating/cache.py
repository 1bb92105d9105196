"""Bounded, thread-safe cache of compiled templates.

Keys identify one templated field of one stub, so repeated requests to
the same stub reuse the compiled template instead of parsing the source
again. When full, the least-recently-used entry is evicted; a hit counts
as a use.
"""

from __future__ import annotations

import enum
import logging
import math
import threading
from concurrent.futures import Future
from typing import NamedTuple

from cachetools import LRUCache

from bramble.models import StubMapping  # noqa: TCH001
from bramble.templating.engine import CompiledTemplate, TemplateEngine

logger = logging.getLogger(__name__)


class CacheKeyKind(enum.StrEnum):
    """Which field of a response definition a template came from."""

    INLINE_BODY = "inline_body"
    FILE_BODY = "file_body"
    HEADER = "header"
    PROXY_URL = "proxy_url"
    PROXY_HEADER = "proxy_header"


class TemplateCacheKey(NamedTuple):
    """Identifies one templated-field occurrence of one stub.

    ``name`` holds the resolved file path for file bodies and the header
    key for headers; ``index`` is the position of a header value.
    """

    stub_id: str
    kind: CacheKeyKind
    name: str | None = None
    index: int | None = None

    @classmethod
    def for_inline_body(cls, stub: StubMapping) -> TemplateCacheKey:
        return cls(stub.id, CacheKeyKind.INLINE_BODY)

    @classmethod
    def for_file_body(cls, stub: StubMapping, path: str) -> TemplateCacheKey:
        return cls(stub.id, CacheKeyKind.FILE_BODY, path)

    @classmethod
    def for_header(cls, stub: StubMapping, key: str, index: int) -> TemplateCacheKey:
        return cls(stub.id, CacheKeyKind.HEADER, key, index)

    @classmethod
    def for_proxy_url(cls, stub: StubMapping) -> TemplateCacheKey:
        return cls(stub.id, CacheKeyKind.PROXY_URL)

    @classmethod
    def for_proxy_header(cls, stub: StubMapping, key: str, index: int) -> TemplateCacheKey:
        return cls(stub.id, CacheKeyKind.PROXY_HEADER, key, index)


class CacheStats(NamedTuple):
    """Lookup counters.

    ``misses`` counts lookups that started a compile; ``waits`` counts
    lookups that joined a compile already in flight for the same key.
    """

    hits: int
    misses: int
    waits: int
    compiles: int


class TemplateCache:
    """Maps cache keys to compiled templates, compiling lazily on a miss.

    Concurrent misses on one key share a single compile: the first caller
    compiles while the others wait on its result. A compile that finishes
    after :meth:`invalidate_all` is handed to its waiters but not stored.
    Compile failures are never cached.
    """

    def __init__(self, engine: TemplateEngine, max_entries: int | None = None) -> None:
        """Initialize the cache.

        Args:
            engine: Compiles template sources on a miss.
            max_entries: Capacity bound, or None for an unbounded cache.
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.engine = engine
        self._max_entries = max_entries
        self._entries: LRUCache[TemplateCacheKey, CompiledTemplate] = LRUCache(
            maxsize=math.inf if max_entries is None else max_entries
        )
        self._in_flight: dict[TemplateCacheKey, Future[CompiledTemplate]] = {}
        self._generation = 0
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._waits = 0
        self._compiles = 0

    def get(self, key: TemplateCacheKey, source: str) -> CompiledTemplate:
        """Return the template for ``key``, compiling ``source`` on a miss.

        Raises:
            CompileError: If ``source`` is malformed.
        """
        with self._lock:
            template = self._entries.get(key)
            if template is not None:
                self._hits += 1
                return template
            pending = self._in_flight.get(key)
            if pending is None:
                self._misses += 1
                pending = Future()
                self._in_flight[key] = pending
                generation = self._generation
                owner = True
            else:
                self._waits += 1
                owner = False

        if not owner:
            return pending.result()

        try:
            template = self._compile(source)
        except BaseException as exc:
            with self._lock:
                if self._in_flight.get(key) is pending:
                    del self._in_flight[key]
            pending.set_exception(exc)
            raise

        with self._lock:
            if self._in_flight.get(key) is pending:
                del self._in_flight[key]
            if generation == self._generation:
                self._entries[key] = template
        pending.set_result(template)
        return template

    def get_uncached(self, source: str) -> CompiledTemplate:
        """Compile ``source`` without consulting or filling the cache."""
        return self._compile(source)

    def invalidate_all(self) -> None:
        """Drop every entry. Templates already handed out remain usable."""
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._in_flight.clear()
            self._generation += 1
        logger.debug("Template cache invalidated (%d entries dropped)", dropped)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def capacity(self) -> int | None:
        return self._max_entries

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(self._hits, self._misses, self._waits, self._compiles)

    def _compile(self, source: str) -> CompiledTemplate:
        template = self.engine.compile(source)
        with self._lock:
            self._compiles += 1
        return template
