"""Cache-aside retrieval of objects from the remote store."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter
from .errors import InvalidObjectKey, ObjectNotFound, PersistError, ProxyError
from .local_cache import CachedEntry, Freshness, LocalCacheStore
from .objects import LocalObjectView, ObjectDescriptor, ObjectView, RemoteObject, RemoteObjectView
from .remote import RemoteStore, read_body


LOGGER = structlog.get_logger("s3proxy.retriever")
TRACER = trace.get_tracer("s3proxy.retriever")

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("s3proxy_requests_total", "Object retrievals attempted"))
HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("s3proxy_cache_hits_total", "Objects served from the local cache"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("s3proxy_cache_misses_total", "Objects fetched from the remote store"))
STALE_COUNTER = GLOBAL_REGISTRY.register(Counter("s3proxy_cache_stale_total", "Cached objects found stale"))
PERSIST_FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("s3proxy_cache_persist_failures_total", "Fetched objects that could not be cached")
)
BYTES_FETCHED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("s3proxy_remote_bytes_fetched_total", "Bytes buffered from the remote store")
)


class ObjectRetriever:
    """Resolves an object key to an :class:`ObjectView`.

    With a cache store configured, a cached copy is served only after a
    metadata lookup confirms it is at least as new as the remote object.
    Misses and stale copies are fetched once, buffered, written to the cache
    on a best-effort basis and served from whichever copy is available.
    Without a cache store every request streams straight from the remote.
    """

    def __init__(self, remote: RemoteStore, cache: Optional[LocalCacheStore] = None):
        self._remote = remote
        self._cache = cache

    @property
    def cache(self) -> Optional[LocalCacheStore]:
        return self._cache

    async def retrieve(self, key: str) -> ObjectView:
        if key in ("", "/"):
            raise InvalidObjectKey("Object key refers to the store root")
        REQUEST_COUNTER.inc()
        with TRACER.start_as_current_span("s3proxy.retrieve", attributes={"s3proxy.key": key}) as span:
            if self._cache is not None:
                entry = await self._lookup(key)
                if entry is not None:
                    view = await self._serve_cached(key, entry)
                    if view is not None:
                        HIT_COUNTER.inc()
                        span.set_attribute("s3proxy.source", view.source)
                        return view
                else:
                    LOGGER.info("cache_miss", key=key)
            MISS_COUNTER.inc()
            view = await self._fetch_remote(key)
            span.set_attribute("s3proxy.source", view.source)
            return view

    async def _lookup(self, key: str) -> Optional[CachedEntry]:
        assert self._cache is not None
        try:
            return await asyncio.to_thread(self._cache.lookup, key)
        except OSError as exc:
            LOGGER.warning("cache_lookup_failed", key=key, error=exc.strerror or str(exc))
            return None

    async def _serve_cached(self, key: str, entry: CachedEntry) -> Optional[ObjectView]:
        """Return a view over a fresh cached copy, or ``None`` when it must be refetched."""
        assert self._cache is not None
        try:
            descriptor = await self._remote.head_by_key(key)
        except ProxyError as exc:
            # Never serve a copy the remote no longer vouches for.
            await asyncio.to_thread(self._cache.remove, key)
            log = LOGGER.info if isinstance(exc, ObjectNotFound) else LOGGER.warning
            log("cache_entry_dropped", key=key, reason=type(exc).__name__)
            raise

        if self._cache.validate(entry, descriptor) is Freshness.STALE:
            STALE_COUNTER.inc()
            LOGGER.info(
                "cache_stale",
                key=key,
                cached_at=entry.modified_at,
                remote_modified=descriptor.last_modified.isoformat() if descriptor.last_modified else None,
            )
            await asyncio.to_thread(self._cache.remove, key)
            return None

        try:
            handle = await asyncio.to_thread(self._cache.open, entry)
        except OSError as exc:
            LOGGER.warning("cache_open_failed", key=key, error=exc.strerror or str(exc))
            return None
        LOGGER.info("cache_hit", key=key, bytes=entry.size)
        return LocalObjectView(handle=handle, descriptor=descriptor)

    async def _fetch_remote(self, key: str) -> ObjectView:
        try:
            remote = await self._remote.get_by_key(key)
        except ProxyError as exc:
            LOGGER.info("remote_fetch_failed", key=key, reason=type(exc).__name__)
            raise
        if self._cache is None:
            return RemoteObjectView(remote=remote)

        data = await asyncio.to_thread(read_body, remote)
        BYTES_FETCHED_COUNTER.inc(len(data))
        return await self._persist_and_view(key, remote.descriptor, data)

    async def _persist_and_view(self, key: str, descriptor: ObjectDescriptor, data: bytes) -> ObjectView:
        assert self._cache is not None
        try:
            path = await asyncio.to_thread(self._cache.persist, key, data)
        except PersistError as exc:
            PERSIST_FAILURE_COUNTER.inc()
            LOGGER.warning("cache_persist_failed", key=key, error=str(exc.__cause__ or exc))
            return RemoteObjectView(remote=RemoteObject.from_bytes(descriptor, data))

        try:
            handle = await asyncio.to_thread(path.open, "rb")
        except OSError as exc:
            LOGGER.warning("cache_open_failed", key=key, error=exc.strerror or str(exc))
            return RemoteObjectView(remote=RemoteObject.from_bytes(descriptor, data))
        LOGGER.info("cache_write", key=key, bytes=len(data))
        return LocalObjectView(handle=handle, descriptor=descriptor)
