"""HTTP front end serving remote objects through the local cache."""

from __future__ import annotations

import asyncio
import time
from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import ProxySettings, load_settings
from .errors import MissingMetadata, ProxyError
from .local_cache import LocalCacheStore
from .objects import ObjectView
from .remote import RemoteStore, S3ObjectStore
from .retriever import ObjectRetriever


FORBIDDEN_BODY = "Forbidden"

REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "s3proxy_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
        description="Object request latency",
    )
)


class ProxyState:
    def __init__(self, settings: ProxySettings, remote: RemoteStore, cache: Optional[LocalCacheStore]):
        self.settings = settings
        self.remote = remote
        self.cache = cache
        self.retriever = ObjectRetriever(remote, cache)
        self.logger = structlog.get_logger("s3proxy.app").bind(
            bucket=settings.bucket,
            cache="enabled" if cache is not None else "disabled",
        )

    def status(self) -> dict[str, object]:
        payload: dict[str, object] = {"bucket": self.settings.bucket, "cache": None}
        remote_status = getattr(self.remote, "status", None)
        if callable(remote_status):
            payload["remote"] = remote_status()
        if self.cache is not None:
            payload["cache"] = self.cache.status()
        return payload


def build_cache(settings: ProxySettings) -> Optional[LocalCacheStore]:
    if settings.cache_dir is None:
        return None
    cache = LocalCacheStore(settings.cache_dir)
    cache.ensure_writable()
    return cache


def get_state(request: Request) -> ProxyState:
    return request.app.state.proxy_state  # type: ignore[attr-defined]


def forbidden() -> PlainTextResponse:
    return PlainTextResponse(FORBIDDEN_BODY, status_code=status.HTTP_403_FORBIDDEN)


async def iter_view(view: ObjectView, chunk_size: int) -> AsyncIterator[bytes]:
    """Stream a view's content in chunks and close it once drained."""
    stream = view.content()
    try:
        while True:
            chunk = await asyncio.to_thread(stream.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await asyncio.to_thread(view.close)


def create_app(settings: ProxySettings | None = None, remote: RemoteStore | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging("s3proxy", settings.log_level)
    configure_tracing(
        service_name="s3proxy",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    cache = build_cache(settings)
    state = ProxyState(settings, remote or S3ObjectStore(settings), cache)
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)
    instrument_fastapi_app(app)
    app.state.proxy_state = state
    state.logger.info("proxy_configured", cache_root=str(cache.root) if cache else None)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        state = request.app.state.proxy_state  # type: ignore[attr-defined]
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            state.logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)

        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            state.logger.warning("http_request", **log_kwargs)
        else:
            state.logger.info("http_request", **log_kwargs)

        return response

    if settings.admin_prefix:
        _mount_admin_routes(app, settings.admin_prefix)

    @app.get("/{object_key:path}")
    async def get_object(object_key: str, state: ProxyState = Depends(get_state)) -> Response:
        key = "/" + object_key
        if key == "/":
            return forbidden()
        try:
            view = await state.retriever.retrieve(key)
        except ProxyError as exc:
            state.logger.info("object_unavailable", key=key, reason=type(exc).__name__)
            return forbidden()

        try:
            content_type = view.content_type()
        except MissingMetadata:
            await asyncio.to_thread(view.close)
            state.logger.error("object_missing_content_type", key=key, source=view.source)
            return forbidden()

        try:
            response = StreamingResponse(
                iter_view(view, state.settings.chunk_size),
                media_type=content_type,
                headers=view.metadata(),
            )
        except ValueError as exc:
            # header values must be latin-1 encodable
            await asyncio.to_thread(view.close)
            state.logger.warning("object_headers_rejected", key=key, source=view.source, error=str(exc))
            return forbidden()
        return response

    return app


def _mount_admin_routes(app: FastAPI, prefix: str) -> None:
    @app.get(f"{prefix}/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: ProxyState = Depends(get_state)) -> dict:
        """Health check for K8s readiness/liveness probes."""
        health: dict[str, object] = {"status": "healthy", "checks": state.status()}
        cache = state.cache
        if cache is not None and not cache.status().get("writable", False):
            health["status"] = "unhealthy"
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get(f"{prefix}/status")
    async def status_probe(state: ProxyState = Depends(get_state)) -> JSONResponse:
        return JSONResponse(state.status())

    @app.get(f"{prefix}/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: ProxyState = Depends(get_state)) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())
