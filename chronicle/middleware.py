"""
ASGI middleware: cache-aside response caching and request ids.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Mapping, Optional, Sequence

from starlette.concurrency import run_in_threadpool
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from chronicle.cache import CacheError, CacheMiss, CacheStore
from chronicle.cache_keys import build_cache_key, parse_query, request_uri

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class CapturingSend:
    """
    Wraps an ASGI ``send`` and writes the response body through to the cache.

    The first ``http.response.start`` status is recorded. A 200 body that
    arrives as a single message is stored under ``key`` before being
    forwarded. Streamed bodies are forwarded untouched and never cached.
    """

    def __init__(self, send: Send, store: CacheStore, key: str, ttl_seconds: float):
        self.send = send
        self.store = store
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.status: Optional[int] = None
        self.body_seen = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            if self.status is None:
                self.status = message["status"]
        elif message["type"] == "http.response.body" and not self.body_seen:
            self.body_seen = True
            if self.status == 200 and not message.get("more_body", False):
                await self._write_through(message.get("body", b""))
        await self.send(message)

    async def _write_through(self, body: bytes) -> None:
        try:
            await run_in_threadpool(
                self.store.set_with_expiry, self.key, body, self.ttl_seconds
            )
        except CacheError as exc:
            logger.warning("Failed to cache response for %s: %s", self.key, exc)


class ResponseCacheMiddleware:
    """
    Cache-aside wrapper for idempotent GET endpoints.

    ``enabled`` is fixed at construction. Only GET requests under one of
    ``paths`` are considered, and ``accepts`` may veto a request by its query
    parameters so that requests the endpoint would reject never reach the
    cache. Cache failures of any kind fall through to the wrapped app.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: CacheStore,
        *,
        enabled: bool = True,
        ttl_seconds: float = 60,
        paths: Sequence[str] = (),
        accepts: Optional[Callable[[Mapping[str, str]], bool]] = None,
    ):
        self.app = app
        self.store = store
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self.paths = tuple(paths)
        self.accepts = accepts

    def _should_cache(self, scope: Scope, query: Mapping[str, str]) -> bool:
        if not self.enabled or scope["type"] != "http" or scope["method"] != "GET":
            return False
        if self.paths and not scope["path"].startswith(self.paths):
            return False
        if self.accepts is not None and not self.accepts(query):
            return False
        return True

    async def _lookup(self, *keys: str) -> Optional[bytes]:
        for key in keys:
            try:
                return await run_in_threadpool(self.store.get, key)
            except CacheMiss:
                continue
            except CacheError as exc:
                logger.warning("Cache lookup for %s failed: %s", key, exc)
                return None
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_string = scope.get("query_string", b"")
        query = parse_query(query_string)
        if not self._should_cache(scope, query):
            await self.app(scope, receive, send)
            return

        key = build_cache_key(scope["path"], query)
        cached = await self._lookup(request_uri(scope["path"], query_string), key)
        if cached is not None:
            response = Response(
                content=cached, status_code=200, media_type="application/json"
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, CapturingSend(send, self.store, key, self.ttl_seconds))


class RequestIdMiddleware:
    """Stamps every HTTP request and response with an ``X-Request-ID``."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = uuid.uuid4().hex
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER.lower().encode(), request_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        await self.app(scope, receive, send_with_id)
