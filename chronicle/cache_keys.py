"""
Cache keys for HTTP responses.

Only a fixed set of query parameters takes part in the key, which bounds the
number of distinct keys a client can create. Requests that differ only in
other parameters share an entry.
"""

from __future__ import annotations

from typing import Mapping
from urllib.parse import parse_qsl

KEY_NAMESPACE = ("chronicle", "http-cache")

CACHED_QUERY_PARAMS = (
    "page",
    "limit",
    "sort-by",
    "order",
    # filters
    "status",
    "topic",
)


def parse_query(query_string: str | bytes) -> dict[str, str]:
    """Parse a raw query string keeping the first value of each name."""
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    params: dict[str, str] = {}
    for name, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(name, value)
    return params


def build_cache_key(path: str, query_params: Mapping[str, str]) -> str:
    parts = list(KEY_NAMESPACE)
    parts.extend(path.split("/"))
    for name in CACHED_QUERY_PARAMS:
        parts.append(f"{name}={query_params.get(name) or ''}")
    return ":".join(parts)


def request_uri(path: str, query_string: str | bytes = "") -> str:
    """Return the request target as sent: path plus the untouched query."""
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    return f"{path}?{query_string}" if query_string else path
