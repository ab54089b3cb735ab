"""Lightweight HTTP helpers (stdlib only)."""

from __future__ import annotations

import json
from http.client import HTTPException
from typing import Any
from urllib.request import Request, urlopen

from src.common.constants import USER_AGENT

# Everything a request/parse can raise: URLError/HTTPError/timeouts are
# OSError, malformed JSON and bad encodings are ValueError.
HTTP_ERRORS = (OSError, ValueError, HTTPException)


def _request(
    url: str,
    *,
    method: str = "GET",
    data: bytes | None = None,
    headers: dict | None = None,
    timeout: float = 15,
) -> bytes:
    """Core request with User-Agent.  Non-2xx raises ``HTTPError``."""
    hdr = {"User-Agent": USER_AGENT, **(headers or {})}
    req = Request(url, method=method, data=data, headers=hdr)
    with urlopen(req, timeout=timeout) as resp:
        return resp.read()


def _decode_json(raw: bytes) -> Any:
    """Parse a JSON body; an empty body is ``None``."""
    if not raw:
        return None
    return json.loads(raw.decode("utf-8"))


def http_get_json(url: str, headers: dict | None = None, timeout: float = 15) -> Any:
    """Perform a GET request and return the parsed JSON body.

    Raises ``ValueError`` (``json.JSONDecodeError``) on a malformed body.
    """
    raw = _request(
        url,
        method="GET",
        headers={"Accept": "application/json", **(headers or {})},
        timeout=timeout,
    )
    return _decode_json(raw)


def http_get_bytes(url: str, headers: dict | None = None, timeout: float = 60) -> bytes:
    """Perform a GET request and return the raw body."""
    return _request(url, method="GET", headers=headers, timeout=timeout)


def http_post_json(
    url: str,
    payload: Any,
    headers: dict | None = None,
    timeout: float = 15,
) -> bytes:
    """POST *payload* as JSON and return the raw response body."""
    return _request(
        url,
        method="POST",
        data=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
        timeout=timeout,
    )
