"""Authentication strategies, pluggable per adapter.

Each strategy contributes request headers and may rewrite the request URL;
nothing else in the request path knows how a vendor authenticates.
"""

from __future__ import annotations

from typing import Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

ANTHROPIC_VERSION = "2023-06-01"


class AuthStrategy(Protocol):

    def headers(self) -> dict[str, str]: ...

    def apply_to_url(self, url: str) -> str: ...


class ApiKeyHeaderAuth:
    """Key in a custom header plus any fixed extra headers (protocol A)."""

    def __init__(self, api_key: str, header_name: str = "x-api-key", extra: dict[str, str] | None = None) -> None:
        self._api_key = api_key
        self._header_name = header_name
        self._extra = dict(extra or {})

    def headers(self) -> dict[str, str]:
        return {self._header_name: self._api_key, **self._extra}

    def apply_to_url(self, url: str) -> str:
        return url


class BearerAuth:

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    def headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    def apply_to_url(self, url: str) -> str:
        return url


class QueryKeyAuth:
    """Key passed as a URL query parameter (protocol C)."""

    def __init__(self, api_key: str, param: str = "key") -> None:
        self._api_key = api_key
        self._param = param

    def headers(self) -> dict[str, str]:
        return {}

    def apply_to_url(self, url: str) -> str:
        parts = urlsplit(url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != self._param]
        query.append((self._param, self._api_key))
        return urlunsplit(parts._replace(query=urlencode(query)))


def anthropic_auth(api_key: str) -> ApiKeyHeaderAuth:
    return ApiKeyHeaderAuth(api_key, "x-api-key", {"anthropic-version": ANTHROPIC_VERSION})
