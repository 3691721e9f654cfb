"""Shared HTTP plumbing for every vendor adapter: timeouts, auth, error mapping."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from .auth import AuthStrategy
from .errors import LlmError

logger = logging.getLogger("aiedit.llm")

DEFAULT_TIMEOUT = 120.0
DEFAULT_CONNECT_TIMEOUT = 30.0


def parse_error_message(body: str | None) -> str:
    """Pull a human-readable message out of a vendor error body."""
    if not body:
        return "No response body"
    try:
        data = json.loads(body)
    except ValueError:
        data = None

    if isinstance(data, list) and data and isinstance(data[0], dict):
        # Google sometimes wraps the error object in a one-element list
        data = data[0]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(data.get("message"), str):
            return data["message"]

    return body[:500] + "..." if len(body) > 500 else body


class HttpTransport:
    """POST/GET JSON with one httpx client, mapping every failure to LlmError."""

    def __init__(
        self,
        provider_id: str,
        auth: AuthStrategy,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.auth = auth
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            follow_redirects=True,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def post_json(self, url: str, payload: dict[str, Any]) -> str:
        return self._request("POST", url, payload)

    def get_json(self, url: str) -> str:
        return self._request("GET", url, None)

    def _request(self, method: str, url: str, payload: dict[str, Any] | None) -> str:
        headers = {"Content-Type": "application/json", **self.auth.headers()}
        full_url = self.auth.apply_to_url(url)

        try:
            response = self._client.request(method, full_url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise LlmError(
                f"Request to {self.provider_id} API timed out: {e}", provider=self.provider_id
            ) from e
        except httpx.ConnectError as e:
            raise LlmError(
                f"Cannot connect to {self.provider_id} API at {url}. "
                "Check your network connection and proxy settings.",
                provider=self.provider_id,
            ) from e
        except httpx.HTTPError as e:
            raise LlmError(
                f"Network error calling {self.provider_id} API at {url}: {e}",
                provider=self.provider_id,
            ) from e

        body = response.text
        if response.status_code < 200 or response.status_code >= 300:
            message = parse_error_message(body)
            logger.error(f"{self.provider_id} API error ({response.status_code}): {message}")
            raise LlmError(
                f"{self.provider_id} API error ({response.status_code}): {message}",
                status_code=response.status_code,
                response_body=body,
                provider=self.provider_id,
            )
        return body
