"""HTTP client for the backend whose sources the tools read and write.

The backend is an opaque resource addressed by URL: GET returns the current
text, PUT replaces it, POST creates it. Relative URLs resolve against the
configured base URL.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger("aiedit.backend")


class BackendError(Exception):

    def __init__(self, message: str, status_code: int = -1, response_body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class BackendClient:

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        token: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout, headers=headers)

    def close(self) -> None:
        self._client.close()

    def fetch_text(self, url: str) -> str | None:
        """Current text at ``url``, or None when the resource does not exist yet."""
        response = self._send("GET", url, accept="text/plain")
        if response.status_code == 404:
            return None
        self._raise_for_status("GET", url, response)
        return response.text

    def fetch_current_text(self, url: str) -> str:
        """Like fetch_text, but any failure counts as an empty (new) object.

        Used only to show a before/after comparison, so it must never fail.
        """
        if not url:
            return ""
        try:
            return self.fetch_text(url) or ""
        except (BackendError, httpx.HTTPError) as e:
            logger.info(f"Could not fetch current text for {url} (treating as new): {e}")
            return ""

    def write_text(self, url: str, text: str) -> str:
        response = self._send("PUT", url, content=text)
        self._raise_for_status("PUT", url, response)
        return response.text

    def create_text(self, url: str, text: str) -> str:
        response = self._send("POST", url, content=text)
        self._raise_for_status("POST", url, response)
        return response.text

    def health_check(self) -> bool:
        try:
            self._client.get("/")
            return True
        except httpx.HTTPError:
            return False

    def _send(self, method: str, url: str, content: str | None = None, accept: str | None = None) -> httpx.Response:
        headers = {"Content-Type": "text/plain; charset=utf-8"} if content is not None else {}
        if accept:
            headers["Accept"] = accept
        logger.debug(f"{method} {url}")
        return self._client.request(method, url, content=content, headers=headers)

    @staticmethod
    def _raise_for_status(method: str, url: str, response: httpx.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        raise BackendError(
            f"{method} {url} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            response_body=response.text,
        )
