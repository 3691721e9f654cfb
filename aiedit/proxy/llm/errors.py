from __future__ import annotations


class LlmError(Exception):
    """A gateway request failed.

    Carries the HTTP status (``-1`` when the failure happened before a
    response arrived) and the raw response body when there was one.
    """

    def __init__(
        self,
        message: str,
        status_code: int = -1,
        response_body: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.provider = provider

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code > 0:
            parts.append(f"status={self.status_code}")
        if self.response_body:
            body = self.response_body
            if len(body) > 200:
                body = body[:200] + "..."
            parts.append(f"body={body!r}")
        return " | ".join(parts)


class LlmParseError(LlmError):
    """The vendor answered 2xx but the body could not be read as a reply."""
