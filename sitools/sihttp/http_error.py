"""Error raised when an HTTP exchange fails or returns an unsuccessful status."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


def _status_text(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


class HttpError(Exception):
    """An HTTP failure carrying the response, if any, and the body read from it."""

    def __init__(self, response: Any = None, body: bytes | None = None) -> None:
        super().__init__(response, body)
        self.response = response
        self.body = body

    def __str__(self) -> str:
        if self.response is None:
            parts = ["status: unknown"]
        else:
            parts = [f"status: {self.response.reason}"]
        if self.body is not None:
            parts.append(f"body: {bytes(self.body).decode('utf-8', errors='replace')}")
        return ", ".join(parts)

    def get_status_code(self, default_status_code: int) -> int:
        """Return the response's status code, or the given default without a response."""
        if self.response is not None:
            return self.response.status_code
        return default_status_code

    def get_status(self, default_status_code: int) -> str:
        """Return the response's status text, or the text of the default code."""
        if self.response is not None:
            return self.response.reason
        return _status_text(default_status_code)