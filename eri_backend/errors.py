"""Error type carried from request handlers to HTTP responses."""

from __future__ import annotations

from http import HTTPStatus


class ApiError(Exception):
    """A failure that maps to an HTTP status and a JSON ``{"error": ...}`` body."""

    def __init__(self, status: int | HTTPStatus, message: str) -> None:
        super().__init__(message)
        self.status = int(status)
        self.message = message

    def to_json(self) -> dict[str, str]:
        """Return the response body for this error."""
        return {"error": self.message}

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, message={self.message!r})"