from __future__ import annotations


class ActivityError(RuntimeError):
    """Exception carrying the HTTP status the API layer should answer with."""

    status = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class InvalidWindowError(ActivityError):
    status = 400


class BadRequestError(ActivityError):
    status = 400

