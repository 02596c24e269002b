from __future__ import annotations


class TimelineError(Exception):
    pass


class MessageSourceError(TimelineError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
