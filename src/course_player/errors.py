"""Domain-specific exceptions for course-player."""

from __future__ import annotations


class InvalidInputError(Exception):
    """Content rejected at the boundary; playback must not be attempted."""


class InvalidUrlError(InvalidInputError):
    """Raised when a media URL is empty, unparseable, or not http/https."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid media URL {url!r}: {reason}")


class MalformedQuestionError(InvalidInputError):
    """Raised when a question payload cannot be parsed."""


class MalformedProgressError(InvalidInputError):
    """Raised when a progress response body cannot be parsed."""


class ApiError(Exception):
    """HTTP or network failure reported by the API client."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        path: str = "",
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.path = path
        super().__init__(f"{path}: {message} (status {status_code})")


class AuthRefreshError(ApiError):
    """The refresh-token flow failed; stored tokens were cleared."""


class SourcesExhaustedError(Exception):
    """Every candidate source failed; terminal for the playback session."""

    def __init__(self, total_sources: int, last_error: str) -> None:
        self.total_sources = total_sources
        self.last_error = last_error
        super().__init__(
            f"All {total_sources} video sources failed (last error: {last_error})"
        )
