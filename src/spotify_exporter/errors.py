from __future__ import annotations


class CrawlError(RuntimeError):
    """Base error for conditions that abort the whole export run."""


class ArenaExhaustedError(CrawlError):
    """An arena could not grow within its reservation."""


class ResponseError(CrawlError):
    """Spotify answered with a status the crawl cannot recover from."""

    def __init__(self, status_code: int, uri: str) -> None:
        super().__init__(f"problem while connecting with spotify (status {status_code} for {uri})")
        self.status_code = status_code
        self.uri = uri


class AuthError(CrawlError):
    """Authorization code exchange or token refresh failed."""


class MalformedResponseError(CrawlError):
    """A response that everything downstream depends on could not be read."""


class InvariantError(CrawlError):
    """The crawl bookkeeping reached a state it must never be in."""


__all__ = [
    "CrawlError",
    "ArenaExhaustedError",
    "ResponseError",
    "AuthError",
    "MalformedResponseError",
    "InvariantError",
]
