"""Helpers for inspecting driver URLs."""

from __future__ import annotations


class EmptyURLError(ValueError):
    """Raised when an empty string is given as a URL."""

    def __init__(self, message: str = "URL cannot be empty") -> None:
        super().__init__(message)


class NoSchemeError(ValueError):
    """Raised when a URL carries no scheme."""

    def __init__(self, message: str = "no scheme") -> None:
        super().__init__(message)


def scheme_from_url(url: str) -> str:
    """Return the scheme of ``url``: everything before the first colon."""
    if url == "":
        raise EmptyURLError()

    index = url.find(":")
    # A missing colon, or one in first position, leaves no scheme.
    if index < 1:
        raise NoSchemeError()

    return url[:index]