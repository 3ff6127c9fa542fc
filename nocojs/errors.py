"""
Error types raised inside the nocojs engine.
"""

from typing import Optional


class NocoError(Exception):
    """Base class for all engine errors."""


class ParseError(NocoError):
    """The source text could not be scanned."""

    def __init__(self, message: str, line: int = 0, column: int = 0):
        super().__init__(f"{message} ({line}:{column})")
        self.line = line
        self.column = column


class ResolutionError(NocoError):
    """An image could not be located or fetched."""

    def __init__(self, identifier: str, reason: str):
        super().__init__(f"Failed to resolve image {identifier}: {reason}")
        self.identifier = identifier
        self.reason = reason


class EncodingError(NocoError):
    """Image bytes could not be decoded or re-encoded."""


class CacheIOError(NocoError):
    """The cache file is unreadable, corrupt or cannot be written."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class OptionsError(NocoError, ValueError):
    """Invalid options were passed to an entry point."""
