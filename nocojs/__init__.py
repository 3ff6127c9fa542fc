"""
nocojs: inline image placeholders into JS/TS/JSX source at build time.
"""

__version__ = "1.0.0"

from .api import PlaceholderResult, TransformResult, get_placeholder, transform
from .errors import CacheIOError, EncodingError, NocoError, OptionsError, ParseError, ResolutionError
from .log import LogEntry, LogLevel
from .options import GetPlaceholderOptions, PlaceholderType, TransformOptions

__all__ = [
    "transform",
    "get_placeholder",
    "TransformResult",
    "PlaceholderResult",
    "TransformOptions",
    "GetPlaceholderOptions",
    "PlaceholderType",
    "LogEntry",
    "LogLevel",
    "NocoError",
    "ParseError",
    "ResolutionError",
    "EncodingError",
    "CacheIOError",
    "OptionsError",
]
