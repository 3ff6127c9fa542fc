"""
Transform options and the effective per-call preview options.
"""

import enum
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import OptionsError
from .log import LogLevel

OPTIONS_SCHEMA_VERSION = 1

# Packages whose ``preview`` export marks a call site
DEFAULT_IMPORT_SOURCES: Tuple[str, ...] = ("@nocojs/client", "nocojs")

DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_MAX_WORKERS = 8


class PlaceholderType(str, enum.Enum):
    """Placeholder algorithm variants."""
    NORMAL = "normal"
    BLURRED = "blurred"
    GRAYSCALE = "grayscale"
    BLACK_AND_WHITE = "black-and-white"
    DOMINANT_COLOR = "dominant-color"
    AVERAGE_COLOR = "average-color"
    TRANSPARENT = "transparent"

    @classmethod
    def parse(cls, value) -> "PlaceholderType":
        if isinstance(value, PlaceholderType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown placeholder type {value!r} (expected one of: {valid})") from None


# camelCase names used by the bundler adapters -> dataclass field names
_OPTION_ALIASES = {
    "placeholderType": "placeholder_type",
    "replaceFunctionCall": "replace_function_call",
    "wrapWithSvg": "wrap_with_svg",
    "publicDir": "public_dir",
    "cacheFileDir": "cache_file_dir",
    "logLevel": "log_level",
    "sourcemapFilePath": "sourcemap_file_path",
    "fetchTimeout": "fetch_timeout",
    "maxWorkers": "max_workers",
    "importSources": "import_sources",
}


def _normalize_keys(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {_OPTION_ALIASES.get(key, key): value for key, value in values.items()}


def _check_dimension(name: str, value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    if value != int(value) or value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _check_bool(name: str, value) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean, got {value!r}")
    return value


@dataclass
class TransformOptions:
    """Global options for one transform (or get_placeholder) call."""
    placeholder_type: PlaceholderType = PlaceholderType.NORMAL
    replace_function_call: bool = True
    cache: bool = True
    width: Optional[int] = None
    height: Optional[int] = None
    wrap_with_svg: bool = True
    public_dir: Optional[str] = None     # defaults to <cwd>/public
    cache_file_dir: Optional[str] = None  # defaults to <cwd>/.nocojs
    log_level: LogLevel = LogLevel.ERROR
    sourcemap_file_path: Optional[str] = None
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    import_sources: Tuple[str, ...] = DEFAULT_IMPORT_SOURCES

    def __post_init__(self):
        try:
            self.placeholder_type = PlaceholderType.parse(self.placeholder_type)
            self.log_level = LogLevel.parse(self.log_level)
            self.width = _check_dimension("width", self.width)
            self.height = _check_dimension("height", self.height)
            for name in ("replace_function_call", "cache", "wrap_with_svg"):
                _check_bool(name, getattr(self, name))
        except ValueError as e:
            raise OptionsError(str(e)) from None
        if self.fetch_timeout <= 0:
            raise OptionsError(f"fetch_timeout must be positive, got {self.fetch_timeout!r}")
        if self.max_workers < 1:
            raise OptionsError(f"max_workers must be at least 1, got {self.max_workers!r}")
        self.import_sources = tuple(self.import_sources)

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "TransformOptions":
        """Build options from camelCase or snake_case keys, ignoring None values."""
        if values is None:
            return cls()
        if isinstance(values, cls):
            return values
        normalized = _normalize_keys(values)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise OptionsError(f"Unknown option(s): {', '.join(unknown)}")
        return cls(**{key: value for key, value in normalized.items() if value is not None})

    def resolved_public_dir(self) -> str:
        return os.path.abspath(self.public_dir or os.path.join(os.getcwd(), "public"))

    def resolved_cache_dir(self) -> str:
        return os.path.abspath(self.cache_file_dir or os.path.join(os.getcwd(), ".nocojs"))


@dataclass(frozen=True)
class PreviewOptions:
    """
    Effective options for one call site.

    Precedence: per-call options > transform options > built-in defaults.
    """
    placeholder_type: PlaceholderType = PlaceholderType.NORMAL
    width: Optional[int] = None
    height: Optional[int] = None
    replace_function_call: bool = True
    cache: bool = True
    wrap_with_svg: bool = True

    @classmethod
    def from_transform_options(cls, options: TransformOptions) -> "PreviewOptions":
        return cls(
            placeholder_type=options.placeholder_type,
            width=options.width,
            height=options.height,
            replace_function_call=options.replace_function_call,
            cache=options.cache,
            wrap_with_svg=options.wrap_with_svg,
        )

    @classmethod
    def merge(cls, options: TransformOptions,
              call_options: Optional[Mapping[str, Any]] = None) -> Tuple["PreviewOptions", List[str]]:
        """
        Layer per-call options over the transform options.

        Args:
            options: The transform-level options
            call_options: Literal values from the call's options object

        Returns:
            The effective options and a list of problems with ignored values
        """
        effective = cls.from_transform_options(options)
        if not call_options:
            return effective, []

        updates: Dict[str, Any] = {}
        problems: List[str] = []
        for key, value in _normalize_keys(call_options).items():
            try:
                if key == "placeholder_type":
                    updates[key] = PlaceholderType.parse(value)
                elif key in ("width", "height"):
                    updates[key] = _check_dimension(key, value)
                elif key in ("replace_function_call", "cache", "wrap_with_svg"):
                    updates[key] = _check_bool(key, value)
                else:
                    problems.append(f"unknown option {key!r}")
            except ValueError as e:
                problems.append(str(e))
        return replace(effective, **updates), problems

    def fingerprint_fields(self) -> Dict[str, Any]:
        """The fields that change the generated bytes."""
        return {
            "placeholder_type": self.placeholder_type.value,
            "width": self.width,
            "height": self.height,
            "wrap_with_svg": self.wrap_with_svg,
        }


@dataclass
class GetPlaceholderOptions:
    """Options for the standalone get_placeholder entry point."""
    placeholder_type: PlaceholderType = PlaceholderType.NORMAL
    width: Optional[int] = None
    height: Optional[int] = None
    wrap_with_svg: bool = True
    cache: bool = True
    public_dir: Optional[str] = None
    cache_file_dir: Optional[str] = None
    log_level: LogLevel = LogLevel.VERBOSE
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "GetPlaceholderOptions":
        if values is None:
            return cls()
        if isinstance(values, cls):
            return values
        normalized = {k: v for k, v in _normalize_keys(values).items() if v is not None}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise OptionsError(f"Unknown option(s): {', '.join(unknown)}")
        return cls(**normalized)

    def to_transform_options(self) -> TransformOptions:
        return TransformOptions(
            placeholder_type=self.placeholder_type,
            width=self.width,
            height=self.height,
            wrap_with_svg=self.wrap_with_svg,
            cache=self.cache,
            public_dir=self.public_dir,
            cache_file_dir=self.cache_file_dir,
            log_level=self.log_level,
            fetch_timeout=self.fetch_timeout,
        )
