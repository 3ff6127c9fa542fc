"""
Image resolution: classify an identifier and read its bytes.
"""

import logging
import os
import urllib.parse
from dataclasses import dataclass
from typing import Optional, Union

from .errors import ResolutionError
from .http_client import HttpClient, create_http_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalFile:
    """An image file on disk."""
    path: str
    identifier: str

    def signature(self) -> str:
        """Content signature used in cache keys; changes when the file does."""
        stat = os.stat(self.path)
        return f"{stat.st_size}:{stat.st_mtime_ns}"


@dataclass(frozen=True)
class RemoteUrl:
    """An image served over http(s)."""
    url: str
    identifier: str

    def signature(self) -> str:
        return ""


@dataclass(frozen=True)
class Unresolvable:
    """An identifier that is neither a remote URL nor an existing file."""
    identifier: str
    reason: str = "not found"


ImageSource = Union[LocalFile, RemoteUrl, Unresolvable]


def is_remote_url(identifier: str) -> bool:
    """True when the identifier parses as an absolute http(s) URL."""
    try:
        parsed = urllib.parse.urlparse(identifier)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _readable_file(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.R_OK)


def _clean_path(identifier: str) -> str:
    # Drop query strings/fragments and decode %20 style escapes
    clean_path = identifier.split('?', 1)[0].split('#', 1)[0].strip()
    return urllib.parse.unquote(clean_path)


def resolve_file_path(identifier: str, public_dir: str) -> Optional[str]:
    """
    Attempt to resolve an identifier relative to the public directory.

    Leading slashes are stripped so ``/images/a.png`` means
    ``<public_dir>/images/a.png``. Paths escaping the public directory are
    rejected.

    Returns:
        str: The absolute path if found, None otherwise
    """
    relative_path = _clean_path(identifier).lstrip('/\\')
    if relative_path.startswith("./"):
        relative_path = relative_path[2:]
    if not relative_path:
        return None

    root = os.path.abspath(public_dir)
    full_path = os.path.abspath(os.path.join(root, relative_path))
    if os.path.commonpath([root, full_path]) != root:
        logger.debug(f"Refusing path outside public directory: {identifier}")
        return None
    if _readable_file(full_path):
        return full_path
    return None


def _absolute_path(identifier: str) -> Optional[str]:
    if identifier.startswith("file://"):
        parsed = urllib.parse.urlparse(identifier)
        path = urllib.parse.unquote(parsed.path)
    else:
        path = _clean_path(identifier)
    if os.path.isabs(path) and _readable_file(path):
        return os.path.abspath(path)
    return None


def resolve(identifier: str, public_dir: str, allow_remote: bool = True,
            allow_absolute: bool = False) -> ImageSource:
    """
    Classify an image identifier.

    Rules, in order: absolute http(s) URL -> RemoteUrl; existing readable file
    relative to public_dir -> LocalFile; with allow_absolute, an existing
    absolute path or file:// URL -> LocalFile; anything else -> Unresolvable.
    Never raises.
    """
    if not identifier or not identifier.strip():
        return Unresolvable(identifier, "empty image path")

    if is_remote_url(identifier):
        if not allow_remote:
            return Unresolvable(identifier, "remote images are disabled")
        return RemoteUrl(identifier, identifier)

    resolved_path = resolve_file_path(identifier, public_dir)
    if resolved_path:
        return LocalFile(resolved_path, identifier)

    if allow_absolute:
        resolved_path = _absolute_path(identifier)
        if resolved_path:
            return LocalFile(resolved_path, identifier)

    return Unresolvable(identifier, f"image not found in public directory {public_dir}")


def fetch_bytes(source: ImageSource, http_client: Optional[HttpClient] = None) -> bytes:
    """
    Read the bytes of a resolved image.

    Raises:
        ResolutionError: On any I/O or HTTP failure
    """
    if isinstance(source, LocalFile):
        try:
            with open(source.path, "rb") as f:
                return f.read()
        except OSError as e:
            raise ResolutionError(source.identifier, f"error reading local file {source.path}: {e}") from e

    if isinstance(source, RemoteUrl):
        client = http_client or create_http_client()
        return client.download_data(source.url)

    raise ResolutionError(source.identifier, source.reason)
