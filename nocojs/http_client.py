"""
HTTP client for downloading remote images.
"""

import logging
import threading
from abc import ABC, abstractmethod

import requests
from requests.exceptions import RequestException, Timeout

from .errors import ResolutionError
from .options import DEFAULT_FETCH_TIMEOUT

logger = logging.getLogger(__name__)

USER_AGENT = "nocojs-placeholder/1.0"


class HttpClient(ABC):
    """Abstract base class for HTTP operations."""

    @abstractmethod
    def download_data(self, url: str) -> bytes:
        """
        Download data from a URL.

        Args:
            url: The URL to download from

        Returns:
            bytes: The downloaded data

        Raises:
            ResolutionError: On timeouts, connection errors and non-2xx responses
        """


class RequestsClient(HttpClient):
    """Implementation of HttpClient using the requests library."""

    def __init__(self, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.timeout = timeout
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        # Sessions are not guaranteed thread safe; keep one per worker thread
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
            self._local.session = session
        return session

    def download_data(self, url: str) -> bytes:
        try:
            logger.debug(f"Downloading from URL: {url}")
            response = self.session.get(url, timeout=self.timeout)
        except Timeout as e:
            raise ResolutionError(url, f"timed out after {self.timeout}s") from e
        except RequestException as e:
            raise ResolutionError(url, str(e)) from e

        if not 200 <= response.status_code < 300:
            raise ResolutionError(url, f"HTTP status {response.status_code}")

        logger.debug(f"Download successful: {url} - Size: {len(response.content)} bytes")
        return response.content


_clients = {}
_clients_lock = threading.Lock()


def create_http_client(timeout: float = DEFAULT_FETCH_TIMEOUT) -> HttpClient:
    """
    Return the shared HTTP client for a timeout value.

    Returns:
        HttpClient: An instance of an HttpClient implementation
    """
    with _clients_lock:
        client = _clients.get(timeout)
        if client is None:
            client = _clients[timeout] = RequestsClient(timeout)
        return client
