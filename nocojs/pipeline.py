"""
Per call site processing: options -> cache lookup -> fetch -> generate -> store.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import CacheIOError, EncodingError, ResolutionError
from .http_client import HttpClient, create_http_client
from .image_processor import decode
from .log import LogCollector, LogLevel
from .options import PreviewOptions, TransformOptions
from .placeholder import generate
from .resolver import ImageSource, Unresolvable, fetch_bytes, resolve
from .scanner import PreviewCallSite
from .store import CacheEntry, CacheStore, create_cache_key

logger = logging.getLogger(__name__)

# Decisions recorded on the terminal log entry of each call site
HIT = "hit"
MISS = "miss"
ERROR = "error"
SKIP = "skip"

_DECISION_LEVELS = {
    HIT: LogLevel.VERBOSE,
    MISS: LogLevel.INFO,
    ERROR: LogLevel.ERROR,
    SKIP: LogLevel.INFO,
}

Note = Tuple[LogLevel, str]


@dataclass(frozen=True)
class SiteOutcome:
    """Terminal state of one call site plus the log lines it produced."""
    identifier: Optional[str]
    decision: str
    message: str
    placeholder: Optional[str] = None
    replace: bool = True
    notes: Tuple[Note, ...] = ()

    @property
    def rewritable(self) -> bool:
        return self.placeholder is not None and self.replace

    def with_notes(self, notes: Tuple[Note, ...]) -> "SiteOutcome":
        if not notes:
            return self
        return SiteOutcome(self.identifier, self.decision, self.message, self.placeholder,
                           self.replace, tuple(notes) + self.notes)

    def emit(self, collector: LogCollector) -> None:
        """Write the notes and then exactly one decision entry."""
        for level, message in self.notes:
            collector.log(level, message, identifier=self.identifier)
        collector.log(_DECISION_LEVELS[self.decision], self.message,
                      identifier=self.identifier, decision=self.decision)


# Computations in progress across every transform in this process
_in_flight: Dict[Tuple[str, str], Future] = {}
_in_flight_lock = threading.Lock()


class PipelineContext:
    """
    Shared state for processing the call sites of one entry point call.

    Args:
        options: Transform-level options
        store: Cache store, or None when caching is disabled
        http_client: Client used for remote images
        allow_absolute: Accept absolute paths and file:// URLs
    """

    def __init__(self, options: TransformOptions, store: Optional[CacheStore] = None,
                 http_client: Optional[HttpClient] = None, allow_absolute: bool = False):
        self.options = options
        self.public_dir = options.resolved_public_dir()
        self.store = store
        self.http_client = http_client or create_http_client(options.fetch_timeout)
        self.allow_absolute = allow_absolute

    def process_call_site(self, call_site: PreviewCallSite) -> SiteOutcome:
        """Process one scanned call site; never raises for per-site failures."""
        identifier = call_site.url if call_site.url is not None else call_site.argument_text
        where = f"{call_site.line}:{call_site.column}"
        if not call_site.rewritable:
            return SiteOutcome(identifier or None, SKIP,
                               f"Skipping preview call at {where}: {call_site.reason}")

        preview_options, problems = PreviewOptions.merge(self.options, call_site.options)
        notes = [(LogLevel.INFO, f"Ignoring invalid option at {where}: {problem}") for problem in problems]
        if call_site.ignored_options:
            ignored = ", ".join(call_site.ignored_options)
            notes.append((LogLevel.INFO, f"Ignoring non-literal option(s) at {where}: {ignored}"))

        try:
            outcome = self.process(call_site.url, preview_options)
        except Exception as e:
            logger.exception(f"Unexpected error while processing {call_site.url}")
            outcome = SiteOutcome(call_site.url, ERROR, f"Failed to generate placeholder for {call_site.url}: {e}")
        return outcome.with_notes(tuple(notes))

    def process(self, identifier: str, preview_options: PreviewOptions) -> SiteOutcome:
        """
        Produce a placeholder for an image identifier.

        Args:
            identifier: URL or path exactly as written in the source
            preview_options: Effective options for this call

        Returns:
            SiteOutcome: hit, miss or error, with the placeholder when one exists
        """
        replace = preview_options.replace_function_call
        source = resolve(identifier, self.public_dir, allow_absolute=self.allow_absolute)
        if isinstance(source, Unresolvable):
            return SiteOutcome(identifier, ERROR, str(ResolutionError(identifier, source.reason)), replace=replace)

        if not preview_options.cache or self.store is None:
            return self._generate(source, preview_options)

        try:
            key = create_cache_key(source, preview_options)
        except OSError as e:
            return SiteOutcome(identifier, ERROR, str(ResolutionError(identifier, str(e))), replace=replace)

        notes = []
        cached = self._lookup(key, notes)
        if cached is not None:
            return self._hit(identifier, cached.placeholder, replace, notes)

        flight_key = (self.store.path, key)
        with _in_flight_lock:
            future = _in_flight.get(flight_key)
            owner = future is None
            if owner:
                future = _in_flight[flight_key] = Future()

        if not owner:
            logger.debug(f"Waiting for in-flight computation of {identifier}")
            result: SiteOutcome = future.result()
            if result.placeholder is None:
                return SiteOutcome(identifier, ERROR, result.message, replace=replace, notes=tuple(notes))
            return self._hit(identifier, result.placeholder, replace, notes)

        try:
            # Another computation may have finished between lookup and registration
            cached = self._lookup(key, notes)
            if cached is not None:
                outcome = self._hit(identifier, cached.placeholder, replace, notes)
            else:
                outcome = self._generate(source, preview_options, key, notes)
            future.set_result(outcome)
            return outcome
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with _in_flight_lock:
                _in_flight.pop(flight_key, None)

    def _lookup(self, key: str, notes: list) -> Optional[CacheEntry]:
        try:
            return self.store.get(key)
        except CacheIOError as e:
            notes.append((LogLevel.VERBOSE, str(e)))
            return None

    @staticmethod
    def _hit(identifier: str, placeholder: str, replace: bool, notes: list) -> SiteOutcome:
        return SiteOutcome(identifier, HIT, f"Cache hit for {identifier}", placeholder, replace, tuple(notes))

    def _generate(self, source: ImageSource, preview_options: PreviewOptions,
                  key: Optional[str] = None, notes: Optional[list] = None) -> SiteOutcome:
        notes = notes if notes is not None else []
        identifier = source.identifier
        replace = preview_options.replace_function_call
        try:
            data = fetch_bytes(source, self.http_client)
            raster = decode(data)
            placeholder = generate(
                raster,
                preview_options.placeholder_type,
                preview_options.width,
                preview_options.height,
                preview_options.wrap_with_svg,
            )
        except ResolutionError as e:
            return SiteOutcome(identifier, ERROR, str(e), replace=replace, notes=tuple(notes))
        except EncodingError as e:
            return SiteOutcome(identifier, ERROR, f"Failed to generate placeholder for {identifier}: {e}",
                               replace=replace, notes=tuple(notes))

        if key is not None and self.store is not None:
            entry = CacheEntry(
                placeholder=placeholder,
                identifier=identifier,
                placeholder_type=preview_options.placeholder_type.value,
                original_width=raster.original_size[0],
                original_height=raster.original_size[1],
            )
            try:
                self.store.put(key, entry)
            except CacheIOError as e:
                notes.append((LogLevel.VERBOSE, str(e)))

        message = f"Generated {preview_options.placeholder_type.value} placeholder for {identifier}"
        if not replace:
            message += " (call left unchanged)"
        return SiteOutcome(identifier, MISS, message, placeholder, replace, tuple(notes))
