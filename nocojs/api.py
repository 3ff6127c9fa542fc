"""
Public entry points: transform source files and compute single placeholders.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Union

from .errors import CacheIOError, ParseError
from .log import LogCollector, LogEntry
from .options import GetPlaceholderOptions, PreviewOptions, TransformOptions
from .pipeline import ERROR, PipelineContext, SiteOutcome
from .rewriter import replacement_for, rewrite
from .scanner import scan
from .store import CacheStore, open_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformResult:
    """Output of transform()."""
    code: str
    map: Optional[str] = None  # Source Map v3 JSON, None when nothing changed
    logs: List[LogEntry] = field(default_factory=list)


@dataclass(frozen=True)
class PlaceholderResult:
    """Output of get_placeholder(); placeholder is the input URL on failure."""
    placeholder: str
    is_error: bool = False
    logs: List[LogEntry] = field(default_factory=list)


def _open_cache(options: TransformOptions, collector: LogCollector) -> Optional[CacheStore]:
    if not options.cache:
        return None
    store = open_store(options.resolved_cache_dir())
    try:
        count = store.open()
        collector.verbose(f"Loaded cache {store.path} with {count} entries")
    except CacheIOError as e:
        collector.verbose(str(e))
    return store


def transform(code: str, file_path: str,
              options: Union[TransformOptions, Mapping[str, Any], None] = None) -> TransformResult:
    """
    Replace ``preview("...")`` arguments in a source file with placeholders.

    Args:
        code: The JS/TS/JSX source text
        file_path: Path of the file (used for JSX detection, logs and the source map)
        options: TransformOptions or a mapping of camelCase/snake_case options

    Returns:
        TransformResult: The (possibly unchanged) code, a source map and log entries

    Raises:
        OptionsError: If the options are invalid
    """
    options = TransformOptions.from_mapping(options)

    # Quick exit when no client package is mentioned
    if not any(source in code for source in options.import_sources):
        return TransformResult(code)

    started = time.perf_counter()
    collector = LogCollector(options.log_level, prefix=file_path)

    try:
        call_sites = list(scan(code, file_path, options.import_sources))
    except ParseError as e:
        collector.error(f"Failed to parse {file_path}: {e}")
        return TransformResult(code, None, collector.entries)

    if not call_sites:
        return TransformResult(code, None, collector.entries)

    logger.debug(f"Found {len(call_sites)} preview calls in {file_path}")
    context = PipelineContext(options, _open_cache(options, collector))

    workers = min(options.max_workers, len(call_sites))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="nocojs") as executor:
        outcomes: List[SiteOutcome] = list(executor.map(context.process_call_site, call_sites))

    replacements = []
    for call_site, outcome in zip(call_sites, outcomes):
        outcome.emit(collector)
        if outcome.rewritable:
            replacements.append(replacement_for(call_site, outcome.placeholder))

    new_code, source_map = code, None
    if replacements:
        replacements.sort()
        new_code, source_map = rewrite(code, replacements, options.sourcemap_file_path or file_path)

    elapsed_ms = (time.perf_counter() - started) * 1000
    collector.verbose(f"Finished processing file {file_path} in {elapsed_ms:.2f}ms")
    return TransformResult(new_code, source_map, collector.entries)


def get_placeholder(url: str,
                    options: Union[GetPlaceholderOptions, Mapping[str, Any], None] = None) -> PlaceholderResult:
    """
    Compute the placeholder for one image outside of any source file.

    Absolute filesystem paths and file:// URLs are accepted in addition to
    remote URLs and paths relative to the public directory.

    Raises:
        OptionsError: If the options are invalid
    """
    transform_options = GetPlaceholderOptions.from_mapping(options).to_transform_options()
    collector = LogCollector(transform_options.log_level)
    context = PipelineContext(transform_options, _open_cache(transform_options, collector),
                              allow_absolute=True)

    try:
        outcome = context.process(url, PreviewOptions.from_transform_options(transform_options))
    except Exception as e:
        logger.exception(f"Unexpected error while processing {url}")
        outcome = SiteOutcome(url, ERROR, f"Failed to generate placeholder for {url}: {e}")
    outcome.emit(collector)

    if outcome.placeholder is None:
        return PlaceholderResult(url, True, collector.entries)
    return PlaceholderResult(outcome.placeholder, False, collector.entries)
