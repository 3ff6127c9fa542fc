"""Tests for per call site processing and in-flight coalescing."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import nocojs.pipeline as pipeline
from nocojs.log import LogCollector, LogLevel
from nocojs.options import PreviewOptions, TransformOptions
from nocojs.pipeline import HIT, MISS, SKIP, PipelineContext
from nocojs.scanner import scan
from nocojs.store import open_store


def _context(public_dir: Path, cache_dir: Path, cache: bool = True) -> PipelineContext:
    options = TransformOptions(public_dir=str(public_dir), cache_file_dir=str(cache_dir), cache=cache)
    store = open_store(str(cache_dir)) if cache else None
    return PipelineContext(options, store)


def test_concurrent_requests_are_coalesced(public_dir: Path, cache_dir: Path, mocker) -> None:
    """Two simultaneous requests for the same key compute the placeholder once."""
    context = _context(public_dir, cache_dir)
    started = threading.Event()
    release = threading.Event()
    real_fetch = pipeline.fetch_bytes

    def slow_fetch(source, http_client=None):
        started.set()
        release.wait(5)
        return real_fetch(source, http_client)

    fetch = mocker.patch("nocojs.pipeline.fetch_bytes", side_effect=slow_fetch)
    preview_options = PreviewOptions()

    with ThreadPoolExecutor(max_workers=2) as executor:
        first = executor.submit(context.process, "/images/red.png", preview_options)
        assert started.wait(5)
        second = executor.submit(context.process, "/images/red.png", preview_options)
        time.sleep(0.2)
        release.set()
        outcomes = [first.result(5), second.result(5)]

    assert fetch.call_count == 1
    assert sorted(o.decision for o in outcomes) == [HIT, MISS]
    assert outcomes[0].placeholder == outcomes[1].placeholder
    assert not pipeline._in_flight


def test_cache_disabled_always_computes(public_dir: Path, cache_dir: Path, mocker) -> None:
    context = _context(public_dir, cache_dir, cache=False)
    fetch = mocker.patch("nocojs.pipeline.fetch_bytes", wraps=pipeline.fetch_bytes)

    first = context.process("/images/red.png", PreviewOptions(cache=False))
    second = context.process("/images/red.png", PreviewOptions(cache=False))

    assert (first.decision, second.decision) == (MISS, MISS)
    assert fetch.call_count == 2
    assert not cache_dir.exists()


def test_second_request_hits_store(public_dir: Path, cache_dir: Path) -> None:
    context = _context(public_dir, cache_dir)
    first = context.process("/images/red.png", PreviewOptions())
    second = context.process("/images/red.png", PreviewOptions())

    assert first.decision == MISS
    assert second.decision == HIT
    assert second.message == "Cache hit for /images/red.png"
    assert second.placeholder == first.placeholder


def test_call_site_outcomes_and_notes(public_dir: Path, cache_dir: Path) -> None:
    code = (
        "import { preview } from 'nocojs';\n"
        "preview(name);\n"
        "preview('/images/red.png', { width: 0, placeholderType: 'sepia', height: h });\n"
    )
    skipped_site, options_site = scan(code)
    context = _context(public_dir, cache_dir)

    skipped = context.process_call_site(skipped_site)
    assert skipped.decision == SKIP
    assert skipped.placeholder is None
    assert "2:0" in skipped.message

    outcome = context.process_call_site(options_site)
    assert outcome.decision == MISS
    assert len(outcome.notes) == 3

    collector = LogCollector(LogLevel.VERBOSE)
    outcome.emit(collector)
    entries = collector.entries
    assert [e.decision for e in entries] == [None, None, None, MISS]
    assert entries[-1].message == "Generated normal placeholder for /images/red.png"
    assert all(e.identifier == "/images/red.png" for e in entries)


def test_unexpected_errors_become_site_failures(public_dir: Path, cache_dir: Path, mocker) -> None:
    [site] = scan("import { preview } from 'nocojs';\npreview('/images/red.png');\n")
    context = _context(public_dir, cache_dir)
    mocker.patch("nocojs.pipeline.decode", side_effect=RuntimeError("boom"))

    outcome = context.process_call_site(site)

    assert outcome.decision == "error"
    assert "boom" in outcome.message
    assert not pipeline._in_flight
