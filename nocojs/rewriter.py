"""
Single-pass source rewriting with Source Map v3 output.
"""

import bisect
import json
import logging
import os
import re
from typing import List, Optional, Sequence, Tuple

from .scanner import PreviewCallSite

logger = logging.getLogger(__name__)

Replacement = Tuple[int, int, str]

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_BASE64_DIGITS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"

_LITERAL_ESCAPES = {
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def quote_literal(value: str, quote: str = '"') -> str:
    """Render value as a JS string literal using the given quote character."""
    escaped = "".join(_LITERAL_ESCAPES.get(ch, ch) for ch in value)
    return quote + escaped.replace(quote, "\\" + quote) + quote


def replacement_for(call_site: PreviewCallSite, placeholder: str) -> Replacement:
    """Edit that swaps the call's first argument for the placeholder literal."""
    return call_site.argument_start, call_site.argument_end, quote_literal(placeholder, call_site.quote)


def _utf16_length(text: str) -> int:
    # Source map columns count UTF-16 code units
    return len(text.encode("utf-16-le")) // 2


def encode_vlq(value: int) -> str:
    """Base64 VLQ encoding used by the ``mappings`` field."""
    value = ((-value) << 1) | 1 if value < 0 else value << 1
    digits = []
    while True:
        digit = value & 31
        value >>= 5
        if value:
            digit |= 32
        digits.append(_BASE64_DIGITS[digit])
        if not value:
            return "".join(digits)


class _SourceMapBuilder:
    """Accumulates mapping segments while the output is assembled."""

    def __init__(self, source_text: str):
        self.source_text = source_text
        self.line_starts = [0] + [m.end() for m in _LINE_BREAK.finditer(source_text)]
        self.lines: List[List[Tuple[int, int, int]]] = [[]]
        self.generated_column = 0

    def original_position(self, offset: int) -> Tuple[int, int]:
        line = bisect.bisect_right(self.line_starts, offset) - 1
        return line, _utf16_length(self.source_text[self.line_starts[line]:offset])

    def add_segment(self, original_offset: int) -> None:
        line, column = self.original_position(original_offset)
        segments = self.lines[-1]
        if segments and segments[-1][0] == self.generated_column:
            segments[-1] = (self.generated_column, line, column)
        else:
            segments.append((self.generated_column, line, column))

    def _advance(self, text: str, original_offset: int, follow_source: bool) -> None:
        self.add_segment(original_offset)
        tail_start = 0
        for match in _LINE_BREAK.finditer(text):
            self.lines.append([])
            self.generated_column = 0
            tail_start = match.end()
            if tail_start < len(text):
                self.add_segment(original_offset + tail_start if follow_source else original_offset)
        self.generated_column += _utf16_length(text[tail_start:])

    def copy(self, text: str, original_offset: int) -> None:
        """Unchanged text: every line maps to its own origin."""
        self._advance(text, original_offset, follow_source=True)

    def replace(self, text: str, original_offset: int) -> None:
        """Inserted text: all of it maps to the start of the replaced span."""
        self._advance(text, original_offset, follow_source=False)

    def mappings(self) -> str:
        encoded_lines = []
        previous_line = previous_column = 0
        for segments in self.lines:
            previous_generated = 0
            encoded = []
            for generated, line, column in segments:
                # Source index is always 0 (a single source)
                encoded.append(
                    encode_vlq(generated - previous_generated)
                    + encode_vlq(0)
                    + encode_vlq(line - previous_line)
                    + encode_vlq(column - previous_column)
                )
                previous_generated, previous_line, previous_column = generated, line, column
            encoded_lines.append(",".join(encoded))
        return ";".join(encoded_lines)


def rewrite(source_text: str, replacements: Sequence[Replacement],
            source_path: Optional[str] = None) -> Tuple[str, str]:
    """
    Apply non-overlapping edits in one left-to-right pass.

    Args:
        source_text: The original source
        replacements: ``(start, end, text)`` edits ordered by start offset
        source_path: Name recorded in the source map

    Returns:
        The new source text and a Source Map v3 JSON string

    Raises:
        ValueError: If edits overlap, are out of order or fall outside the text
    """
    builder = _SourceMapBuilder(source_text)
    result = []
    last_pos = 0

    for start, end, text in replacements:
        if start < last_pos:
            raise ValueError(f"Edit at {start}-{end} overlaps or precedes the edit ending at {last_pos}")
        if end < start or end > len(source_text):
            raise ValueError(f"Edit span {start}-{end} is outside the source text")

        # Output the text between the last edit and this one
        unchanged = source_text[last_pos:start]
        builder.copy(unchanged, last_pos)
        result.append(unchanged)

        builder.replace(text, start)
        result.append(text)
        last_pos = end

    remaining = source_text[last_pos:]
    if remaining:
        builder.copy(remaining, last_pos)
        result.append(remaining)

    source_name = source_path or "<anonymous>"
    source_map = {
        "version": 3,
        "file": os.path.basename(source_name),
        "sources": [source_name],
        "sourcesContent": [source_text],
        "names": [],
        "mappings": builder.mappings(),
    }
    logger.debug(f"Applied {len(replacements)} edits to {source_name}")
    return "".join(result), json.dumps(source_map)
