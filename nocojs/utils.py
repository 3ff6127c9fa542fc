"""
Utility functions for the nocojs command line.
"""

import sys
from typing import Optional


def format_file_size(size_bytes: float, decimals: int = 1) -> str:
    """
    Format a size in human-readable form.

    Args:
        size_bytes: The size in bytes
        decimals: Number of decimal places to display

    Returns:
        str: The formatted size
    """
    units = ["B", "KB", "MB", "GB"]

    if size_bytes == 0:
        return "0 B"

    unit_index = 0
    while size_bytes >= 1024 and unit_index < len(units) - 1:
        size_bytes /= 1024.0
        unit_index += 1

    return f"{size_bytes:.{decimals}f} {units[unit_index]}"


def read_stdin_or_file(file_path: Optional[str] = None) -> str:
    """
    Read source text from stdin or a file.

    Raises:
        RuntimeError: If the input cannot be read
    """
    if file_path:
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise RuntimeError(f"Error reading input file: {e}") from e
    try:
        return sys.stdin.read()
    except (OSError, UnicodeDecodeError) as e:
        raise RuntimeError(f"Error reading from stdin: {e}") from e


def write_stdout_or_file(content: str, file_path: Optional[str] = None) -> None:
    """
    Write content to stdout or a file.

    Raises:
        RuntimeError: If the output cannot be written
    """
    if file_path:
        try:
            with open(file_path, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            raise RuntimeError(f"Error writing to output file: {e}") from e
        return
    try:
        sys.stdout.write(content)
        sys.stdout.flush()
    except OSError as e:
        raise RuntimeError(f"Error writing to stdout: {e}") from e
