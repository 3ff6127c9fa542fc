"""
Main entry point for nocojs.
"""

import logging
import sys
from typing import List, Optional

from .api import get_placeholder, transform
from .cli_parser import CommandLineParser
from .log import LogEntry, LogLevel, configure_logging
from .options import GetPlaceholderOptions
from .utils import format_file_size, read_stdin_or_file, write_stdout_or_file

logger = logging.getLogger('nocojs.cli')


def _has_errors(logs: List[LogEntry]) -> bool:
    return any(entry.level == LogLevel.ERROR for entry in logs)


def _print_placeholder(options) -> int:
    transform_options = options.transform
    result = get_placeholder(
        options.placeholder_url,
        GetPlaceholderOptions(
            placeholder_type=transform_options.placeholder_type,
            width=transform_options.width,
            height=transform_options.height,
            wrap_with_svg=transform_options.wrap_with_svg,
            cache=transform_options.cache,
            public_dir=transform_options.public_dir,
            cache_file_dir=transform_options.cache_file_dir,
            log_level=transform_options.log_level,
        ),
    )
    if result.is_error:
        return 1
    write_stdout_or_file(result.placeholder + "\n", options.output_file)
    return 0


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the application.

    Args:
        args: Command line arguments (uses sys.argv[1:] if None)

    Returns:
        int: Exit code
    """
    if args is None:
        args = sys.argv[1:]

    options = CommandLineParser.parse(args)
    configure_logging(options.debug, options.verbose, options.quiet, options.log_file)

    try:
        if options.placeholder_url:
            return _print_placeholder(options)

        source = read_stdin_or_file(options.input_file)
        logger.info(f"Read {format_file_size(len(source.encode('utf-8')))} from {options.file_path}")

        result = transform(source, options.file_path, options.transform)

        write_stdout_or_file(result.code, options.output_file)
        logger.info(f"Wrote {format_file_size(len(result.code.encode('utf-8')))} "
                    f"to {options.output_file or 'stdout'}")

        if options.sourcemap_file and result.map:
            write_stdout_or_file(result.map, options.sourcemap_file)
            logger.info(f"Wrote source map to {options.sourcemap_file}")

        return 1 if _has_errors(result.logs) else 0

    except (RuntimeError, ValueError) as e:
        logger.error(f"Error: {e}")
        if options.debug:
            logger.exception("Stack trace:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
