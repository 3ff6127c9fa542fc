"""
Command line argument parser for nocojs.
"""

import argparse
from dataclasses import dataclass
from typing import List, Optional

from .options import PlaceholderType, TransformOptions


@dataclass
class CommandLineOptions:
    """Holds the parsed command line options."""
    debug: bool = False
    verbose: bool = False
    quiet: bool = False
    log_file: Optional[str] = None
    input_file: Optional[str] = None
    output_file: Optional[str] = None
    file_path: Optional[str] = None      # name used for JSX detection and the source map
    sourcemap_file: Optional[str] = None
    placeholder_url: Optional[str] = None  # compute one placeholder instead of transforming
    transform: Optional[TransformOptions] = None


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nocojs",
        description="Replace preview(\"image\") calls in JS/TS/JSX source with inline placeholder data URIs.",
        epilog="Reads source from stdin (or the input file), writes the transformed source to stdout "
               "(or the output file). Exits with status 1 when any image failed.",
    )

    parser.add_argument(
        "--input-file", "-i", type=str,
        help="Use FILE as input instead of stdin"
    )
    parser.add_argument(
        "--output-file", "-o", type=str,
        help="Write output to FILE instead of stdout"
    )
    parser.add_argument(
        "--file-path", type=str,
        help="Path reported for stdin input (default: the input file, or stdin.js)"
    )
    parser.add_argument(
        "--sourcemap", type=str, metavar="FILE",
        help="Write the source map to FILE"
    )
    parser.add_argument(
        "--placeholder", type=str, metavar="URL",
        help="Print the placeholder for a single image URL or path and exit"
    )
    parser.add_argument(
        "--type", "-t", type=str, default=PlaceholderType.NORMAL.value,
        choices=[t.value for t in PlaceholderType],
        help="Placeholder type (default: normal)"
    )
    parser.add_argument(
        "--width", "-W", type=_positive_int,
        help="Placeholder width in pixels (default: 16 when no height is given)"
    )
    parser.add_argument(
        "--height", "-H", type=_positive_int,
        help="Placeholder height in pixels"
    )
    parser.add_argument(
        "--no-replace", action="store_true",
        help="Compute placeholders but leave the calls unchanged"
    )
    parser.add_argument(
        "--no-cache", action="store_true",
        help="Neither read nor write the placeholder cache"
    )
    parser.add_argument(
        "--no-svg-wrap", action="store_true",
        help="Emit raw PNG data URIs instead of SVG wrapped ones"
    )
    parser.add_argument(
        "--public-dir", type=str,
        help="Directory local image paths are resolved against (default: ./public)"
    )
    parser.add_argument(
        "--cache-dir", type=str,
        help="Directory holding the cache file (default: ./.nocojs)"
    )
    parser.add_argument(
        "--debug", "-d", action="store_true",
        help="Enable debug logging level"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging level"
    )
    parser.add_argument(
        "--quiet", "-Q", action="store_true",
        help="Only log errors"
    )
    parser.add_argument(
        "--log-file", "-l", type=str,
        help="Also write log output to FILE"
    )
    return parser


class CommandLineParser:
    """Parses command line arguments."""

    @staticmethod
    def parse(args: List[str]) -> CommandLineOptions:
        """
        Parse command line arguments.

        Args:
            args: Command line arguments

        Returns:
            CommandLineOptions: The parsed options
        """
        parsed_args = _build_parser().parse_args(args)

        if parsed_args.debug:
            log_level = "verbose"
        elif parsed_args.verbose:
            log_level = "info"
        else:
            log_level = "error"

        transform_options = TransformOptions(
            placeholder_type=PlaceholderType.parse(parsed_args.type),
            replace_function_call=not parsed_args.no_replace,
            cache=not parsed_args.no_cache,
            width=parsed_args.width,
            height=parsed_args.height,
            wrap_with_svg=not parsed_args.no_svg_wrap,
            public_dir=parsed_args.public_dir,
            cache_file_dir=parsed_args.cache_dir,
            log_level=log_level,
            sourcemap_file_path=parsed_args.file_path or parsed_args.input_file,
        )

        return CommandLineOptions(
            debug=parsed_args.debug,
            verbose=parsed_args.verbose,
            quiet=parsed_args.quiet,
            log_file=parsed_args.log_file,
            input_file=parsed_args.input_file,
            output_file=parsed_args.output_file,
            file_path=parsed_args.file_path or parsed_args.input_file or "stdin.js",
            sourcemap_file=parsed_args.sourcemap,
            placeholder_url=parsed_args.placeholder,
            transform=transform_options,
        )
