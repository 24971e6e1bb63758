"""Warden - concurrent HTTP probes driven by a directory of request files."""

import argparse
import logging
import sys

__version__ = "1.0.0"

# Process exit codes
EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_BAD_DIRECTORY = 3
EXIT_USAGE = 4

logger = logging.getLogger(__name__)


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser that exits with the usage error code."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def _setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="warden",
        description="Fire the HTTP requests described in a directory of request files "
        "and check their responses.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"warden {__version__}",
    )
    parser.add_argument(
        "-d", "--dir",
        dest="directory",
        help="Directory with request files (default: current directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debugging/verbosity",
    )
    parser.add_argument(
        "--max-in-flight",
        type=int,
        help="Maximum number of concurrent requests (default: all at once)",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to YAML configuration file (default: warden.yaml if present)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the warden command.

    Returns:
        Process exit code. Individual probe failures do not change it.
    """
    args = _build_parser().parse_args(argv)

    # Import here to allow logging setup first
    from .config import ConfigError, load_config, with_overrides
    from .dispatch import Dispatcher
    from .report import format_result
    from .scanner import ScanError, scan_directory

    # 1. Load configuration
    try:
        config = with_overrides(
            load_config(args.config),
            directory=args.directory,
            debug=args.debug,
            max_in_flight=args.max_in_flight,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    _setup_logging(config.debug)
    logger.debug("warden %s starting", __version__)

    # 2. Collect requests
    try:
        requests = scan_directory(config.directory)
    except ScanError as e:
        print(f"unable to scan directory '{config.directory}': {e}", file=sys.stderr)
        return EXIT_BAD_DIRECTORY

    # 3. Dispatch and print results as they complete
    dispatcher = Dispatcher(max_in_flight=config.max_in_flight, user_agent=config.user_agent)
    for result in dispatcher.run(requests):
        print(format_result(result), flush=True)

    return EXIT_OK
