"""Directory scanning for request files."""

import logging
import stat
from pathlib import Path

from .models import Request
from .parser import ParseError, load_request

logger = logging.getLogger(__name__)


class ScanError(Exception):
    """Raised when the request directory cannot be scanned."""

    pass


def scan_directory(directory: str | Path, log: logging.Logger | None = None) -> list[Request]:
    """Load every request file found directly inside a directory.

    Sub-directories are not descended into. Files that cannot be read or
    parsed are skipped with a warning; one bad file never aborts the scan.

    Args:
        directory: Directory containing request files.
        log: Logger for diagnostics; defaults to this module's logger.

    Returns:
        Parsed requests, in file name order.

    Raises:
        ScanError: If the path does not exist, is not a directory, or cannot be listed.
    """
    log = log or logger
    path = Path(directory)
    log.debug("Scanning directory '%s'", path)

    try:
        mode = path.stat().st_mode
    except OSError as e:
        raise ScanError(f"unable to stat directory '{path}'") from e

    if not stat.S_ISDIR(mode):
        raise ScanError(f"'{path}' is not a directory")

    try:
        entries = sorted(path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ScanError(f"unable to list directory '{path}': {e}") from e

    requests: list[Request] = []
    for entry in entries:
        if entry.is_dir():
            log.debug("Skipping directory '%s'", entry)
            continue

        try:
            request = load_request(entry, log=log)
        except ParseError as e:
            log.warning("Could not parse request file '%s': %s", entry.name, e)
            continue

        requests.append(request)

    log.debug("Found %d correct requests", len(requests))
    return requests
