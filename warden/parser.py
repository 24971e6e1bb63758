"""Request file parser.

A request file is a JSON front matter block followed by a line containing
exactly ``---`` and then the literal request body::

    {"name": "t1", "url": "http://example.org/", "method": "GET",
     "timeout": 50, "headers": ["Accept: text/plain"], "assertions": ["ok"]}
    ---
    hello

The divider may end with ``\\n``, ``\\r\\n`` or ``\\r``, or be the last line of
the file. Everything after it is kept byte for byte.
"""

import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import BinaryIO

from .models import Assertion, Header, Request

logger = logging.getLogger(__name__)

# First line consisting of exactly three dashes. The line terminator after
# the dashes (one \r, then one \n) is consumed with the divider.
_DIVIDER = re.compile(rb"(?:^|(?<=[\r\n]))---(?=[\r\n]|\Z)\r?\n?")


class ParseError(Exception):
    """Raised when a request file cannot be parsed."""

    pass


class NoFrontMatter(ParseError):
    """Raised when no divider line is found."""

    def __init__(self) -> None:
        super().__init__("front matter not found")


class InvalidMetadata(ParseError):
    """Raised when the front matter is not a valid request description."""

    pass


class ReadError(ParseError):
    """Raised when the underlying stream fails while being read."""

    pass


def split_front_matter(data: bytes) -> tuple[bytes, bytes]:
    """Split raw document bytes into (metadata, body) on the divider line.

    Raises:
        NoFrontMatter: If no line consisting of exactly ``---`` exists.
    """
    match = _DIVIDER.search(data)
    if match is None:
        raise NoFrontMatter()
    return data[: match.start()], data[match.end() :]


def _get_field(data: dict, key: str):
    """Look up a front matter key; an exact match wins, otherwise case is ignored."""
    if key in data:
        return data[key]
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == key:
            return value
    return None


def _string_field(data: dict, key: str) -> str:
    value = _get_field(data, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidMetadata(f"field '{key}' must be a string, got {type(value).__name__}")
    return value


def _int_field(data: dict, key: str) -> int:
    value = _get_field(data, key)
    if value is None:
        return 0
    # bool is an int subclass, but true/false is never a valid timeout
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidMetadata(f"field '{key}' must be an integer, got {value!r}")
    return value


def _string_list_field(data: dict, key: str) -> list[str]:
    value = _get_field(data, key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidMetadata(f"field '{key}' must be a list of strings")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise InvalidMetadata(f"field '{key}' entry {index} must be a string, got {item!r}")
    return value


def decode_metadata(metadata: bytes, validate: bool = True) -> Request:
    """Decode a front matter segment into a Request without a body.

    An empty (or whitespace-only) segment yields a Request with all defaults.

    Args:
        metadata: Raw bytes preceding the divider line.
        validate: Compile assertion patterns now and reject invalid ones.

    Returns:
        Request with every field except ``body`` populated.

    Raises:
        InvalidMetadata: If the segment is not a JSON object of the expected shape.
    """
    if not metadata.strip():
        return Request()

    try:
        data = json.loads(metadata)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidMetadata(f"invalid front matter: {e}") from e

    if data is None:
        return Request()
    if not isinstance(data, dict):
        raise InvalidMetadata(f"front matter must be a JSON object, got {type(data).__name__}")

    headers = tuple(Header.parse(line) for line in _string_list_field(data, "headers"))
    assertions = tuple(Assertion(pattern) for pattern in _string_list_field(data, "assertions"))

    if validate:
        for assertion in assertions:
            error = assertion.validate()
            if error is not None:
                raise InvalidMetadata(str(error)) from error

    return Request(
        name=_string_field(data, "name"),
        url=_string_field(data, "url"),
        method=_string_field(data, "method"),
        timeout_millis=_int_field(data, "timeout"),
        headers=headers,
        assertions=assertions,
    )


def parse_request_bytes(
    data: bytes,
    validate: bool = True,
    source: str | None = None,
) -> Request:
    """Parse a complete request document held in memory.

    Raises:
        NoFrontMatter: If the divider line is missing.
        InvalidMetadata: If the front matter does not decode.
    """
    metadata, body = split_front_matter(data)
    return replace(decode_metadata(metadata, validate=validate), body=body, source=source)


def parse_request(
    stream: BinaryIO,
    validate: bool = True,
    source: str | None = None,
    log: logging.Logger | None = None,
) -> Request:
    """Parse a request document from a readable byte stream.

    Args:
        stream: Binary stream positioned at the start of the document.
        validate: Compile assertion patterns during parsing.
        source: Optional origin of the document, recorded on the Request.
        log: Logger for diagnostics; defaults to this module's logger.

    Returns:
        The parsed Request.

    Raises:
        ReadError: If reading the stream fails.
        NoFrontMatter: If the divider line is missing.
        InvalidMetadata: If the front matter does not decode.
    """
    log = log or logger
    try:
        data = stream.read()
    except OSError as e:
        raise ReadError(f"unable to read request document: {e}") from e

    if isinstance(data, str):
        data = data.encode("utf-8")

    request = parse_request_bytes(data, validate=validate, source=source)
    log.debug(
        "Parsed request '%s' (%s %s, %d headers, %d assertions, %d body bytes)",
        request.name,
        request.method,
        request.url,
        len(request.headers),
        len(request.assertions),
        len(request.body),
    )
    return request


def load_request(path: str | Path, validate: bool = True, log: logging.Logger | None = None) -> Request:
    """Open and parse a request file.

    Raises:
        ReadError: If the file cannot be opened or read.
        NoFrontMatter: If the divider line is missing.
        InvalidMetadata: If the front matter does not decode.
    """
    try:
        with open(path, "rb") as f:
            return parse_request(f, validate=validate, source=str(path), log=log)
    except OSError as e:
        raise ReadError(f"unable to open request file '{path}': {e}") from e
