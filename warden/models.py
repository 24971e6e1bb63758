"""Data models for request files and probe results."""

import re
from dataclasses import dataclass, field
from functools import cached_property

# Response time recorded when no response was obtained (transport error, timeout).
RESPONSE_TIME_UNKNOWN = -1


class ProbeError(Exception):
    """Base class for the terminal error of a single probe."""

    pass


class TransportError(ProbeError):
    """Raised when the HTTP call itself fails (DNS, connection, protocol)."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause) or type(cause).__name__)
        self.cause = cause


class ProbeTimeout(ProbeError):
    """Raised when the timeout fires before the HTTP call completes."""

    def __init__(self, timeout_millis: int) -> None:
        super().__init__(f"timeout after {timeout_millis} ms")
        self.timeout_millis = timeout_millis


class ReadBodyError(ProbeError):
    """Raised when the response body cannot be read or decoded."""

    def __init__(self, cause: BaseException | str) -> None:
        super().__init__(f"unable to read response body: {cause}")
        self.cause = cause


class AssertionFailed(ProbeError):
    """Raised when an assertion pattern is not found in the response body."""

    def __init__(self, pattern: str) -> None:
        super().__init__(f"assertion failed: '{pattern}'")
        self.pattern = pattern


class AssertionCompileError(ProbeError):
    """Raised when an assertion pattern is not a valid regular expression."""

    def __init__(self, pattern: str, cause: re.error) -> None:
        super().__init__(f"assertion regexp '{pattern}' cannot be compiled: {cause}")
        self.pattern = pattern
        self.cause = cause


@dataclass(frozen=True)
class Header:
    """A raw ``Name: Value`` header line.

    No validation against the HTTP header grammar is performed; the line is
    passed through as written in the request file.
    """

    line: str

    @classmethod
    def parse(cls, line: str) -> "Header":
        return cls(line=line)

    @property
    def name(self) -> str:
        """Text before the first colon, or empty if there is none."""
        idx = self.line.find(":")
        if idx > 0:
            return self.line[:idx]
        return ""

    @property
    def value(self) -> str:
        """Text after the first colon with surrounding spaces trimmed."""
        idx = self.line.find(":")
        if idx < 0:
            return ""
        return self.line[idx + 1 :].strip(" ")

    def __str__(self) -> str:
        return self.line


@dataclass(frozen=True)
class Assertion:
    """A regular expression the response body must contain.

    The pattern is compiled once, on first use, and matched against the raw
    response bytes with an unanchored search.
    """

    pattern: str

    @classmethod
    def compile(cls, pattern: str) -> "Assertion":
        """Build an assertion and compile it right away.

        Raises:
            AssertionCompileError: If the pattern is not a valid regex.
        """
        assertion = cls(pattern=pattern)
        error = assertion.validate()
        if error is not None:
            raise error
        return assertion

    @cached_property
    def _compiled(self) -> re.Pattern[bytes] | AssertionCompileError:
        try:
            return re.compile(self.pattern.encode("utf-8"))
        except re.error as e:
            return AssertionCompileError(self.pattern, e)

    def validate(self) -> AssertionCompileError | None:
        """Return the compile diagnostic, or None if the pattern is valid."""
        compiled = self._compiled
        if isinstance(compiled, AssertionCompileError):
            return compiled
        return None

    def matches(self, content: bytes) -> bool:
        """Check whether the pattern occurs anywhere in content.

        Raises:
            AssertionCompileError: If the pattern is not a valid regex.
        """
        compiled = self._compiled
        if isinstance(compiled, AssertionCompileError):
            raise compiled
        return compiled.search(content) is not None

    def __str__(self) -> str:
        return self.pattern


@dataclass(frozen=True)
class Request:
    """One probe definition loaded from a request file.

    Attributes:
        name: Display identifier.
        url: Target URL, handed to the HTTP client unvalidated.
        method: HTTP method; validity is decided by the client at call time.
        timeout_millis: Probe timeout in milliseconds. Zero or negative times out immediately.
        headers: Raw header lines in declared order (duplicates allowed).
        assertions: Patterns that must all match the response body, checked in order.
        body: Exact bytes following the divider, sent as the request payload.
        source: Path of the request file, or None if not loaded from disk.
    """

    name: str = ""
    url: str = ""
    method: str = ""
    timeout_millis: int = 0
    headers: tuple[Header, ...] = ()
    assertions: tuple[Assertion, ...] = ()
    body: bytes = b""
    source: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Result:
    """Outcome of executing one Request.

    Attributes:
        request: The originating request.
        response_body: Response content, empty on failure.
        response_time_ms: Elapsed time in milliseconds, or RESPONSE_TIME_UNKNOWN
            when no response was obtained.
        error: Terminal error of the probe, None on success.
        status_code: HTTP status of the response, or None if there was none.
    """

    request: Request
    response_body: str = ""
    response_time_ms: int = RESPONSE_TIME_UNKNOWN
    error: ProbeError | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
