"""Human-readable rendering of probe results."""

from .models import Result


def format_result(result: Result) -> str:
    """Render a result as a single status line.

    Example:
        OK    Example (42 ms)
        FAIL  Example (0 ms); error: timeout after 50 ms

    A response time that was never measured renders as 0 ms.
    """
    prefix = "OK    " if result.ok else "FAIL  "
    elapsed_ms = max(result.response_time_ms, 0)
    line = f"{prefix}{result.request.name} ({elapsed_ms} ms)"
    if result.error is not None:
        line += f"; error: {result.error}"
    return line
