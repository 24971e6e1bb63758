"""Concurrent probe dispatch with per-request timeouts and assertions."""

import http.client
import logging
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from queue import SimpleQueue
from threading import Event, Lock, Timer

from .config import DEFAULT_USER_AGENT
from .models import (
    RESPONSE_TIME_UNKNOWN,
    AssertionCompileError,
    AssertionFailed,
    ProbeError,
    ProbeTimeout,
    ReadBodyError,
    Request,
    Result,
    TransportError,
)

logger = logging.getLogger(__name__)


class _RedirectHandler(urllib.request.HTTPRedirectHandler):
    """Redirect handler that follows 307 and 308 keeping method and body."""

    def http_error_307(self, req, fp, code, msg, headers):
        """Handle 307 Temporary Redirect."""
        return self._do_redirect(req, fp, code, msg, headers)

    def http_error_308(self, req, fp, code, msg, headers):
        """Handle 308 Permanent Redirect."""
        return self._do_redirect(req, fp, code, msg, headers)

    def _do_redirect(self, req, fp, code, msg, headers):
        """Follow redirect preserving the original method and payload."""
        new_url = headers.get("Location")
        if not new_url:
            return None
        fp.read()
        fp.close()
        new_req = urllib.request.Request(
            urllib.parse.urljoin(req.full_url, new_url),
            data=req.data,
            method=req.get_method(),
            headers=dict(req.headers),
        )
        new_req.cancel_token = getattr(req, "cancel_token", None)
        return self.parent.open(new_req, timeout=req.timeout)

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        new_req = super().redirect_request(req, fp, code, msg, headers, newurl)
        if new_req is not None:
            new_req.cancel_token = getattr(req, "cancel_token", None)
        return new_req


class _CancellableConnectionMixin:
    """HTTP connection that shuts its socket down when the probe is cancelled.

    Shutting the socket down wakes any read blocked on it, whether the call
    is still waiting for response headers or draining the body.
    """

    def __init__(self, *args, cancel=None, **kwargs):
        super().__init__(*args, **kwargs)
        self._cancel = cancel

    def connect(self):
        super().connect()
        if self._cancel is not None:
            # urllib drops self.sock once headers arrive; the body is still read from it
            sock = self.sock
            self._cancel.on_cancel(lambda: sock.shutdown(socket.SHUT_RDWR))


class _CancellableHTTPConnection(_CancellableConnectionMixin, http.client.HTTPConnection):
    pass


class _CancellableHTTPSConnection(_CancellableConnectionMixin, http.client.HTTPSConnection):
    pass


def _prepare_request(handler, req):
    """Run urllib's request preparation, minus its default form Content-Type.

    Only the headers listed in the request file (plus the User-Agent,
    Host and Content-Length) are sent.
    """
    has_content_type = req.has_header("Content-type")
    req = handler.do_request_(req)
    if not has_content_type:
        req.remove_header("Content-type")
    return req


class _ProbeHTTPHandler(urllib.request.HTTPHandler):
    def http_open(self, req):
        return self.do_open(_CancellableHTTPConnection, req, cancel=getattr(req, "cancel_token", None))

    def http_request(self, req):
        return _prepare_request(self, req)


class _ProbeHTTPSHandler(urllib.request.HTTPSHandler):
    def https_open(self, req):
        return self.do_open(
            _CancellableHTTPSConnection,
            req,
            context=self._context,
            cancel=getattr(req, "cancel_token", None),
        )

    def https_request(self, req):
        return _prepare_request(self, req)


# Create opener with custom redirect and cancellable connection handlers
_opener = urllib.request.build_opener(_RedirectHandler(), _ProbeHTTPHandler(), _ProbeHTTPSHandler())


class CancelToken:
    """Signals that the outcome of an in-flight HTTP call is no longer wanted.

    Connections register socket shutdowns with ``on_cancel``; they run once, on
    the thread that calls ``cancel``. A callback registered after cancellation
    runs immediately.
    """

    def __init__(self) -> None:
        self._event = Event()
        self._lock = Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run(callback)

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run(callback)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.debug("Cancel callback failed: %s", e)


def _build_http_request(request: Request, user_agent: str, log: logging.Logger) -> urllib.request.Request:
    """Translate a Request into a urllib request.

    Header lines with the same name are joined with ", " since urllib keeps
    one value per name. Lines without a name cannot be sent and are skipped.
    """
    headers: dict[str, str] = {}
    names: dict[str, str] = {}
    for header in request.headers:
        name = header.name
        if not name:
            log.debug("[%s]: skipping header without name: %r", request.name, header.line)
            continue
        key = name.lower()
        if key in names:
            first = names[key]
            headers[first] = f"{headers[first]}, {header.value}"
        else:
            names[key] = name
            headers[name] = header.value

    if "user-agent" not in names:
        headers["User-Agent"] = user_agent

    return urllib.request.Request(
        request.url,
        data=request.body or None,
        method=request.method or None,
        headers=headers,
    )


def _log_exchange(request: Request, response_headers, content: bytes, log: logging.Logger) -> None:
    """Log request and response details at debug level."""
    if not log.isEnabledFor(logging.DEBUG):
        return
    log.debug("[%s]: HTTP request:\n%s", request.name, request.body.decode("utf-8", errors="replace"))
    for header in request.headers:
        log.debug("[%s]: HTTP request header: %s", request.name, header)
    if response_headers is not None:
        for name, value in response_headers.items():
            log.debug("[%s]: HTTP response header: %s=%s", request.name, name, value)
    log.debug("[%s]: HTTP response:\n%s", request.name, content.decode("utf-8", errors="replace"))


def check_assertions(request: Request, content: bytes) -> ProbeError | None:
    """Evaluate assertions in declared order and return the first failure.

    Assertions after the first failing one are never evaluated.

    Args:
        request: Request whose assertions are checked.
        content: Raw response body.

    Returns:
        AssertionFailed or AssertionCompileError for the first failing
        assertion, None if all of them match.
    """
    for assertion in request.assertions:
        try:
            if not assertion.matches(content):
                return AssertionFailed(assertion.pattern)
        except AssertionCompileError as e:
            return e
    return None


def send(
    request: Request,
    cancel: CancelToken | None = None,
    user_agent: str = DEFAULT_USER_AGENT,
    log: logging.Logger | None = None,
) -> Result:
    """Perform the HTTP call for a request and validate the response.

    The socket timeout bounds each blocking operation. The whole call is
    bounded by ``cancel``: Dispatcher cancels it when the probe times out.

    Args:
        request: The probe definition to execute.
        cancel: Token whose cancellation shuts down the connection socket.
        user_agent: User-Agent sent when the request does not set one.
        log: Logger for diagnostics; defaults to this module's logger.

    Returns:
        Result with the response body and elapsed time, or the terminal error.
    """
    log = log or logger
    cancel = cancel or CancelToken()

    try:
        http_request = _build_http_request(request, user_agent, log)
        http_request.cancel_token = cancel
    except ValueError as e:
        return Result(request=request, error=TransportError(e))

    socket_timeout = request.timeout_millis / 1000 if request.timeout_millis > 0 else None
    start = time.monotonic()

    try:
        response = _opener.open(http_request, timeout=socket_timeout)
    except urllib.error.HTTPError as e:
        # Any HTTP status is a response; only the assertions decide pass/fail
        response = e
    except urllib.error.URLError as e:
        if isinstance(e.reason, TimeoutError):
            return Result(request=request, error=ProbeTimeout(request.timeout_millis))
        cause = e.reason if isinstance(e.reason, BaseException) else e
        return Result(request=request, error=TransportError(cause))
    except TimeoutError:
        return Result(request=request, error=ProbeTimeout(request.timeout_millis))
    except Exception as e:
        return Result(request=request, error=TransportError(e))

    status_code = response.status

    try:
        with response:
            content = response.read()
    except TimeoutError:
        return Result(request=request, error=ProbeTimeout(request.timeout_millis), status_code=status_code)
    except Exception as e:
        return Result(
            request=request,
            response_time_ms=int((time.monotonic() - start) * 1000),
            error=ReadBodyError(e),
            status_code=status_code,
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    _log_exchange(request, response.headers, content, log)

    error = check_assertions(request, content)
    if error is not None:
        return Result(request=request, response_time_ms=elapsed_ms, error=error, status_code=status_code)

    try:
        body = content.decode("utf-8")
    except UnicodeDecodeError:
        return Result(
            request=request,
            response_time_ms=elapsed_ms,
            error=ReadBodyError("response is not valid UTF-8"),
            status_code=status_code,
        )

    return Result(request=request, response_body=body, response_time_ms=elapsed_ms, status_code=status_code)


class _Settlement:
    """Delivers exactly one Result per probe, whichever of call or timer finishes first."""

    def __init__(self, results: SimpleQueue) -> None:
        self._results = results
        self._lock = Lock()
        self._settled = False

    def settle(self, result: Result) -> bool:
        with self._lock:
            if self._settled:
                return False
            self._settled = True
        self._results.put(result)
        return True


class Dispatcher:
    """Runs probes concurrently and yields their results in completion order.

    By default every request gets its own worker thread, so all calls start
    at once. ``max_in_flight`` caps the number of simultaneous calls; a
    probe's timeout starts when its call starts, not when it is queued.

    Example:
        dispatcher = Dispatcher()
        for result in dispatcher.run(requests):
            print(format_result(result))
    """

    def __init__(
        self,
        max_in_flight: int | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            max_in_flight: Maximum concurrent calls, or None for one per request.
            user_agent: User-Agent sent when a request does not set one.
            log: Logger for diagnostics; defaults to this module's logger.
        """
        if max_in_flight is not None and max_in_flight < 1:
            raise ValueError(f"max_in_flight must be at least 1, got {max_in_flight}")
        self._max_in_flight = max_in_flight
        self._user_agent = user_agent
        self._log = log or logger

    def run(self, requests: Iterable[Request]) -> Iterator[Result]:
        """Dispatch all requests now and return an iterator over their results.

        The iterator yields exactly one Result per request, in completion
        order. A probe that times out is reported as soon as its timer fires,
        without waiting for the abandoned call.
        """
        requests = list(requests)
        results: SimpleQueue = SimpleQueue()

        if requests:
            workers = self._max_in_flight or len(requests)
            self._log.debug("Dispatching %d requests with %d workers", len(requests), workers)
            executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="warden-probe")
            for request in requests:
                executor.submit(self._probe, request, _Settlement(results))
            # Queued probes still run; a hung call must not block the caller
            executor.shutdown(wait=False)

        return self._collect(results, len(requests))

    @staticmethod
    def _collect(results: SimpleQueue, count: int) -> Iterator[Result]:
        for _ in range(count):
            yield results.get()

    def _probe(self, request: Request, settlement: _Settlement) -> None:
        """Execute one request, racing the call against its timeout."""
        if request.timeout_millis <= 0:
            settlement.settle(Result(request=request, error=ProbeTimeout(request.timeout_millis)))
            return

        cancel = CancelToken()
        timer = Timer(request.timeout_millis / 1000, self._expire, args=(request, settlement, cancel))
        timer.daemon = True
        timer.start()

        try:
            result = send(request, cancel=cancel, user_agent=self._user_agent, log=self._log)
        except Exception as e:
            self._log.error("Probe %s failed unexpectedly: %s", request.name, e)
            result = Result(request=request, error=TransportError(e))
        finally:
            timer.cancel()

        if not settlement.settle(result):
            self._log.debug("[%s]: discarding outcome of timed-out call", request.name)

    def _expire(self, request: Request, settlement: _Settlement, cancel: CancelToken) -> None:
        """Timer callback: report the timeout and cancel the in-flight call."""
        timeout = Result(request=request, response_time_ms=RESPONSE_TIME_UNKNOWN, error=ProbeTimeout(request.timeout_millis))
        if settlement.settle(timeout):
            self._log.debug("[%s]: timeout after %d ms, cancelling call", request.name, request.timeout_millis)
            cancel.cancel()


def run_requests(requests: Iterable[Request], **kwargs) -> list[Result]:
    """Dispatch requests and collect every Result in completion order.

    Keyword arguments are passed to Dispatcher.
    """
    return list(Dispatcher(**kwargs).run(requests))
