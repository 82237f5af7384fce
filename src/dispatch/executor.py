"""
Dispatch Executor

Issues one GET per (path, layer) for a fixed request set.

Concurrency model:
- outer level: at most `concurrency` paths in flight, bounded by a
  semaphore acquired by the dispatch loop and released when a path's task
  finishes
- inner level: all layer calls of one path run at once on a shared call
  pool sized concurrency x layers; the path task joins on every call
  before finalizing the path in the Result Store

Every call yields exactly one LayerResult. Transport failures, non-2xx
answers and body-read failures are recorded as data; nothing is retried.

The timeout is a whole-call deadline: it starts before the GET and covers
the body read, so a server that keeps trickling bytes is cut off once
the deadline passes.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Dict, List, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import InsecureRequestWarning
import urllib3

from src.domain.discrepancy import Evaluation
from src.domain.layer import Layer
from src.domain.request import LogicalRequest
from src.domain.result import TRANSPORT_FAILURE_STATUS, LayerResult, is_success_status
from src.store.result_store import ResultStore
from src.utils.logger import StructuredLogger, get_logger, log_operation, truncate_snippet

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_POOL_SIZE = 1000
READ_CHUNK_SIZE = 64 * 1024


class BodyReadTimeout(Exception):
    """Raised when a response body is still arriving at the call deadline."""


def build_session(pool_size: int = DEFAULT_POOL_SIZE, verify_tls: bool = False) -> requests.Session:
    """
    Create the shared HTTP session for a round.

    Test layers run with self-signed certificates, so TLS verification is
    off by default. Adapter-level retries are disabled.
    """
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = verify_tls
    if not verify_tls:
        urllib3.disable_warnings(InsecureRequestWarning)
    return session


class DispatchExecutor:
    """
    Runs one round of requests against every configured layer.

    Attributes:
        requests: Path-keyed LogicalRequest set (fixed before dispatch)
        store: Result Store receiving every LayerResult
        concurrency: Maximum number of paths in flight
        timeout: Per-call deadline in seconds (connect, headers and body)
        run_number: Round number used in progress lines
        peak_active_calls: Highest number of simultaneous calls observed
    """

    def __init__(
        self,
        requests_by_path: Mapping[str, LogicalRequest],
        store: ResultStore,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        run_number: int = 1,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            requests_by_path: Request set; every request must target exactly
                the store's layers
            store: Result Store for this round
            concurrency: Outer concurrency limit (paths in flight)
            timeout: Whole-call deadline in seconds, body read included
            session: Optional requests-like session (useful for testing)
            pool_size: Connection pool ceiling when no session is given;
                raised to concurrency x layers if smaller
            run_number: Round number for progress lines
            logger: Optional structured logger instance

        Raises:
            ValueError: If concurrency is not positive or a request does not
                target exactly the store's layers
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be positive, got {concurrency}")

        expected = set(store.layers)
        for path, request in requests_by_path.items():
            if set(request.layers) != expected:
                raise ValueError(
                    f"Request {path} targets {sorted(l.value for l in request.layers)}, "
                    f"expected {sorted(l.value for l in expected)}"
                )

        self.requests = dict(requests_by_path)
        self.store = store
        self.concurrency = concurrency
        self.timeout = timeout
        self.run_number = run_number
        self.logger = logger or get_logger(__name__)

        self.layers: List[Layer] = list(store.layers)
        self.session = session or build_session(max(pool_size, concurrency * len(self.layers)))

        self._slots = threading.BoundedSemaphore(concurrency)
        self._counter_lock = threading.Lock()
        self._active_calls = 0
        self.peak_active_calls = 0
        self._completed_calls: Dict[Layer, int] = {layer: 0 for layer in self.layers}
        self._completed_paths = 0
        self._call_pool: Optional[ThreadPoolExecutor] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def active_calls(self) -> int:
        with self._counter_lock:
            return self._active_calls

    @property
    def completed_calls(self) -> Dict[Layer, int]:
        with self._counter_lock:
            return dict(self._completed_calls)

    @log_operation("dispatch_round")
    def execute(self) -> None:
        """
        Dispatch every request and wait for all of them.

        Per-call failures are recorded in the store. Store misuse (a
        programming error) is re-raised once all paths have finished.
        """
        self.logger.info(
            f"Run-{self.run_number}; executing requests for {len(self.requests)} unique paths",
            operation="dispatch_round",
            context={
                "run": self.run_number,
                "paths": len(self.requests),
                "layers": [layer.value for layer in self.layers],
                "concurrency": self.concurrency,
            },
        )

        call_workers = self.concurrency * len(self.layers)
        futures: List[Future] = []
        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="path"
        ) as path_pool, ThreadPoolExecutor(
            max_workers=call_workers, thread_name_prefix="call"
        ) as call_pool:
            self._call_pool = call_pool
            for ordinal, request in enumerate(self.requests.values(), start=1):
                self._slots.acquire()
                try:
                    futures.append(path_pool.submit(self._run_path, request, ordinal))
                except BaseException:
                    self._slots.release()
                    raise
            wait(futures)
        self._call_pool = None

        for future in futures:
            future.result()

        self.logger.info(
            f"Run-{self.run_number}; request executor is done",
            operation="dispatch_round",
            context={
                "run": self.run_number,
                "completed": {layer.value: n for layer, n in self.completed_calls.items()},
                "peak_active_calls": self.peak_active_calls,
            },
        )

    def execute_request(self, request: LogicalRequest, ordinal: int = 0) -> Evaluation:
        """
        Call every layer for one path, join on all calls, then finalize.

        Layer calls always run concurrently: on the round's call pool while
        execute() is in progress, otherwise on a pool sized to the layers.
        """
        self.store.get_or_create(request.path)

        if self._call_pool is None:
            with ThreadPoolExecutor(
                max_workers=len(request.urls), thread_name_prefix="call"
            ) as call_pool:
                self._fan_out(call_pool, request, ordinal)
        else:
            self._fan_out(self._call_pool, request, ordinal)

        evaluation = self.store.finalize(request.path)

        with self._counter_lock:
            self._completed_paths += 1
            completed_paths = self._completed_paths

        self.logger.info(
            f"Run-{self.run_number}; done executing overall request {ordinal}",
            operation="execute_request",
            context={
                "run": self.run_number,
                "path": request.path,
                "completed_paths": completed_paths,
                "total_paths": len(self.requests),
                "discrepancies": len(evaluation.discrepancies),
            },
        )
        return evaluation

    def execute_call(self, layer: Layer, url: str) -> LayerResult:
        """
        Issue one GET and capture its outcome.

        Never raises: transport failures become status 0 results, 2xx body
        read failures set body_read_error, non-2xx bodies land in error_body.
        """
        self._enter_call()
        try:
            return self._get(layer, url)
        finally:
            self._exit_call()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _run_path(self, request: LogicalRequest, ordinal: int) -> Evaluation:
        try:
            return self.execute_request(request, ordinal)
        finally:
            self._slots.release()

    def _fan_out(self, call_pool: ThreadPoolExecutor, request: LogicalRequest, ordinal: int) -> None:
        calls = [
            call_pool.submit(self._call_and_record, request.path, layer, url, ordinal)
            for layer, url in request.urls.items()
        ]
        wait(calls)
        for call in calls:
            call.result()

    def _call_and_record(self, path: str, layer: Layer, url: str, ordinal: int) -> None:
        start_time = time.time()
        result = self.execute_call(layer, url)
        duration_ms = (time.time() - start_time) * 1000

        self.store.set_result(path, result)

        with self._counter_lock:
            self._completed_calls[layer] += 1
            completed = self._completed_calls[layer]

        context = {
            "run": self.run_number,
            "request": ordinal,
            "layer": layer.value,
            "status": result.status,
            "bytes": result.response_size,
            "completed": completed,
            "total": len(self.requests),
        }
        error = result.body_read_error or (result.error_body if not result.is_success else "")
        if result.is_transport_failure or result.body_read_error:
            self.logger.warning(
                f"Run-{self.run_number}; request {ordinal} failed for {layer.label}",
                operation="layer_call",
                context=context,
                error=truncate_snippet(error),
            )
        else:
            self.logger.info(
                f"Run-{self.run_number}; done executing request {ordinal} for {layer.label}",
                operation="layer_call",
                context=context,
                duration_ms=duration_ms,
            )

    def _get(self, layer: Layer, url: str) -> LayerResult:
        deadline = time.monotonic() + self.timeout
        try:
            response = self.session.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            return LayerResult(
                layer=layer,
                url=url,
                status=TRANSPORT_FAILURE_STATUS,
                error_body=f"error sending request: {e}",
            )

        with response:
            status = response.status_code
            headers = dict(response.headers)

            if is_success_status(status):
                try:
                    body = self._read_body(response, deadline)
                except (requests.RequestException, BodyReadTimeout) as e:
                    return LayerResult(
                        layer=layer,
                        url=url,
                        status=status,
                        headers=headers,
                        body_read_error=f"error reading response body: {e}",
                    )
                return LayerResult(
                    layer=layer,
                    url=url,
                    status=status,
                    headers=headers,
                    body=body,
                    response_size=len(body),
                )

            try:
                raw = self._read_body(response, deadline)
                error_body = _decode_text(raw, response.encoding)
            except (requests.RequestException, BodyReadTimeout) as e:
                error_body = f"error reading response body: {e}"
            return LayerResult(
                layer=layer,
                url=url,
                status=status,
                headers=headers,
                error_body=error_body,
            )

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        """
        Read a streamed body in chunks until it ends or the deadline passes.

        A watchdog closes the response at the deadline so a read blocked on
        a slow server returns; whatever the read then raises is reported as
        the timeout.

        Raises:
            BodyReadTimeout: If the body was not complete by the deadline
            requests.RequestException: If the stream broke before the deadline
        """
        expired = threading.Event()

        def expire():
            expired.set()
            response.close()

        watchdog = threading.Timer(max(deadline - time.monotonic(), 0.0), expire)
        watchdog.daemon = True
        watchdog.start()

        chunks: List[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                if expired.is_set() or time.monotonic() > deadline:
                    break
                chunks.append(chunk)
        except Exception:
            if not expired.is_set():
                raise
        finally:
            watchdog.cancel()

        if expired.is_set() or time.monotonic() > deadline:
            raise BodyReadTimeout(f"timeout after {self.timeout:g}s")
        return b"".join(chunks)

    def _enter_call(self) -> None:
        with self._counter_lock:
            self._active_calls += 1
            if self._active_calls > self.peak_active_calls:
                self.peak_active_calls = self._active_calls

    def _exit_call(self) -> None:
        with self._counter_lock:
            self._active_calls -= 1


def _decode_text(raw: bytes, encoding: Optional[str]) -> str:
    """Decode an error body with the declared charset, falling back to UTF-8."""
    try:
        return raw.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")
