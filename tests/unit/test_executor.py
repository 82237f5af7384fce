"""
Unit tests for the Dispatch Executor (src/dispatch/executor.py)

HTTP is served by an in-process StubSession; no sockets are opened.

Tests covering:
- Exactly one LayerResult per (path, layer) after a round
- Transport failures, non-2xx bodies and 2xx read failures captured as data
- Isolation of one failing layer from the others
- Active-call ceiling of concurrency x layers
- Session construction
"""

import time
from unittest.mock import MagicMock

import pytest
import requests

from src.comparison.engine import ConsistencyEngine
from src.dispatch.executor import DispatchExecutor, build_session
from src.domain.discrepancy import ComparisonPair, DiscrepancyKind
from src.domain.layer import Layer
from src.domain.request import LogicalRequest
from src.store.result_store import ResultStore
from tests.stubs import StubResponse, StubSession

LAYERS = (Layer.KUBO_GW, Layer.LASSIE, Layer.L1_SHIM)
HOSTS = {Layer.KUBO_GW: "kubo.test", Layer.LASSIE: "lassie.test", Layer.L1_SHIM: "shim.test"}


def _requests(count):
    return {
        f"/ipfs/cid{i}": LogicalRequest(
            path=f"/ipfs/cid{i}",
            urls={layer: f"http://{HOSTS[layer]}/ipfs/cid{i}" for layer in LAYERS},
        )
        for i in range(count)
    }


def _store(layers=LAYERS):
    pairs = [ComparisonPair(layers[0], layer) for layer in layers[1:]]
    return ResultStore(layers, ConsistencyEngine(pairs, logger=MagicMock()))


def _executor(requests_by_path, store, session, concurrency=2, timeout=5.0):
    return DispatchExecutor(
        requests_by_path,
        store,
        concurrency=concurrency,
        timeout=timeout,
        session=session,
        logger=MagicMock(),
    )


def _echo(url):
    return StubResponse(200, content=url.rsplit("/", 1)[-1].encode())


class TestRound:
    """Tests for a complete dispatch round."""

    def test_every_slot_populated_once(self):
        """Every path ends finalized with one result per layer."""
        requests_by_path = _requests(12)
        store = _store()
        session = StubSession(_echo)

        _executor(requests_by_path, store, session).execute()

        assert len(session.calls) == 12 * len(LAYERS)
        assert sorted(store.paths()) == sorted(requests_by_path)
        for path in requests_by_path:
            assert store.is_finalized(path)
            assert store.result_set(path).is_complete
        assert store.completed_counts() == {layer: 12 for layer in LAYERS}
        assert store.summary().total_paths == 12

    def test_calls_use_timeout_and_streaming(self):
        """Each GET is streamed with the configured timeout."""
        session = StubSession(_echo)
        _executor(_requests(1), _store(), session).execute()

        assert all(kwargs == {"timeout": 5.0, "stream": True} for kwargs in session.kwargs)
        assert all(response.closed for response in session.responses)

    def test_matching_layers_produce_no_discrepancy(self):
        """Identical answers everywhere give matches only."""
        store = _store()
        _executor(_requests(3), store, StubSession(_echo)).execute()

        summary = store.summary()
        assert store.discrepancies() == []
        assert all(count == 3 for count in summary.content_matches.values())

    def test_active_calls_never_exceed_ceiling(self):
        """In-flight calls stay within concurrency x layers."""
        concurrency = 3
        session = StubSession(_echo, delay=0.02)
        executor = _executor(_requests(20), _store(), session, concurrency=concurrency)

        executor.execute()

        assert 0 < executor.peak_active_calls <= concurrency * len(LAYERS)
        assert executor.active_calls == 0

    def test_request_layers_must_match_store(self):
        """A request missing a layer is rejected up front."""
        requests_by_path = {
            "/ipfs/cid": LogicalRequest(
                path="/ipfs/cid", urls={Layer.KUBO_GW: "http://kubo.test/ipfs/cid"}
            )
        }
        with pytest.raises(ValueError):
            _executor(requests_by_path, _store(), StubSession(_echo))

    def test_invalid_concurrency(self):
        """Concurrency below one is refused."""
        with pytest.raises(ValueError):
            _executor(_requests(1), _store(), StubSession(_echo), concurrency=0)


class TestFailureCapture:
    """Tests for per-call failures recorded as data."""

    def test_transport_failure_isolated(self):
        """An unreachable layer never stops the other layers' calls."""

        def handler(url):
            if "lassie.test" in url:
                return requests.ConnectionError("connection refused")
            return _echo(url)

        store = _store()
        _executor(_requests(4), store, StubSession(handler)).execute()

        for path in store.paths():
            result_set = store.result_set(path)
            lassie = result_set[Layer.LASSIE]
            assert lassie.status == 0
            assert lassie.error_body.startswith("error sending request: ")
            assert result_set[Layer.KUBO_GW].status == 200
            assert result_set[Layer.L1_SHIM].status == 200

        status = store.discrepancies(kind=DiscrepancyKind.STATUS_MISMATCH)
        assert len(status) == 4

    def test_non_2xx_body_captured(self):
        """The body of a non-2xx answer lands in error_body."""

        def handler(url):
            if "shim.test" in url:
                return StubResponse(502, content=b"upstream timed out")
            return _echo(url)

        store = _store()
        _executor(_requests(1), store, StubSession(handler)).execute()

        shim = store.result_set("/ipfs/cid0")[Layer.L1_SHIM]
        assert shim.status == 502
        assert shim.error_body == "upstream timed out"
        assert shim.response_size == 0

    def test_read_error_on_2xx(self):
        """A 2xx whose body fails mid-stream is flagged, not compared."""

        def handler(url):
            if "kubo.test" in url:
                return StubResponse(
                    200, read_error=requests.exceptions.ChunkedEncodingError("reset")
                )
            return _echo(url)

        store = _store()
        _executor(_requests(2), store, StubSession(handler)).execute()

        kubo = store.result_set("/ipfs/cid0")[Layer.KUBO_GW]
        assert kubo.body_read_error.startswith("error reading response body: ")
        assert store.discrepancies() == []
        assert store.summary().read_errors[Layer.KUBO_GW] == 2

    def test_execute_call_records_headers_and_size(self):
        """A single call returns the full body and headers."""
        session = StubSession(
            lambda url: StubResponse(200, content=b"abc", headers={"X-Ipfs-Path": "/ipfs/cid"})
        )
        executor = _executor(_requests(1), _store(), session)

        result = executor.execute_call(Layer.LASSIE, "http://lassie.test/ipfs/cid")

        assert result.body == b"abc"
        assert result.response_size == 3
        assert result.headers == {"X-Ipfs-Path": "/ipfs/cid"}
        assert executor.active_calls == 0

    def test_chunked_body_joined(self):
        """A body streamed in several chunks is stored whole."""
        session = StubSession(lambda url: StubResponse(200, chunks=[b"ab", b"cd", b"e"]))
        executor = _executor(_requests(1), _store(), session)

        result = executor.execute_call(Layer.LASSIE, "http://lassie.test/ipfs/cid")

        assert result.body == b"abcde"
        assert result.response_size == 5

    def test_non_2xx_body_decoded_with_response_encoding(self):
        """A non-2xx body is decoded with the charset the server declared."""
        session = StubSession(
            lambda url: StubResponse(404, content="não".encode("latin-1"), encoding="latin-1")
        )
        executor = _executor(_requests(1), _store(), session)

        result = executor.execute_call(Layer.LASSIE, "http://lassie.test/ipfs/cid")

        assert result.error_body == "não"


class TestCallDeadline:
    """Tests for the whole-call timeout covering the body read."""

    @staticmethod
    def _trickle(status):
        # ten chunks 50ms apart: half a second in total
        return StubResponse(status, chunks=[b"x"] * 10, chunk_delay=0.05)

    def test_slow_2xx_body_cut_off(self):
        """A body still trickling in at the deadline is a read error."""
        session = StubSession(lambda url: self._trickle(200))
        executor = _executor(_requests(1), _store(), session, timeout=0.1)

        started = time.monotonic()
        result = executor.execute_call(Layer.LASSIE, "http://lassie.test/ipfs/cid")
        elapsed = time.monotonic() - started

        assert result.status == 200
        assert result.body is None
        assert result.response_size == 0
        assert result.body_read_error == "error reading response body: timeout after 0.1s"
        assert elapsed < 0.4
        assert session.responses[0].closed

    def test_slow_non_2xx_body_cut_off(self):
        """An error body is bounded by the same deadline."""
        session = StubSession(lambda url: self._trickle(502))
        executor = _executor(_requests(1), _store(), session, timeout=0.1)

        started = time.monotonic()
        result = executor.execute_call(Layer.LASSIE, "http://lassie.test/ipfs/cid")

        assert time.monotonic() - started < 0.4
        assert result.status == 502
        assert result.error_body == "error reading response body: timeout after 0.1s"

    def test_slow_layer_is_read_error_in_round(self):
        """A trickling layer is excluded from comparison, not compared short."""

        def handler(url):
            if "kubo.test" in url:
                return self._trickle(200)
            return StubResponse(200, content=b"x" * 10)

        store = _store()
        _executor(_requests(1), store, StubSession(handler), timeout=0.1).execute()

        evaluation = store.evaluation("/ipfs/cid0")
        assert evaluation.read_error_layers == [Layer.KUBO_GW]
        assert evaluation.discrepancies == []

    def test_body_within_deadline(self):
        """A slow body that finishes in time is kept intact."""
        session = StubSession(
            lambda url: StubResponse(200, chunks=[b"a", b"b"], chunk_delay=0.01)
        )
        executor = _executor(_requests(1), _store(), session, timeout=2.0)

        result = executor.execute_call(Layer.LASSIE, "http://lassie.test/ipfs/cid")

        assert result.body == b"ab"
        assert result.body_read_error == ""


class TestExecuteRequest:
    """Tests for dispatching a single path outside a round."""

    def test_layers_called_concurrently(self):
        """All layer calls of a path overlap even with concurrency 1."""
        requests_by_path = _requests(1)
        store = _store()
        executor = _executor(
            requests_by_path, store, StubSession(_echo, delay=0.1), concurrency=1
        )

        evaluation = executor.execute_request(requests_by_path["/ipfs/cid0"], ordinal=1)

        assert executor.peak_active_calls == len(LAYERS)
        assert store.is_finalized("/ipfs/cid0")
        assert evaluation is store.evaluation("/ipfs/cid0")

    def test_single_path_in_round_overlaps_layers(self):
        """A round with one path in flight still overlaps its layer calls."""
        executor = _executor(
            _requests(2), _store(), StubSession(_echo, delay=0.1), concurrency=1
        )

        executor.execute()

        assert executor.peak_active_calls == len(LAYERS)


class TestBuildSession:
    """Tests for HTTP session construction."""

    def test_pool_sized_and_tls_unverified(self):
        """Adapters carry the requested pool size; TLS checks are off."""
        session = build_session(pool_size=15)

        adapter = session.get_adapter("https://l1nginx.test/")
        assert adapter._pool_maxsize == 15
        assert adapter._pool_connections == 15
        assert adapter.max_retries.total == 0
        assert session.verify is False

    def test_default_session_covers_ceiling(self):
        """The executor's own session is never smaller than concurrency x layers."""
        executor = DispatchExecutor(
            _requests(1), _store(), concurrency=4, pool_size=2, logger=MagicMock()
        )
        adapter = executor.session.get_adapter("http://kubo.test/")
        assert adapter._pool_maxsize == 12
