"""
Unit tests for domain types (src/domain/)

Tests covering:
- Layer ids and parsing
- LayerResult classification and report form
- ResultSet slot semantics
- ComparisonPair construction
- RunSummary aggregation
"""

import pytest

from src.domain.discrepancy import ComparisonPair, Discrepancy, DiscrepancyKind, Evaluation
from src.domain.layer import Layer
from src.domain.request import LogicalRequest
from src.domain.result import ContentFingerprint, LayerResult, ResultSet
from src.domain.summary import RunSummary
from src.errors import SlotAlreadySetError, UnknownLayerError
from tests.stubs import failed, ok, read_error, unreachable


class TestLayer:
    """Tests for Layer enum."""

    def test_parse_known_layer(self):
        """Test parsing accepts configuration ids case-insensitively."""
        assert Layer.parse("lassie") is Layer.LASSIE
        assert Layer.parse(" L1Shim ") is Layer.L1_SHIM

    def test_parse_unknown_layer_lists_known(self):
        """Test unknown ids are rejected with the list of valid ids."""
        with pytest.raises(ValueError) as exc_info:
            Layer.parse("saturn")
        assert "kubogw" in str(exc_info.value)
        assert "bifrost" in str(exc_info.value)

    def test_every_layer_has_label(self):
        """Test console labels exist for all layers."""
        assert Layer.KUBO_GW.label == "Kubo GW"
        assert all(layer.label for layer in Layer)


class TestLayerResult:
    """Tests for LayerResult classification."""

    def test_success_with_clean_read(self):
        """Test a 2xx result with a body reads ok."""
        result = ok(Layer.LASSIE)
        assert result.is_success
        assert result.read_ok
        assert not result.has_read_error
        assert not result.is_transport_failure

    def test_transport_failure_is_not_success(self):
        """Test status 0 counts as a non-2xx outcome."""
        result = unreachable(Layer.LASSIE)
        assert result.is_transport_failure
        assert not result.is_success
        assert not result.read_ok

    def test_read_error_on_2xx(self):
        """Test a 2xx with a body read failure is flagged."""
        result = read_error(Layer.L1_SHIM)
        assert result.is_success
        assert result.has_read_error
        assert not result.read_ok

    def test_non_2xx_status_codes(self):
        """Test 3xx/4xx/5xx are all non-success."""
        for status in (301, 404, 500, 504):
            assert not failed(Layer.KUBO_GW, status=status).is_success

    def test_to_dict_never_carries_body(self):
        """Test report form omits the body but keeps its size."""
        data = ok(Layer.LASSIE, body=b"abc").to_dict()
        assert "body" not in data
        assert data["response_size"] == 3
        assert data["status"] == 200

    def test_without_body(self):
        """Test releasing the body keeps everything else."""
        result = ok(Layer.LASSIE, body=b"abc")
        released = result.without_body()
        assert released.body is None
        assert released.response_size == 3
        assert released.to_dict() == result.to_dict()


class TestResultSet:
    """Tests for ResultSet slot semantics."""

    def test_set_and_complete(self):
        """Test set fills slots and completeness tracks them."""
        rs = ResultSet("/ipfs/cid", (Layer.KUBO_GW, Layer.LASSIE))
        assert rs.missing() == [Layer.KUBO_GW, Layer.LASSIE]

        rs.set(ok(Layer.KUBO_GW))
        assert not rs.is_complete
        rs.set(ok(Layer.LASSIE))

        assert rs.is_complete
        assert rs.missing() == []
        assert [r.layer for r in rs] == [Layer.KUBO_GW, Layer.LASSIE]

    def test_set_twice_raises(self):
        """Test a slot can only be populated once."""
        rs = ResultSet("/ipfs/cid", (Layer.KUBO_GW, Layer.LASSIE))
        rs.set(ok(Layer.KUBO_GW))
        with pytest.raises(SlotAlreadySetError):
            rs.set(failed(Layer.KUBO_GW))
        assert rs[Layer.KUBO_GW].status == 200

    def test_unknown_layer_raises(self):
        """Test results for unconfigured layers are refused."""
        rs = ResultSet("/ipfs/cid", (Layer.KUBO_GW, Layer.LASSIE))
        with pytest.raises(UnknownLayerError):
            rs.set(ok(Layer.BIFROST))

    def test_getitem_empty_slot(self):
        """Test indexing an empty slot raises KeyError."""
        rs = ResultSet("/ipfs/cid", (Layer.KUBO_GW,))
        with pytest.raises(KeyError):
            rs[Layer.KUBO_GW]
        assert rs.get(Layer.KUBO_GW) is None

    def test_bodies_held_beside_slots(self):
        """Test slots store body-less results and the body is kept separately."""
        rs = ResultSet("/ipfs/cid", (Layer.KUBO_GW,))
        recorded = ok(Layer.KUBO_GW, body=b"data")
        rs.set(recorded)

        assert rs[Layer.KUBO_GW].body is None
        assert rs[Layer.KUBO_GW] == recorded
        assert rs.body(Layer.KUBO_GW) == b"data"

    def test_release_bodies(self):
        """Test releasing bodies leaves the recorded results untouched."""
        rs = ResultSet("/ipfs/cid", (Layer.KUBO_GW, Layer.LASSIE))
        rs.set(ok(Layer.KUBO_GW, body=b"data"))
        rs.set(ok(Layer.LASSIE, body=b"car"))
        stored = rs[Layer.KUBO_GW]

        rs.release_bodies(keep=[Layer.LASSIE])

        assert rs[Layer.KUBO_GW] is stored
        assert rs.body(Layer.KUBO_GW) is None
        assert rs.body(Layer.LASSIE) == b"car"
        assert rs.to_dict()["kubogw"]["response_size"] == 4


class TestContentFingerprint:
    """Tests for normalized content fingerprints."""

    def test_equal_bytes_equal_fingerprints(self):
        """Test equal content yields equal fingerprints."""
        assert ContentFingerprint.of(b"abc") == ContentFingerprint.of(b"abc")

    def test_size_and_digest(self):
        """Test the fingerprint records the size and SHA-256 digest."""
        fingerprint = ContentFingerprint.of(b"abc")
        assert fingerprint.size == 3
        assert fingerprint.digest == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )
        assert ContentFingerprint.of(b"abd") != fingerprint


class TestLogicalRequest:
    """Tests for LogicalRequest."""

    def test_urls_are_read_only(self):
        """Test the url mapping cannot be mutated after construction."""
        urls = {Layer.KUBO_GW: "https://a/ipfs/cid"}
        request = LogicalRequest(path="/ipfs/cid", urls=urls)
        urls[Layer.LASSIE] = "http://b/ipfs/cid"

        assert request.layers == (Layer.KUBO_GW,)
        with pytest.raises(TypeError):
            request.urls[Layer.LASSIE] = "http://b/ipfs/cid"

    def test_source_url_defaults_empty(self):
        """Test requests built without a replay entry carry no source url."""
        request = LogicalRequest(path="/ipfs/cid", urls={Layer.LASSIE: "http://b/ipfs/cid"})
        assert request.source_url == ""
        assert dict(request.urls) == {Layer.LASSIE: "http://b/ipfs/cid"}


class TestComparisonPair:
    """Tests for ComparisonPair."""

    def test_key_and_label(self):
        """Test report key and console label."""
        pair = ComparisonPair(Layer.KUBO_GW, Layer.LASSIE)
        assert pair.key == "kubogw-lassie"
        assert pair.label == "Kubo GW <> Lassie"
        assert pair.layers == (Layer.KUBO_GW, Layer.LASSIE)

    def test_self_comparison_rejected(self):
        """Test a layer cannot be compared with itself."""
        with pytest.raises(ValueError):
            ComparisonPair(Layer.LASSIE, Layer.LASSIE)

    def test_pairs_are_hashable_values(self):
        """Test equal pairs compare and hash equal."""
        assert ComparisonPair(Layer.KUBO_GW, Layer.LASSIE) == ComparisonPair(
            Layer.KUBO_GW, Layer.LASSIE
        )
        assert len({ComparisonPair(Layer.KUBO_GW, Layer.LASSIE)} | {
            ComparisonPair(Layer.KUBO_GW, Layer.LASSIE)
        }) == 1


class TestRunSummary:
    """Tests for RunSummary aggregation."""

    def test_from_evaluations(self):
        """Test counters are derived from evaluations only."""
        layers = [Layer.KUBO_GW, Layer.LASSIE]
        pair = ComparisonPair(Layer.KUBO_GW, Layer.LASSIE)

        matched = Evaluation(
            path="/ipfs/a",
            matched_pairs=[pair],
            successful_layers=[Layer.KUBO_GW, Layer.LASSIE],
            statuses={Layer.KUBO_GW: 200, Layer.LASSIE: 200},
        )
        mismatched = Evaluation(
            path="/ipfs/b",
            discrepancies=[
                Discrepancy(
                    path="/ipfs/b",
                    kind=DiscrepancyKind.STATUS_MISMATCH,
                    pair=pair,
                    layers=pair.layers,
                    results=(ok(Layer.KUBO_GW), failed(Layer.LASSIE)),
                )
            ],
            successful_layers=[Layer.KUBO_GW],
            statuses={Layer.KUBO_GW: 200, Layer.LASSIE: 502},
        )

        summary = RunSummary.from_evaluations(layers, [pair], [matched, mismatched])

        assert summary.total_paths == 2
        assert summary.success == {Layer.KUBO_GW: 2, Layer.LASSIE: 1}
        assert summary.status_codes[Layer.LASSIE] == {200: 1, 502: 1}
        assert summary.status_mismatches[pair] == 1
        assert summary.content_matches[pair] == 1
        assert summary.content_mismatches[pair] == 0

        data = summary.to_dict()
        assert data["status_mismatches"] == {"kubogw-lassie": 1}
        assert data["status_codes"]["lassie"] == {"200": 1, "502": 1}

    def test_empty_summary_has_zero_counters(self):
        """Test every configured layer and pair appears even with no paths."""
        pair = ComparisonPair(Layer.KUBO_GW, Layer.LASSIE)
        summary = RunSummary.from_evaluations([Layer.KUBO_GW, Layer.LASSIE], [pair], [])
        data = summary.to_dict()
        assert data["total_paths"] == 0
        assert data["success"] == {"kubogw": 0, "lassie": 0}
        assert data["decode_errors"] == {"kubogw-lassie": 0}
