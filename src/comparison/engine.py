"""
Consistency Engine

Evaluates a fully populated ResultSet against the configured comparison
graph and reports status and content discrepancies per pair.

Rules, per path:
- a layer that answered 2xx but whose body could not be read is excluded
  from every pair on both axes (tracked as a read error instead)
- status axis: a pair disagrees when exactly one side answered 2xx
- content axis: only for pairs where both sides answered 2xx with a clean
  read, and only when the status axis agreed; bodies are normalized per
  layer encoding and compared by size and SHA-256 digest
- a normalizer failure is a decode error, never a match or a mismatch

Normalized fingerprints are memoized on the ResultSet, so a set whose
bodies were released after finalize still evaluates to the same result.
"""

from typing import List, Mapping, Optional, Sequence, Union

from src.domain.discrepancy import ComparisonPair, Discrepancy, DiscrepancyKind, Evaluation
from src.domain.layer import ContentEncoding, Layer
from src.domain.result import ContentFingerprint, LayerResult, ResultSet
from src.errors import IncompleteResultSetError
from src.normalizer.registry import DecodeError, NormalizerRegistry
from src.utils.logger import StructuredLogger, get_logger

_Normalized = Union[ContentFingerprint, DecodeError]


class ConsistencyEngine:
    """
    Cross-layer equivalence checks for one path at a time.

    Evaluating a set twice, before or after its bodies are released, yields
    equal Evaluations.
    """

    def __init__(
        self,
        pairs: Sequence[ComparisonPair],
        encodings: Optional[Mapping[Layer, ContentEncoding]] = None,
        normalizer: Optional[NormalizerRegistry] = None,
        compare_content: bool = True,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            pairs: Comparison graph edges, evaluated in this order
            encodings: Body encoding per layer (RAW when absent)
            normalizer: Decoder registry for non-RAW encodings
            compare_content: False runs the status axis only
            logger: Optional structured logger instance
        """
        self.pairs = list(pairs)
        self.encodings = dict(encodings or {})
        self.normalizer = normalizer or NormalizerRegistry()
        self.compare_content = compare_content
        self.logger = logger or get_logger(__name__)

    @property
    def layers(self) -> List[Layer]:
        """Every layer referenced by the comparison graph, first-seen order."""
        seen: List[Layer] = []
        for pair in self.pairs:
            for layer in pair.layers:
                if layer not in seen:
                    seen.append(layer)
        return seen

    def evaluate(self, result_set: ResultSet) -> Evaluation:
        """
        Compare every configured pair for one path.

        Raises:
            IncompleteResultSetError: If any layer slot is still empty
        """
        if not result_set.is_complete:
            missing = ", ".join(layer.value for layer in result_set.missing())
            raise IncompleteResultSetError(
                f"Cannot evaluate {result_set.path}: missing results for {missing}"
            )

        evaluation = Evaluation(path=result_set.path)
        for result in result_set:
            evaluation.statuses[result.layer] = result.status
            if result.read_ok:
                evaluation.successful_layers.append(result.layer)
            elif result.has_read_error:
                evaluation.read_error_layers.append(result.layer)

        excluded = set(evaluation.read_error_layers)

        for pair in self.pairs:
            reference = result_set[pair.reference]
            candidate = result_set[pair.candidate]

            if pair.reference in excluded or pair.candidate in excluded:
                continue

            if reference.is_success != candidate.is_success:
                self._record(
                    evaluation,
                    Discrepancy(
                        path=result_set.path,
                        kind=DiscrepancyKind.STATUS_MISMATCH,
                        pair=pair,
                        layers=pair.layers,
                        results=(reference, candidate),
                        detail=f"{reference.status} vs {candidate.status}",
                    ),
                )
                continue

            if not self.compare_content or not (reference.read_ok and candidate.read_ok):
                continue

            self._compare_content(evaluation, result_set, pair, reference, candidate)

        return evaluation

    def _compare_content(
        self,
        evaluation: Evaluation,
        result_set: ResultSet,
        pair: ComparisonPair,
        reference: LayerResult,
        candidate: LayerResult,
    ) -> None:
        ref_content = self._normalized(result_set, reference)
        cand_content = self._normalized(result_set, candidate)

        failures = [
            (result.layer, outcome)
            for result, outcome in ((reference, ref_content), (candidate, cand_content))
            if isinstance(outcome, DecodeError)
        ]
        if failures:
            _, first_error = failures[0]
            self._record(
                evaluation,
                Discrepancy(
                    path=evaluation.path,
                    kind=DiscrepancyKind.DECODE_ERROR,
                    pair=pair,
                    layers=tuple(layer for layer, _ in failures),
                    results=(reference, candidate),
                    reason=first_error.reason.value,
                    detail="; ".join(f"{layer.value}: {error}" for layer, error in failures),
                ),
            )
            return

        if ref_content == cand_content:
            evaluation.matched_pairs.append(pair)
            return

        self._record(
            evaluation,
            Discrepancy(
                path=evaluation.path,
                kind=DiscrepancyKind.CONTENT_MISMATCH,
                pair=pair,
                layers=pair.layers,
                results=(reference, candidate),
                detail=f"{ref_content.size} bytes vs {cand_content.size} bytes",
            ),
        )

    def _normalized(self, result_set: ResultSet, result: LayerResult) -> _Normalized:
        """Normalize a layer's body once per (layer, encoding) and remember the outcome."""
        encoding = self.encodings.get(result.layer, ContentEncoding.RAW)
        key = (result.layer, encoding)
        if key in result_set.fingerprints:
            return result_set.fingerprints[key]

        body = result_set.body(result.layer)
        if body is None and result.response_size > 0:
            raise ValueError(
                f"Body for {result.layer.value} was released before evaluation of {result.url}"
            )

        outcome: _Normalized
        try:
            outcome = ContentFingerprint.of(self.normalizer.normalize(body or b"", encoding))
        except DecodeError as e:
            outcome = e
        result_set.fingerprints[key] = outcome
        return outcome

    def _record(self, evaluation: Evaluation, discrepancy: Discrepancy) -> None:
        evaluation.discrepancies.append(discrepancy)
        self.logger.warning(
            f"{discrepancy.pair.label} {discrepancy.kind.value}",
            operation="evaluate_path",
            context={
                "path": discrepancy.path,
                "pair": discrepancy.pair.key,
                "kind": discrepancy.kind.value,
                "layers": [layer.value for layer in discrepancy.layers],
                "statuses": [result.status for result in discrepancy.results],
                "detail": discrepancy.detail,
            },
        )
