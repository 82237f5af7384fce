"""
Result Store

The only shared mutable structure of a round. Dispatch threads record one
LayerResult per (path, layer); once a path's slots are all set, finalize()
runs the Consistency Engine inside the same critical section so no reader
ever sees a partially populated set.
"""

import threading
from typing import Dict, List, Optional, Sequence, Tuple

from src.comparison.engine import ConsistencyEngine
from src.domain.discrepancy import ComparisonPair, Discrepancy, DiscrepancyKind, Evaluation
from src.domain.layer import ContentEncoding, Layer
from src.domain.result import LayerResult, ResultSet
from src.domain.summary import RunSummary
from src.errors import AlreadyFinalizedError, IncompleteResultSetError, UnknownLayerError


class ResultStore:
    """
    Concurrency-safe mapping from path to per-layer results.

    A single lock guards slots, evaluations and every read-side snapshot.
    """

    def __init__(
        self,
        layers: Sequence[Layer],
        engine: ConsistencyEngine,
        retain_bodies: bool = False,
    ) -> None:
        """
        Args:
            layers: Layers every path is dispatched to
            engine: Consistency Engine run at finalize time
            retain_bodies: Keep every response body after evaluation (memory
                heavy); bodies that failed to decode are kept regardless

        Raises:
            UnknownLayerError: If the comparison graph names a layer not in layers
        """
        self.layers = tuple(layers)
        unknown = [layer for layer in engine.layers if layer not in self.layers]
        if unknown:
            raise UnknownLayerError(
                "Comparison graph references layers that are not dispatched: "
                + ", ".join(layer.value for layer in unknown)
            )

        self.engine = engine
        self.retain_bodies = retain_bodies
        self._lock = threading.Lock()
        self._result_sets: Dict[str, ResultSet] = {}
        self._evaluations: Dict[str, Evaluation] = {}

    # ------------------------------------------------------------------ #
    # Writers
    # ------------------------------------------------------------------ #

    def get_or_create(self, path: str) -> ResultSet:
        """Return the ResultSet for path, creating it on first use."""
        with self._lock:
            return self._get_or_create_locked(path)

    def set_result(self, path: str, result: LayerResult) -> None:
        """
        Record the single result for (path, result.layer).

        Raises:
            SlotAlreadySetError: If the slot was already populated
            UnknownLayerError: If result.layer is not dispatched
            AlreadyFinalizedError: If the path was already evaluated
        """
        with self._lock:
            if path in self._evaluations:
                raise AlreadyFinalizedError(f"Path {path} was already finalized")
            self._get_or_create_locked(path).set(result)

    def finalize(self, path: str) -> Evaluation:
        """
        Evaluate a fully populated path exactly once.

        Raises:
            IncompleteResultSetError: If a layer slot is still empty
            AlreadyFinalizedError: On a second call for the same path
        """
        with self._lock:
            if path in self._evaluations:
                raise AlreadyFinalizedError(f"Path {path} was already finalized")

            result_set = self._result_sets.get(path)
            if result_set is None:
                raise IncompleteResultSetError(f"No results recorded for path {path}")

            evaluation = self.engine.evaluate(result_set)
            self._evaluations[path] = evaluation
            if not self.retain_bodies:
                result_set.release_bodies(keep=_decode_failed_layers(evaluation))
            return evaluation

    def _get_or_create_locked(self, path: str) -> ResultSet:
        result_set = self._result_sets.get(path)
        if result_set is None:
            result_set = ResultSet(path, self.layers)
            self._result_sets[path] = result_set
        return result_set

    # ------------------------------------------------------------------ #
    # Readers
    # ------------------------------------------------------------------ #

    def is_finalized(self, path: str) -> bool:
        with self._lock:
            return path in self._evaluations

    def paths(self) -> List[str]:
        with self._lock:
            return list(self._result_sets.keys())

    def results(self) -> Dict[str, Dict[str, Dict]]:
        """Report form of every ResultSet: path -> layer -> result dict."""
        with self._lock:
            return {path: rs.to_dict() for path, rs in self._result_sets.items()}

    def result_set(self, path: str) -> Optional[ResultSet]:
        with self._lock:
            return self._result_sets.get(path)

    def evaluation(self, path: str) -> Optional[Evaluation]:
        with self._lock:
            return self._evaluations.get(path)

    def discrepancies(
        self,
        kind: Optional[DiscrepancyKind] = None,
        pair: Optional[ComparisonPair] = None,
    ) -> List[Discrepancy]:
        """Every recorded discrepancy, optionally filtered by kind and pair."""
        with self._lock:
            found = [
                discrepancy
                for evaluation in self._evaluations.values()
                for discrepancy in evaluation.discrepancies
            ]
        if kind is not None:
            found = [d for d in found if d.kind is kind]
        if pair is not None:
            found = [d for d in found if d.pair == pair]
        return found

    def read_errors(self, layer: Layer) -> Dict[str, LayerResult]:
        """Path -> result for every path where layer returned 2xx but failed the body read."""
        with self._lock:
            return {
                path: self._result_sets[path][layer]
                for path, evaluation in self._evaluations.items()
                if layer in evaluation.read_error_layers
            }

    def decode_failure_bodies(self) -> List[Tuple[str, Layer, ContentEncoding, bytes]]:
        """(path, layer, encoding, raw body) for every layer body that failed to decode."""
        with self._lock:
            found = []
            for path, evaluation in self._evaluations.items():
                result_set = self._result_sets[path]
                for layer in _decode_failed_layers(evaluation):
                    body = result_set.body(layer)
                    if body is not None:
                        encoding = self.engine.encodings.get(layer, ContentEncoding.RAW)
                        found.append((path, layer, encoding, body))
            return found

    def completed_counts(self) -> Dict[Layer, int]:
        """Number of recorded results per layer."""
        with self._lock:
            counts = {layer: 0 for layer in self.layers}
            for result_set in self._result_sets.values():
                for result in result_set:
                    counts[result.layer] += 1
            return counts

    def summary(self) -> RunSummary:
        """Rebuild the run summary from the stored evaluations."""
        with self._lock:
            evaluations = list(self._evaluations.values())
        return RunSummary.from_evaluations(self.layers, self.engine.pairs, evaluations)


def _decode_failed_layers(evaluation: Evaluation) -> List[Layer]:
    layers: List[Layer] = []
    for discrepancy in evaluation.of_kind(DiscrepancyKind.DECODE_ERROR):
        for layer in discrepancy.layers:
            if layer not in layers:
                layers.append(layer)
    return layers
