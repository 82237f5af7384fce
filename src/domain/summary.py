"""Run summary derived from per-path evaluations."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence

from src.domain.discrepancy import ComparisonPair, DiscrepancyKind, Evaluation
from src.domain.layer import Layer


@dataclass
class RunSummary:
    """
    Aggregate counters for one round.

    Never maintained incrementally: always rebuilt with from_evaluations()
    so it cannot drift from the stored evaluations.
    """

    layers: List[Layer]
    pairs: List[ComparisonPair]
    total_paths: int = 0
    success: Dict[Layer, int] = field(default_factory=dict)
    read_errors: Dict[Layer, int] = field(default_factory=dict)
    status_codes: Dict[Layer, Dict[int, int]] = field(default_factory=dict)
    status_mismatches: Dict[ComparisonPair, int] = field(default_factory=dict)
    content_mismatches: Dict[ComparisonPair, int] = field(default_factory=dict)
    content_matches: Dict[ComparisonPair, int] = field(default_factory=dict)
    decode_errors: Dict[ComparisonPair, int] = field(default_factory=dict)

    @classmethod
    def from_evaluations(
        cls,
        layers: Sequence[Layer],
        pairs: Sequence[ComparisonPair],
        evaluations: Iterable[Evaluation],
    ) -> "RunSummary":
        summary = cls(layers=list(layers), pairs=list(pairs))
        summary.success = {layer: 0 for layer in layers}
        summary.read_errors = {layer: 0 for layer in layers}
        summary.status_codes = {layer: {} for layer in layers}
        for counter in (
            summary.status_mismatches,
            summary.content_mismatches,
            summary.content_matches,
            summary.decode_errors,
        ):
            counter.update({pair: 0 for pair in pairs})

        by_kind = {
            DiscrepancyKind.STATUS_MISMATCH: summary.status_mismatches,
            DiscrepancyKind.CONTENT_MISMATCH: summary.content_mismatches,
            DiscrepancyKind.DECODE_ERROR: summary.decode_errors,
        }

        for evaluation in evaluations:
            summary.total_paths += 1
            for layer in evaluation.successful_layers:
                summary.success[layer] += 1
            for layer in evaluation.read_error_layers:
                summary.read_errors[layer] += 1
            for layer, status in evaluation.statuses.items():
                codes = summary.status_codes[layer]
                codes[status] = codes.get(status, 0) + 1
            for pair in evaluation.matched_pairs:
                summary.content_matches[pair] += 1
            for discrepancy in evaluation.discrepancies:
                by_kind[discrepancy.kind][discrepancy.pair] += 1

        return summary

    def to_dict(self) -> Dict[str, Any]:
        """Top-level metrics document."""
        return {
            "total_paths": self.total_paths,
            "success": {layer.value: count for layer, count in self.success.items()},
            "read_errors": {layer.value: count for layer, count in self.read_errors.items()},
            "status_codes": {
                layer.value: {str(code): count for code, count in sorted(codes.items())}
                for layer, codes in self.status_codes.items()
            },
            "status_mismatches": self._pair_counts(self.status_mismatches),
            "content_mismatches": self._pair_counts(self.content_mismatches),
            "content_matches": self._pair_counts(self.content_matches),
            "decode_errors": self._pair_counts(self.decode_errors),
        }

    @staticmethod
    def _pair_counts(counts: Dict[ComparisonPair, int]) -> Dict[str, int]:
        return {pair.key: count for pair, count in counts.items()}
