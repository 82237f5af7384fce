"""
Comparison graph edges, discrepancies and per-path evaluation outcomes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from src.domain.layer import Layer
from src.domain.result import LayerResult


class DiscrepancyKind(Enum):
    """Axis on which two layers disagreed for one path."""

    STATUS_MISMATCH = "status-mismatch"
    CONTENT_MISMATCH = "content-mismatch"
    DECODE_ERROR = "decode-error"


@dataclass(frozen=True)
class ComparisonPair:
    """
    Directed edge of the comparison graph: "does candidate match reference".

    The direction only matters for reporting; both axes treat the two
    sides by the same rules.
    """

    reference: Layer
    candidate: Layer

    def __post_init__(self) -> None:
        if self.reference is self.candidate:
            raise ValueError(f"Cannot compare layer {self.reference.value} with itself")

    @property
    def key(self) -> str:
        return f"{self.reference.value}-{self.candidate.value}"

    @property
    def label(self) -> str:
        return f"{self.reference.label} <> {self.candidate.label}"

    @property
    def layers(self) -> Tuple[Layer, Layer]:
        return (self.reference, self.candidate)


@dataclass(frozen=True)
class Discrepancy:
    """
    Recorded disagreement between the two layers of a pair for one path.

    Attributes:
        path: Logical request path
        kind: Axis of the disagreement
        pair: Compared pair
        layers: Layer(s) the discrepancy is attributed to; both pair members
            for mismatches, only the failing side(s) for decode errors
        results: The two pair members' LayerResults
        reason: Decode failure reason (decode errors only)
        detail: Free-form detail (decode error message, size delta)
    """

    path: str
    kind: DiscrepancyKind
    pair: ComparisonPair
    layers: Tuple[Layer, ...]
    results: Tuple[LayerResult, LayerResult]
    reason: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Path-keyed report entry: only the two relevant LayerResults."""
        return {result.layer.value: result.to_dict() for result in self.results}


@dataclass
class Evaluation:
    """
    Consistency Engine output for one fully populated ResultSet.

    A pure function of the ResultSet and the engine configuration.
    """

    path: str
    discrepancies: List[Discrepancy] = field(default_factory=list)
    matched_pairs: List[ComparisonPair] = field(default_factory=list)
    successful_layers: List[Layer] = field(default_factory=list)
    read_error_layers: List[Layer] = field(default_factory=list)
    statuses: Dict[Layer, int] = field(default_factory=dict)

    def of_kind(self, kind: DiscrepancyKind) -> List[Discrepancy]:
        return [d for d in self.discrepancies if d.kind is kind]
