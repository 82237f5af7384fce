"""Domain models - layers, requests, results and discrepancies."""

from .discrepancy import ComparisonPair, Discrepancy, DiscrepancyKind, Evaluation
from .layer import ContentEncoding, Layer
from .request import LogicalRequest
from .result import LayerResult, ResultSet, is_success_status
from .summary import RunSummary

__all__ = [
    "ComparisonPair",
    "ContentEncoding",
    "Discrepancy",
    "DiscrepancyKind",
    "Evaluation",
    "Layer",
    "LayerResult",
    "LogicalRequest",
    "ResultSet",
    "RunSummary",
    "is_success_status",
]
