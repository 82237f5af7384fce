"""Concurrency-safe accumulation of per-layer results."""

from .result_store import ResultStore

__all__ = ["ResultStore"]
