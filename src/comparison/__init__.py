"""Cross-layer consistency evaluation."""

from .engine import ConsistencyEngine

__all__ = ["ConsistencyEngine"]
