"""Per-round report artifacts."""

from .emitter import ReportEmitter

__all__ = ["ReportEmitter"]
