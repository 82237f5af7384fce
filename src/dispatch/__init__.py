"""Bounded-concurrency fan-out of layer calls."""

from .executor import DispatchExecutor, build_session

__all__ = ["DispatchExecutor", "build_session"]
