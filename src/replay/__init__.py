"""Replay log parsing."""

from .log_reader import build_requests, iter_source_urls, load_requests

__all__ = ["build_requests", "iter_source_urls", "load_requests"]
