"""Target resolution - source URL to per-layer target URLs."""

from .url_builder import URLBuilder, parse_cid_from_path, parse_request_path

__all__ = ["URLBuilder", "parse_cid_from_path", "parse_request_path"]
