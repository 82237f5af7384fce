"""
Replay log reader

Parses the tab-separated replay log of production requests and builds the
fixed LogicalRequest set for a run.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator

from src.domain.request import LogicalRequest
from src.errors import ReplayLogError, ResolveError
from src.resolver.url_builder import URLBuilder

logger = logging.getLogger(__name__)

URL_COLUMN = 20
SKIP_MARKER = "ipfs-404"


def iter_source_urls(log_path: Path, url_column: int = URL_COLUMN) -> Iterator[str]:
    """
    Yield source URLs from a replay log.

    Lines whose URL contains the ipfs-404 marker are skipped; blank lines
    are ignored.

    Raises:
        ReplayLogError: If the file cannot be read or a line has no URL
    """
    try:
        handle = open(log_path, "r", encoding="utf-8")
    except OSError as e:
        raise ReplayLogError(f"Failed to open replay log {log_path}: {e}") from e

    with handle:
        for line_number, line in enumerate(handle, start=1):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue

            fields = line.split("\t")
            if len(fields) <= url_column:
                raise ReplayLogError(
                    f"{log_path}:{line_number}: expected at least {url_column + 1} columns, "
                    f"got {len(fields)}"
                )

            url = fields[url_column].strip()
            if not url:
                raise ReplayLogError(f"{log_path}:{line_number}: empty source url")

            if SKIP_MARKER in url:
                continue

            yield url


def build_requests(
    source_urls: Iterable[str], resolver: URLBuilder, limit: int
) -> Dict[str, LogicalRequest]:
    """
    Resolve source URLs into a path-keyed request set of exactly `limit` entries.

    Duplicate paths keep the first URL seen.

    Raises:
        ReplayLogError: If fewer than `limit` unique paths are available
        ResolveError: If a source URL cannot be resolved
    """
    if limit <= 0:
        raise ReplayLogError(f"Request count must be positive, got {limit}")

    requests: Dict[str, LogicalRequest] = {}
    duplicates = 0
    for url in source_urls:
        request = resolver.build_request(url)
        if request.path in requests:
            duplicates += 1
            continue
        requests[request.path] = request
        if len(requests) == limit:
            break

    if len(requests) < limit:
        raise ReplayLogError(
            f"Not enough requests to send to layers. Requested: {limit}, Available: {len(requests)}"
        )

    logger.info(f"Built {len(requests)} unique requests ({duplicates} duplicate paths skipped)")
    return requests


def load_requests(log_path: Path, resolver: URLBuilder, limit: int) -> Dict[str, LogicalRequest]:
    """Read a replay log and build the request set for a run."""
    try:
        return build_requests(iter_source_urls(log_path), resolver, limit)
    except ResolveError as e:
        raise ReplayLogError(f"{log_path}: {e}") from e
