"""
Target Resolver

Turns one replayed source URL into a LogicalRequest carrying a target URL for
every configured layer: same path, layer host:port, layer scheme, plus the
layer's query adjustments.
"""

from typing import Dict, Mapping
from urllib.parse import urlencode, urlsplit, urlunsplit

from src.config.settings import LayerEndpoint
from src.domain.layer import Layer
from src.domain.request import LogicalRequest
from src.errors import ResolveError


def parse_request_path(source_url: str) -> str:
    """
    Return the path component of a source URL.

    Raises:
        ResolveError: If the URL cannot be parsed or has no path
    """
    try:
        parts = urlsplit(source_url)
    except ValueError as e:
        raise ResolveError(f"Failed to parse source url {source_url}: {e}") from e

    if not parts.path:
        raise ResolveError(f"Invalid source url: {source_url}; no path")
    return parts.path


def parse_cid_from_path(path: str) -> str:
    """
    Extract the CID segment from an /ipfs/<cid>/... path.

    Raises:
        ResolveError: If the path has no /ipfs/ segment
    """
    _, sep, rest = path.partition("/ipfs/")
    cid = rest.split("/", 1)[0] if sep else ""
    if not cid:
        raise ResolveError(f"Invalid content path (no /ipfs/<cid>): {path}")
    return cid


class URLBuilder:
    """Builds per-layer target URLs from replayed source URLs."""

    def __init__(self, endpoints: Mapping[Layer, LayerEndpoint]):
        if not endpoints:
            raise ResolveError("At least one layer endpoint is required")
        self.endpoints = dict(endpoints)

    def build_request(self, source_url: str) -> LogicalRequest:
        """
        Resolve a source URL for every configured layer.

        Raises:
            ResolveError: If the URL is unusable for any layer
        """
        path = parse_request_path(source_url)
        urls: Dict[Layer, str] = {
            layer: self.build_layer_url(source_url, endpoint)
            for layer, endpoint in self.endpoints.items()
        }
        return LogicalRequest(path=path, urls=urls, source_url=source_url)

    @staticmethod
    def build_layer_url(source_url: str, endpoint: LayerEndpoint) -> str:
        """
        Rewrite source_url for one layer.

        Host and port are replaced, the scheme is forced to the layer's
        scheme, the query is dropped when strip_query is set (a query must
        then be present) and extra_query parameters are appended.
        """
        try:
            parts = urlsplit(source_url)
        except ValueError as e:
            raise ResolveError(f"Failed to parse source url {source_url}: {e}") from e

        query = parts.query
        fragment = parts.fragment
        if endpoint.strip_query:
            if "?" not in source_url:
                raise ResolveError(
                    f"Params not found in source url {source_url} "
                    f"(required to strip query for {endpoint.layer.value})"
                )
            query = ""
            fragment = ""

        if endpoint.extra_query:
            extra = urlencode(dict(endpoint.extra_query))
            query = f"{query}&{extra}" if query else extra

        return urlunsplit((endpoint.scheme, endpoint.host_port, parts.path, query, fragment))
