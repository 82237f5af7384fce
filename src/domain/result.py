"""
Per-layer call results and the per-path ResultSet.

A LayerResult is created exactly once per (path, layer) by the dispatcher
and never mutated afterwards. Failure is data: a transport failure is a
LayerResult with status 0 and an error string, not a missing slot.
"""

import hashlib
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from src.domain.layer import ContentEncoding, Layer
from src.errors import SlotAlreadySetError, UnknownLayerError

TRANSPORT_FAILURE_STATUS = 0


def is_success_status(status: int) -> bool:
    """Return True for 2xx status codes."""
    return 200 <= status < 300


@dataclass(frozen=True)
class LayerResult:
    """
    Outcome of one GET against one layer.

    Attributes:
        layer: Layer the call was issued to
        url: Target URL
        status: HTTP status code (0 when the request never got a response)
        headers: Response headers
        error_body: Transport error text, or the body of a non-2xx response
        body: Full response body for 2xx responses (None otherwise)
        body_read_error: Set when a 2xx body could not be read completely
        response_size: Length of the body in bytes
    """

    layer: Layer
    url: str
    status: int = TRANSPORT_FAILURE_STATUS
    headers: Dict[str, str] = field(default_factory=dict)
    error_body: str = ""
    body: Optional[bytes] = field(default=None, repr=False, compare=False)
    body_read_error: str = ""
    response_size: int = 0

    @property
    def is_success(self) -> bool:
        return is_success_status(self.status)

    @property
    def is_transport_failure(self) -> bool:
        return self.status == TRANSPORT_FAILURE_STATUS

    @property
    def has_read_error(self) -> bool:
        """2xx response whose body could not be read."""
        return self.is_success and bool(self.body_read_error)

    @property
    def read_ok(self) -> bool:
        """2xx response with an error-free body read."""
        return self.is_success and not self.body_read_error

    def without_body(self) -> "LayerResult":
        """Return a copy with the body released (reports never carry bodies)."""
        if self.body is None:
            return self
        return replace(self, body=None)

    def to_dict(self) -> Dict[str, Any]:
        """Report representation; the body itself is never serialized."""
        return {
            "url": self.url,
            "status": self.status,
            "headers": dict(self.headers),
            "error_body": self.error_body,
            "body_read_error": self.body_read_error,
            "response_size": self.response_size,
        }


@dataclass(frozen=True)
class ContentFingerprint:
    """Size and SHA-256 digest of a normalized body."""

    size: int
    digest: str

    @classmethod
    def of(cls, data: bytes) -> "ContentFingerprint":
        return cls(size=len(data), digest=hashlib.sha256(data).hexdigest())


class ResultSet:
    """
    One slot per configured layer for a single path.

    Slots hold body-less results and never change once set. Bodies are kept
    beside the slots until released; normalized content is memoized per
    (layer, encoding) in `fingerprints` so a released set can still be
    evaluated.

    Not thread-safe on its own; the ResultStore serializes all access.
    """

    def __init__(self, path: str, layers: Tuple[Layer, ...]):
        self.path = path
        self.layers = tuple(layers)
        self._slots: Dict[Layer, Optional[LayerResult]] = {layer: None for layer in self.layers}
        self._bodies: Dict[Layer, bytes] = {}
        self.fingerprints: Dict[Tuple[Layer, ContentEncoding], Any] = {}

    def set(self, result: LayerResult) -> None:
        """
        Populate the slot for result.layer.

        Raises:
            UnknownLayerError: If the layer is not part of this set
            SlotAlreadySetError: If the slot was already populated
        """
        if result.layer not in self._slots:
            raise UnknownLayerError(
                f"Layer {result.layer.value} is not configured for path {self.path}"
            )
        if self._slots[result.layer] is not None:
            raise SlotAlreadySetError(
                f"Result for layer {result.layer.value} already recorded for path {self.path}"
            )
        if result.body is not None:
            self._bodies[result.layer] = result.body
        self._slots[result.layer] = result.without_body()

    def get(self, layer: Layer) -> Optional[LayerResult]:
        return self._slots.get(layer)

    def body(self, layer: Layer) -> Optional[bytes]:
        """Body recorded for layer, or None once released (or never read)."""
        return self._bodies.get(layer)

    def __getitem__(self, layer: Layer) -> LayerResult:
        result = self._slots[layer]
        if result is None:
            raise KeyError(f"No result recorded for layer {layer.value} on path {self.path}")
        return result

    def __iter__(self) -> Iterator[LayerResult]:
        for layer in self.layers:
            result = self._slots[layer]
            if result is not None:
                yield result

    @property
    def is_complete(self) -> bool:
        return all(result is not None for result in self._slots.values())

    def missing(self) -> List[Layer]:
        return [layer for layer, result in self._slots.items() if result is None]

    def release_bodies(self, keep: Iterable[Layer] = ()) -> None:
        """Drop every body except those of the layers in keep."""
        kept = set(keep)
        for layer in list(self._bodies):
            if layer not in kept:
                del self._bodies[layer]

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {result.layer.value: result.to_dict() for result in self}
