"""
Content Normalizer - pluggable decoding of layer response bodies.

Layers that return content-addressed archives must be decoded to canonical
bytes before a byte comparison means anything. The decoder itself is an
external capability: callers register a callable per encoding, or name one
by import path ("package.module:function") in the run configuration.
"""

import importlib
import logging
from enum import Enum
from typing import Callable, Dict, Mapping, Optional

from src.domain.layer import ContentEncoding

logger = logging.getLogger(__name__)

Decoder = Callable[[bytes], bytes]


class DecodeReason(Enum):
    """Why a body could not be normalized."""

    MALFORMED_CONTAINER = "malformed-container"
    UNSUPPORTED_ROOT = "unsupported-root"
    CONTENT_ABSENT = "content-absent"
    UNSUPPORTED_ENCODING = "unsupported-encoding"


class DecodeError(Exception):
    """Raised when a response body cannot be normalized to canonical bytes."""

    def __init__(self, reason: DecodeReason, detail: str = "") -> None:
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)
        self.reason = reason
        self.detail = detail


def load_decoder(import_path: str) -> Decoder:
    """
    Resolve a "module:function" import path to a decoder callable.

    Raises:
        ValueError: If the path is malformed or does not name a callable
        ImportError: If the module cannot be imported
    """
    module_name, sep, attr = import_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Decoder path must look like 'module:function', got '{import_path}'")

    module = importlib.import_module(module_name)
    decoder = getattr(module, attr, None)
    if not callable(decoder):
        raise ValueError(f"Decoder '{import_path}' is not callable")
    return decoder


class NormalizerRegistry:
    """
    Maps content encodings to decoders.

    RAW bodies are already canonical and pass through untouched. Any other
    encoding needs a registered decoder; without one every body of that
    encoding is a decode error.
    """

    def __init__(self, decoders: Optional[Mapping[ContentEncoding, Decoder]] = None):
        self._decoders: Dict[ContentEncoding, Decoder] = dict(decoders or {})

    @classmethod
    def from_import_paths(cls, paths: Mapping[ContentEncoding, str]) -> "NormalizerRegistry":
        registry = cls()
        for encoding, import_path in paths.items():
            registry.register(encoding, load_decoder(import_path))
            logger.info("Registered %s decoder %s", encoding.value, import_path)
        return registry

    def register(self, encoding: ContentEncoding, decoder: Decoder) -> None:
        if encoding is ContentEncoding.RAW:
            raise ValueError("RAW content is canonical and cannot take a decoder")
        self._decoders[encoding] = decoder

    def normalize(self, data: bytes, encoding: ContentEncoding) -> bytes:
        """
        Return canonical bytes for a response body.

        Raises:
            DecodeError: If the body cannot be decoded. Decoder failures that
                are not DecodeError are reported as malformed containers.
        """
        if encoding is ContentEncoding.RAW:
            return data

        decoder = self._decoders.get(encoding)
        if decoder is None:
            raise DecodeError(
                DecodeReason.UNSUPPORTED_ENCODING,
                f"no decoder registered for '{encoding.value}' content",
            )

        try:
            decoded = decoder(data)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(DecodeReason.MALFORMED_CONTAINER, str(e)) from e

        if not isinstance(decoded, (bytes, bytearray)):
            raise DecodeError(
                DecodeReason.MALFORMED_CONTAINER,
                f"decoder returned {type(decoded).__name__}, expected bytes",
            )
        return bytes(decoded)
