"""Content normalization for content-addressed layer responses."""

from .registry import DecodeError, DecodeReason, Decoder, NormalizerRegistry, load_decoder

__all__ = [
    "DecodeError",
    "DecodeReason",
    "Decoder",
    "NormalizerRegistry",
    "load_decoder",
]
