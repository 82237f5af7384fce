"""
Layer identifiers and content encodings.

The set of layers is closed; which of them take part in a run, and which
pairs are compared, is configuration data (see src.config.settings).
"""

from enum import Enum


class Layer(Enum):
    """Content-serving implementations that can be placed under test."""

    KUBO_GW = "kubogw"
    LASSIE = "lassie"
    L1_SHIM = "l1shim"
    L1_NGINX = "l1nginx"
    BIFROST = "bifrost"

    @property
    def label(self) -> str:
        """Human-readable name used in console summaries."""
        return _LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "Layer":
        """
        Look up a layer by its configuration id.

        Raises:
            ValueError: If the id does not name a known layer
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown layer '{value}'. Known layers: {known}") from None


_LABELS = {
    Layer.KUBO_GW: "Kubo GW",
    Layer.LASSIE: "Lassie",
    Layer.L1_SHIM: "L1 Shim",
    Layer.L1_NGINX: "L1 Nginx",
    Layer.BIFROST: "Bifrost",
}


class ContentEncoding(Enum):
    """How a layer encodes successful response bodies."""

    RAW = "raw"  # canonical bytes, compared as-is
    CAR = "car"  # content-addressed archive, normalized before comparison
