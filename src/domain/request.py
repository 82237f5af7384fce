"""Logical request model - one piece of content tested across every layer."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple

from src.domain.layer import Layer


@dataclass(frozen=True)
class LogicalRequest:
    """
    One canonical content request with a target URL per layer.

    Attributes:
        path: Request path; unique key for the run
        urls: Target URL per configured layer (read-only mapping)
        source_url: URL the request was derived from (replay log entry)
    """

    path: str
    urls: Mapping[Layer, str]
    source_url: str = ""

    def __post_init__(self) -> None:
        # Freeze the caller's dict so the request stays immutable once built
        object.__setattr__(self, "urls", MappingProxyType(dict(self.urls)))

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return tuple(self.urls.keys())
