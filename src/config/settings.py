"""
Configuration loader for the layer parity harness

Reads the run configuration from YAML, validates it against the bundled JSON
schema, applies environment overrides and checks every endpoint before any
network activity starts.
"""

import ipaddress
import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import jsonschema
import yaml

from src.domain.discrepancy import ComparisonPair
from src.domain.layer import ContentEncoding, Layer
from src.errors import ConfigurationError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "harness.schema.json"

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_POOL_SIZE = 1000
DEFAULT_METRICS_REGION = "us-east-1"
DEFAULT_METRICS_NAMESPACE = "onion/parity"

# Environment overrides (evaluated per load, not at import)
CONCURRENCY_ENV = "ONION_CONCURRENCY"
STATUS_ONLY_ENV = "ONION_STATUS_ONLY"
METRICS_ENABLED_ENV = "ONION_METRICS_ENABLED"

_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")

__all__ = [
    "ConfigurationError",
    "HarnessConfig",
    "LayerEndpoint",
    "Settings",
    "validate_host",
    "validate_port",
]


def validate_host(host: str, layer_name: str = "layer") -> str:
    """
    Accept an IPv4/IPv6 address or a DNS hostname.

    Raises:
        ConfigurationError: If host is neither
    """
    candidate = (host or "").strip()
    if not candidate:
        raise ConfigurationError(f"Invalid {layer_name} host: empty value")

    try:
        ipaddress.ip_address(candidate)
        return candidate
    except ValueError:
        pass

    if len(candidate) > 253 or not all(
        _HOSTNAME_LABEL.match(label) for label in candidate.rstrip(".").split(".")
    ):
        raise ConfigurationError(f"Invalid {layer_name} host: {host}")
    return candidate


def validate_port(port: Any, layer_name: str = "layer") -> int:
    """
    Raises:
        ConfigurationError: If port is not an integer in 1..65535
    """
    if isinstance(port, bool) or not isinstance(port, int) or port <= 0 or port > 65535:
        raise ConfigurationError(f"Invalid {layer_name} port: {port}")
    return port


def _read_bool_env(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() == "true"


@dataclass(frozen=True)
class LayerEndpoint:
    """Where and how to reach one layer under test."""

    layer: Layer
    host: str
    port: int
    scheme: str = "http"
    encoding: ContentEncoding = ContentEncoding.RAW
    extra_query: Mapping[str, str] = field(default_factory=dict)
    strip_query: bool = False

    @property
    def host_port(self) -> str:
        # IPv6 literals need brackets inside a URL authority
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class HarnessConfig:
    """Validated run configuration."""

    endpoints: Mapping[Layer, LayerEndpoint]
    reference: Layer
    comparisons: List[ComparisonPair]
    concurrency: int = DEFAULT_CONCURRENCY
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    pool_size: int = DEFAULT_POOL_SIZE
    status_only: bool = False
    retain_bodies: bool = False
    decoders: Mapping[ContentEncoding, str] = field(default_factory=dict)
    metrics_enabled: bool = False
    metrics_region: str = DEFAULT_METRICS_REGION
    metrics_namespace: str = DEFAULT_METRICS_NAMESPACE

    @property
    def layers(self) -> List[Layer]:
        return list(self.endpoints.keys())

    @property
    def encodings(self) -> Dict[Layer, ContentEncoding]:
        return {layer: endpoint.encoding for layer, endpoint in self.endpoints.items()}

    @property
    def effective_pool_size(self) -> int:
        """Connection pool ceiling; never below concurrency x layer count."""
        return max(self.pool_size, self.concurrency * len(self.endpoints))

    def with_overrides(
        self,
        concurrency: Optional[int] = None,
        status_only: Optional[bool] = None,
        metrics_enabled: Optional[bool] = None,
    ) -> "HarnessConfig":
        """
        Return a copy with CLI-level overrides applied.

        Raises:
            ConfigurationError: If concurrency is not positive
        """
        changes: Dict[str, Any] = {}
        if concurrency is not None:
            if concurrency < 1:
                raise ConfigurationError(f"Invalid concurrency: {concurrency}")
            changes["concurrency"] = concurrency
        if status_only is not None:
            changes["status_only"] = status_only
        if metrics_enabled is not None:
            changes["metrics_enabled"] = metrics_enabled
        return replace(self, **changes) if changes else self


class Settings:
    """
    Configuration loader.

    Loads YAML, validates it against harness.schema.json and converts it into
    a HarnessConfig. Every failure is raised as ConfigurationError.
    """

    def __init__(self, schema_path: Path = SCHEMA_PATH):
        """
        Initialize Settings loader.

        Args:
            schema_path: JSON schema used to validate configuration documents
        """
        self.schema_path = Path(schema_path)
        self._schema: Optional[Dict[str, Any]] = None

    @property
    def schema(self) -> Dict[str, Any]:
        if self._schema is None:
            try:
                with open(self.schema_path, "r", encoding="utf-8") as f:
                    self._schema = json.load(f)
                logger.debug(f"Loaded configuration schema from {self.schema_path}")
            except FileNotFoundError as e:
                raise ConfigurationError(f"Configuration schema not found: {self.schema_path}") from e
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {self.schema_path}: {e}") from e
        return self._schema

    def load(self, config_path: Path) -> HarnessConfig:
        """
        Load and validate a configuration file.

        Args:
            config_path: Path to the YAML configuration

        Returns:
            Validated HarnessConfig with environment overrides applied

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not raw:
            raise ConfigurationError(f"Empty configuration: {config_path}")

        config = self.parse(raw)
        logger.info(
            f"Loaded configuration from {config_path}: "
            f"{len(config.endpoints)} layers, {len(config.comparisons)} comparisons"
        )
        return config

    def parse(self, raw: Dict[str, Any]) -> HarnessConfig:
        """
        Validate a configuration document and build a HarnessConfig.

        Raises:
            ConfigurationError: On schema or semantic violations
        """
        try:
            jsonschema.validate(instance=raw, schema=self.schema)
        except jsonschema.ValidationError as e:
            location = "/".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigurationError(f"Configuration invalid at {location}: {e.message}") from e
        except jsonschema.SchemaError as e:
            raise ConfigurationError(f"Configuration schema is invalid: {e.message}") from e

        endpoints = self._parse_endpoints(raw["layers"])
        reference = self._parse_layer(raw["reference"], "reference")
        if reference not in endpoints:
            raise ConfigurationError(f"Reference layer '{reference.value}' has no endpoint")

        comparisons = self._parse_comparisons(raw.get("comparisons"), reference, endpoints)
        decoders = self._parse_decoders(raw.get("decoders", {}))
        for layer, endpoint in endpoints.items():
            if endpoint.encoding is not ContentEncoding.RAW and endpoint.encoding not in decoders:
                raise ConfigurationError(
                    f"Layer '{layer.value}' answers with {endpoint.encoding.value} content "
                    f"but no decoders.{endpoint.encoding.value} entry is configured"
                )
        metrics = raw.get("metrics", {})

        config = HarnessConfig(
            endpoints=endpoints,
            reference=reference,
            comparisons=comparisons,
            concurrency=raw.get("concurrency", DEFAULT_CONCURRENCY),
            timeout_seconds=float(raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            pool_size=raw.get("pool_size", DEFAULT_POOL_SIZE),
            status_only=raw.get("status_only", False),
            retain_bodies=raw.get("retain_bodies", False),
            decoders=decoders,
            metrics_enabled=metrics.get("enabled", False),
            metrics_region=metrics.get("region", DEFAULT_METRICS_REGION),
            metrics_namespace=metrics.get("namespace", DEFAULT_METRICS_NAMESPACE),
        )
        return self._apply_env_overrides(config)

    @staticmethod
    def _parse_layer(value: str, where: str) -> Layer:
        try:
            return Layer.parse(value)
        except ValueError as e:
            raise ConfigurationError(f"{where}: {e}") from e

    def _parse_endpoints(self, layers: Dict[str, Any]) -> Dict[Layer, LayerEndpoint]:
        endpoints: Dict[Layer, LayerEndpoint] = {}
        for name, spec in layers.items():
            layer = self._parse_layer(name, "layers")
            if layer in endpoints:
                raise ConfigurationError(f"Layer '{layer.value}' configured twice")

            endpoints[layer] = LayerEndpoint(
                layer=layer,
                host=validate_host(spec["host"], layer.label),
                port=validate_port(spec["port"], layer.label),
                scheme=spec.get("scheme", "http"),
                encoding=ContentEncoding(spec.get("encoding", ContentEncoding.RAW.value)),
                extra_query={k: str(v) for k, v in spec.get("extra_query", {}).items()},
                strip_query=spec.get("strip_query", False),
            )
        return endpoints

    def _parse_comparisons(
        self,
        comparisons: Optional[List[Dict[str, str]]],
        reference: Layer,
        endpoints: Mapping[Layer, LayerEndpoint],
    ) -> List[ComparisonPair]:
        if comparisons is None:
            # Default graph: every other layer against the reference
            return [ComparisonPair(reference, layer) for layer in endpoints if layer is not reference]

        pairs: List[ComparisonPair] = []
        for index, entry in enumerate(comparisons):
            ref = self._parse_layer(entry["reference"], f"comparisons[{index}].reference")
            cand = self._parse_layer(entry["candidate"], f"comparisons[{index}].candidate")
            for layer in (ref, cand):
                if layer not in endpoints:
                    raise ConfigurationError(
                        f"comparisons[{index}] uses layer '{layer.value}' which has no endpoint"
                    )
            try:
                pair = ComparisonPair(ref, cand)
            except ValueError as e:
                raise ConfigurationError(f"comparisons[{index}]: {e}") from e
            if pair in pairs:
                raise ConfigurationError(f"comparisons[{index}]: duplicate pair {pair.key}")
            pairs.append(pair)

        if not pairs:
            raise ConfigurationError("At least one comparison pair is required")
        return pairs

    @staticmethod
    def _parse_decoders(decoders: Dict[str, str]) -> Dict[ContentEncoding, str]:
        parsed: Dict[ContentEncoding, str] = {}
        for name, import_path in decoders.items():
            try:
                encoding = ContentEncoding(name)
            except ValueError as e:
                raise ConfigurationError(f"Unknown decoder encoding '{name}'") from e
            if encoding is ContentEncoding.RAW:
                raise ConfigurationError("RAW content does not take a decoder")
            parsed[encoding] = import_path
        return parsed

    @staticmethod
    def _apply_env_overrides(config: HarnessConfig) -> HarnessConfig:
        concurrency: Optional[int] = None
        raw_concurrency = os.getenv(CONCURRENCY_ENV)
        if raw_concurrency is not None:
            try:
                concurrency = int(raw_concurrency)
            except ValueError as e:
                raise ConfigurationError(
                    f"{CONCURRENCY_ENV} must be an integer, got '{raw_concurrency}'"
                ) from e

        overridden = config.with_overrides(
            concurrency=concurrency,
            status_only=_read_bool_env(STATUS_ONLY_ENV),
            metrics_enabled=_read_bool_env(METRICS_ENABLED_ENV),
        )
        if overridden is not config:
            logger.info("Applied environment overrides to configuration")
        return overridden
