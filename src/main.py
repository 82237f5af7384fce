"""
Parity Harness - command line entry point

Replays recorded gateway traffic against every configured retrieval layer
and reports where the layers disagree.

Workflow:
1. Load and validate configuration (before any network activity)
2. Read the replay log into a fixed, de-duplicated request set
3. For each round: dispatch, evaluate, write reports, optionally push
   metrics and classify mismatches on the cid.contact indexer

Exit codes: 0 success, 2 configuration or usage error, 3 report output error.

Usage:
  onion-harness --config config/harness.yaml --replay-file access.log \\
      --count 1000 --n-runs 3 [--concurrency 5] [--status-only]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

import requests

from src.api.cid_contact import CidContactChecker
from src.comparison.engine import ConsistencyEngine
from src.config.settings import HarnessConfig, Settings
from src.dispatch.executor import DispatchExecutor, build_session
from src.domain.discrepancy import DiscrepancyKind
from src.domain.request import LogicalRequest
from src.domain.summary import RunSummary
from src.errors import ConfigurationError, ReportWriteError
from src.monitoring.metrics import RunMetricsPublisher
from src.normalizer.registry import NormalizerRegistry
from src.replay.log_reader import load_requests
from src.report.emitter import ReportEmitter
from src.resolver.url_builder import URLBuilder
from src.store.result_store import ResultStore
from src.utils.logger import get_logger, log_operation

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIGURATION_ERROR = 2
EXIT_OUTPUT_ERROR = 3


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for modules that use plain loggers."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got '{value}'")
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="onion-harness",
        description="Replay gateway traffic against every retrieval layer and report disagreements",
    )
    parser.add_argument("--config", type=Path, required=True, help="Harness YAML configuration")
    parser.add_argument(
        "--replay-file", type=Path, required=True, help="Tab-separated gateway access log"
    )
    parser.add_argument(
        "--count", type=_positive_int, required=True, help="Number of unique paths to replay"
    )
    parser.add_argument(
        "--n-runs", type=_positive_int, required=True, help="Number of rounds over the same paths"
    )
    parser.add_argument(
        "--concurrency", type=_positive_int, help="Paths in flight (overrides configuration)"
    )
    parser.add_argument(
        "--status-only",
        action="store_true",
        help="Compare status codes only and skip content comparison",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("."),
        help="Directory receiving results-<n>/ report folders",
    )
    parser.add_argument(
        "--push-metrics", action="store_true", help="Publish round metrics to CloudWatch"
    )
    parser.add_argument(
        "--classify-mismatches",
        action="store_true",
        help="Look up mismatched CIDs on cid.contact and tally providers",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def build_engine(config: HarnessConfig) -> ConsistencyEngine:
    """
    Build the Consistency Engine for a configuration.

    Raises:
        ConfigurationError: If a configured decoder cannot be loaded
    """
    try:
        normalizer = NormalizerRegistry.from_import_paths(config.decoders)
    except (ImportError, ValueError) as e:
        raise ConfigurationError(f"Cannot load decoder: {e}") from e

    return ConsistencyEngine(
        config.comparisons,
        encodings=config.encodings,
        normalizer=normalizer,
        compare_content=not config.status_only,
    )


class ParityRound:
    """
    One dispatch-evaluate-report cycle over the fixed request set.

    Every round gets a fresh Result Store; the request set, engine and
    HTTP session are shared across rounds.
    """

    def __init__(
        self,
        run_number: int,
        config: HarnessConfig,
        requests_by_path: Mapping[str, LogicalRequest],
        engine: ConsistencyEngine,
        emitter: ReportEmitter,
        session: Optional[requests.Session] = None,
        publisher: Optional[RunMetricsPublisher] = None,
        checker: Optional[CidContactChecker] = None,
    ):
        self.run_number = run_number
        self.config = config
        self.requests_by_path = requests_by_path
        self.engine = engine
        self.emitter = emitter
        self.session = session
        self.publisher = publisher
        self.checker = checker

    @log_operation("parity_round")
    def run(self) -> RunSummary:
        """
        Execute the round.

        Raises:
            ReportWriteError: If a report artifact cannot be written
        """
        store = ResultStore(
            self.config.layers, self.engine, retain_bodies=self.config.retain_bodies
        )
        executor = DispatchExecutor(
            self.requests_by_path,
            store,
            concurrency=self.config.concurrency,
            timeout=self.config.timeout_seconds,
            session=self.session,
            pool_size=self.config.effective_pool_size,
            run_number=self.run_number,
        )
        executor.execute()

        self.emitter.emit(self.run_number, store)
        summary = store.summary()

        if self.publisher is not None:
            self.publisher.publish_run_summary(self.run_number, summary)

        if self.checker is not None:
            for pair in self.engine.pairs:
                paths = sorted(
                    {
                        discrepancy.path
                        for discrepancy in store.discrepancies(pair=pair)
                        if discrepancy.kind is not DiscrepancyKind.DECODE_ERROR
                    }
                )
                if not paths:
                    continue
                tally = self.checker.classify_paths(paths)
                self.emitter.write_provider_summary(self.run_number, pair, tally)

        return summary


def run_harness(args: argparse.Namespace) -> int:
    """
    Load everything up front, then run the requested number of rounds.

    Raises:
        ConfigurationError: On invalid configuration or replay log
        ReportWriteError: On report output failure
    """
    config = Settings().load(args.config).with_overrides(
        concurrency=args.concurrency,
        status_only=True if args.status_only else None,
        metrics_enabled=True if args.push_metrics else None,
    )
    engine = build_engine(config)

    resolver = URLBuilder(config.endpoints)
    requests_by_path = load_requests(args.replay_file, resolver, args.count)

    logger.info(
        f"Loaded {len(requests_by_path)} unique paths from {args.replay_file}",
        operation="startup",
        context={
            "layers": [layer.value for layer in config.layers],
            "comparisons": [pair.key for pair in config.comparisons],
            "concurrency": config.concurrency,
            "status_only": config.status_only,
            "runs": args.n_runs,
        },
    )

    session = build_session(config.effective_pool_size)
    emitter = ReportEmitter(args.output_dir)
    publisher = (
        RunMetricsPublisher(
            region_name=config.metrics_region, namespace=config.metrics_namespace
        )
        if config.metrics_enabled
        else None
    )
    checker = (
        CidContactChecker(timeout=config.timeout_seconds) if args.classify_mismatches else None
    )

    for run_number in range(1, args.n_runs + 1):
        ParityRound(
            run_number,
            config,
            requests_by_path,
            engine,
            emitter,
            session=session,
            publisher=publisher,
            checker=checker,
        ).run()

    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        return run_harness(args)
    except ConfigurationError as e:
        logger.error("Configuration error", operation="startup", error=str(e))
        return EXIT_CONFIGURATION_ERROR
    except ReportWriteError as e:
        logger.error("Report output error", operation="report", error=str(e))
        return EXIT_OUTPUT_ERROR


if __name__ == "__main__":
    sys.exit(main())
