"""Report Emitter - Write per-round JSON artifacts and a markdown summary."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping

from src.domain.discrepancy import ComparisonPair, DiscrepancyKind
from src.domain.summary import RunSummary
from src.errors import ReportWriteError
from src.store.result_store import ResultStore
from src.utils.logger import get_logger

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = Path(".")

_UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

KIND_FILE_SUFFIXES = {
    DiscrepancyKind.STATUS_MISMATCH: "status-mismatches",
    DiscrepancyKind.CONTENT_MISMATCH: "content-mismatches",
    DiscrepancyKind.DECODE_ERROR: "decode-errors",
}


class ReportEmitter:
    """Generate the per-round artifact directory (JSON + Markdown)."""

    def __init__(self, output_dir: Path | None = None) -> None:
        self.output_dir = Path(output_dir) if output_dir is not None else DEFAULT_OUTPUT_DIR
        self.console = get_logger(__name__)

    def round_dir(self, run_number: int) -> Path:
        return self.output_dir / f"results-{run_number}"

    def emit(self, run_number: int, store: ResultStore) -> Path:
        """
        Write every artifact of one round.

        Args:
            run_number: 1-based round number
            store: Result Store holding the round's finalized paths

        Returns:
            Directory the artifacts were written to

        Raises:
            ReportWriteError: If the directory or any file cannot be written
        """
        run_dir = self.round_dir(run_number)
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ReportWriteError(f"Cannot create report directory {run_dir}: {e}") from e

        self.write_json(run_dir / "results.json", store.results())

        for pair in store.engine.pairs:
            for kind, suffix in KIND_FILE_SUFFIXES.items():
                entries = {
                    discrepancy.path: discrepancy.to_dict()
                    for discrepancy in store.discrepancies(kind=kind, pair=pair)
                }
                self._write_with_paths(run_dir, f"{pair.key}-{suffix}", entries)

        for layer in store.layers:
            entries = {path: result.to_dict() for path, result in store.read_errors(layer).items()}
            self._write_with_paths(run_dir, f"{layer.value}-2xx-response-read-errors", entries)

        self.write_decode_failure_bodies(run_dir, store)

        summary = store.summary()
        self.write_json(run_dir / "top-level-metrics.json", summary.to_dict())
        self.write_text(
            run_dir / "SUMMARY.md", self.generate_markdown_summary(run_number, summary)
        )

        self.log_console_summary(run_number, summary)
        logger.debug("Wrote round %d reports to %s", run_number, run_dir)
        return run_dir

    def write_provider_summary(
        self, run_number: int, pair: ComparisonPair, tally: Mapping[str, int]
    ) -> Path:
        """Write the indexer provider classification of one pair's mismatches."""
        path = self.round_dir(run_number) / f"{pair.key}-provider-summary.json"
        self.write_json(path, dict(tally))
        return path

    def write_decode_failure_bodies(self, run_dir: Path, store: ResultStore) -> List[Path]:
        """
        Save the raw body of every layer that failed to decode.

        Files land in decode-errors/<layer>-<content path>.<encoding> so the
        undecodable payload can be inspected after the round.
        """
        failures = store.decode_failure_bodies()
        if not failures:
            return []

        target_dir = run_dir / "decode-errors"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ReportWriteError(f"Cannot create directory {target_dir}: {e}") from e

        written = []
        for path, layer, encoding, body in failures:
            name = f"{layer.value}-{_content_file_stem(path)}.{encoding.value}"
            written.append(self.write_bytes(target_dir / name, body))
        return written

    def write_bytes(self, path: Path, content: bytes) -> Path:
        try:
            path.write_bytes(content)
        except OSError as e:
            raise ReportWriteError(f"Cannot write report file {path}: {e}") from e
        logger.debug("Wrote %s (%d bytes)", path, len(content))
        return path

    def write_json(self, path: Path, payload: Any) -> Path:
        return self.write_text(path, json.dumps(payload, indent=2, default=str))

    def write_text(self, path: Path, content: str) -> Path:
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ReportWriteError(f"Cannot write report file {path}: {e}") from e
        logger.debug("Wrote %s", path)
        return path

    def _write_with_paths(self, run_dir: Path, stem: str, entries: Dict[str, Any]) -> None:
        self.write_json(run_dir / f"{stem}.json", entries)
        self.write_json(run_dir / f"{stem}-paths.json", sorted(entries))

    def generate_markdown_summary(self, run_number: int, summary: RunSummary) -> str:
        total_discrepancies = (
            sum(summary.status_mismatches.values())
            + sum(summary.content_mismatches.values())
            + sum(summary.decode_errors.values())
        )

        md_lines = [
            f"# Parity Report: Round {run_number}",
            f"**Generated:** {datetime.now().isoformat()}",
            "",
            "## Overall Results",
            f"- **Paths Evaluated:** {summary.total_paths}",
            f"- **Discrepancies:** {total_discrepancies}",
            f"- **Parity Status:** {'PASS' if total_discrepancies == 0 else 'FAIL'}",
            "",
            "## Layers",
            "",
            "| Layer | 2xx | Read errors | Status codes |",
            "| --- | --- | --- | --- |",
        ]

        for layer in summary.layers:
            codes = ", ".join(
                f"{code}: {count}" for code, count in sorted(summary.status_codes[layer].items())
            )
            md_lines.append(
                f"| {layer.label} | {summary.success[layer]} | "
                f"{summary.read_errors[layer]} | {codes or '-'} |"
            )

        md_lines.extend(
            [
                "",
                "## Comparisons",
                "",
                "| Pair | Status mismatches | Content mismatches | Content matches | Decode errors |",
                "| --- | --- | --- | --- | --- |",
            ]
        )

        for pair in summary.pairs:
            md_lines.append(
                f"| {pair.label} | {summary.status_mismatches[pair]} | "
                f"{summary.content_mismatches[pair]} | {summary.content_matches[pair]} | "
                f"{summary.decode_errors[pair]} |"
            )

        md_lines.extend(["", "---", "*Generated by onion parity harness*"])

        return "\n".join(md_lines)

    def log_console_summary(self, run_number: int, summary: RunSummary) -> None:
        lines: List[str] = []
        for layer in summary.layers:
            lines.append(f"{layer.label} success: {summary.success[layer]}/{summary.total_paths}")
            if summary.read_errors[layer]:
                lines.append(f"{layer.label} 2xx read errors: {summary.read_errors[layer]}")
        for pair in summary.pairs:
            lines.append(
                f"{pair.label}: {summary.status_mismatches[pair]} status mismatches, "
                f"{summary.content_mismatches[pair]} content mismatches, "
                f"{summary.decode_errors[pair]} decode errors"
            )

        self.console.info(
            f"Run-{run_number}; summary",
            operation="report",
            context={"run": run_number, "lines": lines, "metrics": summary.to_dict()},
        )


def _content_file_stem(path: str) -> str:
    """/ipfs/<cid>/a/b.txt -> <cid>_a_b.txt, safe as a single file name."""
    _, sep, rest = path.partition("/ipfs/")
    stem = rest if sep else path.strip("/")
    return _UNSAFE_FILE_CHARS.sub("_", stem) or "root"
