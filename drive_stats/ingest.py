# drive_stats/ingest.py
"""
Parallel ingestion of raw daily snapshot CSVs.

Parallel strategy
- One shared FileWorkQueue; only its cursor is shared between threads.
- A fixed pool of worker threads (ThreadPoolExecutor), each looping on the queue and
  applying rows to its own private DataCenterStats. No locking around the tables.
- After the pool is joined, the private tables are folded with the merge reducer.

Error handling
- Row-level RecordParseError (bad field values, broken quoting, invalid UTF-8):
  logged with file and line, counted, row skipped.
- Any other exception while reading a file: logged with traceback, counted, file skipped.
Neither stops the worker or the run.
"""

from __future__ import annotations

import concurrent.futures as cf
import csv
import logging
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from drive_stats.accumulators import DataCenterStats, apply_record
from drive_stats.config import AggregationSettings, CapacityPolicy
from drive_stats.merge import fold_tables
from drive_stats.records import ParseRules, RecordParseError, date_from_file_name, parse_raw_row
from drive_stats.work_queue import FileWorkQueue

logger = logging.getLogger(__name__)

MAX_FAILURE_SAMPLES = 20

ERR_NO_HEADER = "no header row"
ERR_HEADER_ENCODING = "header is not valid UTF-8"
ERR_INVALID_UTF8 = "invalid UTF-8 byte sequence"
ERR_MALFORMED_CSV = "malformed CSV ({})"


def elapsed_ms(t0: float, t1: float) -> int:
    return round((t1 - t0) * 1000.0)


@dataclass
class IngestReport:
    files_processed: int = 0
    files_failed: int = 0
    rows_applied: int = 0
    rows_failed: int = 0
    implausible_capacities: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def record_failure(self, path: Path, line: int | None, error: Exception) -> None:
        if len(self.failures) < MAX_FAILURE_SAMPLES:
            self.failures.append({"path": str(path), "line": line, "error": f"{type(error).__name__}: {error}"})

    def combine(self, other: IngestReport) -> IngestReport:
        merged = IngestReport(
            files_processed=self.files_processed + other.files_processed,
            files_failed=self.files_failed + other.files_failed,
            rows_applied=self.rows_applied + other.rows_applied,
            rows_failed=self.rows_failed + other.rows_failed,
            implausible_capacities=self.implausible_capacities + other.implausible_capacities,
        )
        merged.failures = (self.failures + other.failures)[:MAX_FAILURE_SAMPLES]
        return merged


@dataclass
class IngestResult:
    table: DataCenterStats
    report: IngestReport
    workers: int
    elapsed_ms: int


RowResult = tuple[int, dict[str, str | None] | RecordParseError]


def _open_csv(path: Path) -> TextIO:
    # Undecodable bytes survive as surrogate escapes and are rejected per row.
    return path.open("r", newline="", encoding="utf-8-sig", errors="surrogateescape")


def _is_valid_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _read_header(path: Path, reader: Iterator[list[str]]) -> list[str]:
    try:
        header = next(reader, None)
    except csv.Error as exc:
        raise ValueError(f"{path.name}: " + ERR_MALFORMED_CSV.format(exc)) from exc
    if not header:
        raise ValueError(f"{path.name}: {ERR_NO_HEADER}")
    if not _is_valid_utf8("".join(header)):
        raise ValueError(f"{path.name}: {ERR_HEADER_ENCODING}")
    return header


def read_header(path: Path | str) -> list[str]:
    """Column names from the first record of a CSV file."""
    path = Path(path)
    with _open_csv(path) as f:
        return _read_header(path, csv.reader(f, strict=True))


def _named_row(header: list[str], cells: list[str]) -> dict[str, str | None] | RecordParseError:
    if not _is_valid_utf8("".join(cells)):
        for name, cell in zip(header, cells):
            if not _is_valid_utf8(cell):
                return RecordParseError(name, cell.encode("utf-8", "surrogateescape"), ERR_INVALID_UTF8)
        return RecordParseError("row", None, ERR_INVALID_UTF8)

    row: dict[str, str | None] = dict.fromkeys(header)
    # Extra trailing fields are dropped
    row.update(zip(header, cells))
    return row


def read_rows(path: Path | str, required_columns: Iterable[str] = ()) -> Iterator[RowResult]:
    """
    Stream ``(line_number, row)`` for every data record of a CSV file.

    Cells are returned as text; the record parser owns typing. Short rows get None
    for their missing cells. A record that cannot be decoded (broken quoting, as in
    a truncated trailing row, or invalid UTF-8) is yielded as a ``RecordParseError``
    in place of the row, and reading continues with the next record.

    Raises:
        ValueError: If the header is missing or undecodable, or a required column is absent
    """
    path = Path(path)
    with _open_csv(path) as f:
        reader = csv.reader(f, strict=True)
        header = _read_header(path, reader)

        missing = [c for c in required_columns if c not in header]
        if missing:
            raise ValueError(f"Missing required columns in {path.name}: {missing}")

        while True:
            try:
                cells = next(reader)
            except StopIteration:
                return
            except csv.Error as exc:
                yield reader.line_num, RecordParseError("row", None, ERR_MALFORMED_CSV.format(exc))
                continue
            if not cells:
                continue
            yield reader.line_num, _named_row(header, cells)


def read_raw_stats(
    table: DataCenterStats,
    path: Path,
    rules: ParseRules,
    *,
    policy: CapacityPolicy = "max",
    report: IngestReport | None = None,
) -> IngestReport:
    """Parse one raw snapshot file into ``table``; bad rows are reported and skipped."""
    if report is None:
        report = IngestReport()

    cols = rules.columns
    default_date = date_from_file_name(path, rules.date_range)

    for line, row in read_rows(path, required_columns=(cols.model, cols.serial_number, cols.failure)):
        try:
            if isinstance(row, RecordParseError):
                raise row
            record = parse_raw_row(row, rules, default_date=default_date)
        except RecordParseError as exc:
            report.rows_failed += 1
            report.record_failure(path, line, exc)
            logger.warning("Skipping %s:%d: %s", path, line, exc)
            continue

        if record.rejected_capacity_bytes is not None:
            report.implausible_capacities += 1
            logger.warning(
                "Implausible capacity for %s/%s at %s:%d: %s bytes (ignored)",
                record.model,
                record.serial_number,
                path,
                line,
                record.rejected_capacity_bytes,
            )

        apply_record(table, record, policy=policy)
        report.rows_applied += 1

    report.files_processed += 1
    return report


class IngestionWorker:
    """Pulls files from the shared queue into a private table until the queue is empty."""

    def __init__(self, queue: FileWorkQueue, rules: ParseRules, policy: CapacityPolicy = "max") -> None:
        self.queue = queue
        self.rules = rules
        self.policy = policy
        self.table = DataCenterStats(date_range=rules.date_range)
        self.report = IngestReport()

    def run(self) -> IngestionWorker:
        while (path := self.queue.next_file()) is not None:
            try:
                read_raw_stats(self.table, path, self.rules, policy=self.policy, report=self.report)
            except Exception as exc:
                # Rows applied before the failure stay in the table.
                self.report.files_failed += 1
                self.report.record_failure(path, None, exc)
                logger.exception("Failed to process %s", path)
        return self


def rules_from_settings(settings: AggregationSettings) -> ParseRules:
    return ParseRules(
        date_range=settings.date_range,
        min_capacity_bytes=settings.min_capacity_bytes,
        max_capacity_bytes=settings.max_capacity_bytes,
        columns=settings.columns,
    )


def parse_raw_stats(
    paths: Iterable[Path | str],
    rules: ParseRules,
    *,
    workers: int,
    policy: CapacityPolicy = "max",
    extension: str = ".csv",
) -> IngestResult:
    """
    Aggregate every matching file of ``paths`` with a fixed pool of worker threads.

    Args:
        paths: Single-pass sequence of candidate paths (see iter_candidate_paths)
        rules: Parse rules shared by all workers (immutable)
        workers: Pool size, fixed for the whole run
        policy: Capacity combine policy
        extension: Only entries with this suffix are processed

    Returns:
        IngestResult with the folded table and the combined report
    """
    if workers < 1:
        raise ValueError(f"workers must be positive, got {workers}")

    t0 = time.time()
    queue = FileWorkQueue(paths, extension=extension)
    pool = [IngestionWorker(queue, rules, policy) for _ in range(workers)]

    with cf.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as ex:
        futs = [ex.submit(worker.run) for worker in pool]
        # run() isolates per-file errors; anything raised here is a bug and propagates.
        finished = [fut.result() for fut in futs]

    table = fold_tables((w.table for w in finished), rules.date_range, policy=policy)

    report = IngestReport()
    for w in finished:
        report = report.combine(w.report)

    t1 = time.time()
    logger.info(
        "Ingested %d files (%d failed, %d skipped entries) with %d workers in %.1fs",
        report.files_processed,
        report.files_failed,
        queue.skipped,
        workers,
        t1 - t0,
    )
    return IngestResult(table=table, report=report, workers=workers, elapsed_ms=elapsed_ms(t0, t1))
