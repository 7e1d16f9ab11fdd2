"""Input format detection and per-record parsing.

An export is either one JSON object (one line or pretty-printed), a JSON
array of objects, or newline-delimited JSON where every line is repaired
on its own. NDJSON lines can be parsed on several threads; shards are
contiguous so merged results keep input order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import threading
from typing import Any, Sequence

import orjson

from .keys import normalize_keys
from .models import DiagnosticRecord
from .repair import ParseFailure, repair_parse
from .tree import build_record

FORMAT_EMPTY = "empty"
FORMAT_OBJECT = "object"
FORMAT_ARRAY = "array"
FORMAT_NDJSON = "ndjson"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawRecord:
    text: str
    line_number: int


@dataclass(slots=True)
class ShardTally:
    records: list[DiagnosticRecord] = field(default_factory=list)
    total: int = 0
    repaired: int = 0
    failed: int = 0

    def merge(self, other: "ShardTally") -> None:
        self.records.extend(other.records)
        self.total += other.total
        self.repaired += other.repaired
        self.failed += other.failed


@dataclass(slots=True)
class IngestResult:
    records: list[DiagnosticRecord]
    total: int
    repaired: int
    failed: int
    input_format: str
    is_single_entry: bool = False

    @property
    def parsed(self) -> int:
        return len(self.records)


def _record_from_value(
    value: Any,
    *,
    source_text: str,
    was_repaired: bool,
    line_number: int,
) -> DiagnosticRecord | None:
    normalized = normalize_keys(value)
    if not isinstance(normalized, dict):
        return None
    return build_record(
        normalized,
        source_text=source_text,
        was_repaired=was_repaired,
        line_number=line_number,
    )


def parse_record(raw: RawRecord) -> DiagnosticRecord | None:
    outcome = repair_parse(raw.text)
    if isinstance(outcome, ParseFailure):
        logger.debug("line %d: unparseable record (%s)", raw.line_number, outcome.error)
        return None
    record = _record_from_value(
        outcome.value,
        source_text=outcome.text,
        was_repaired=outcome.was_repaired,
        line_number=raw.line_number,
    )
    if record is None:
        logger.debug("line %d: record is not a JSON object", raw.line_number)
    return record


def _parse_shard(raws: Sequence[RawRecord]) -> ShardTally:
    tally = ShardTally()
    for raw in raws:
        tally.total += 1
        record = parse_record(raw)
        if record is None:
            tally.failed += 1
            continue
        if record.was_repaired:
            tally.repaired += 1
        tally.records.append(record)
    return tally


def parse_records(raws: Sequence[RawRecord], *, workers: int = 1) -> ShardTally:
    workers = max(1, int(workers))
    if workers == 1 or len(raws) < 2:
        return _parse_shard(raws)

    shard_size = int(math.ceil(len(raws) / workers))
    shards = [raws[idx : idx + shard_size] for idx in range(0, len(raws), shard_size)]
    tallies: list[ShardTally | None] = [None] * len(shards)
    errors: list[BaseException] = []

    def _run(shard_id: int, shard: Sequence[RawRecord]) -> None:
        try:
            tallies[shard_id] = _parse_shard(shard)
        except Exception as exc:
            errors.append(exc)

    threads = [
        threading.Thread(
            target=_run,
            args=(shard_id, shard),
            name=f"record-parse-{shard_id}",
            daemon=True,
        )
        for shard_id, shard in enumerate(shards)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    if errors:
        raise errors[0]

    merged = ShardTally()
    for tally in tallies:
        if tally is not None:
            merged.merge(tally)
    return merged


def split_lines(text: str) -> list[RawRecord]:
    return [
        RawRecord(text=line.strip(), line_number=idx)
        for idx, line in enumerate(text.splitlines(), start=1)
        if line.strip()
    ]


def _single_object(text: str) -> IngestResult | None:
    try:
        value = orjson.loads(text)
    except orjson.JSONDecodeError:
        first_line = text.split("\n", 1)[0].strip()
        if first_line != "{":
            return None
        # pretty-printed object cut mid-write: repair it as one record
        tally = _parse_shard([RawRecord(text=text, line_number=1)])
        return IngestResult(
            records=tally.records,
            total=tally.total,
            repaired=tally.repaired,
            failed=tally.failed,
            input_format=FORMAT_OBJECT,
            is_single_entry=True,
        )
    record = _record_from_value(value, source_text=text, was_repaired=False, line_number=1)
    return IngestResult(
        records=[] if record is None else [record],
        total=1,
        repaired=0,
        failed=1 if record is None else 0,
        input_format=FORMAT_OBJECT,
        is_single_entry=True,
    )


def _array(text: str) -> IngestResult | None:
    outcome = repair_parse(text)
    if isinstance(outcome, ParseFailure) or not isinstance(outcome.value, list):
        return None
    items = outcome.value
    records: list[DiagnosticRecord] = []
    repaired = 0
    failed = 0
    last = len(items) - 1
    for idx, item in enumerate(items):
        # only the tail of a cut array can have been touched by repair
        was_repaired = outcome.was_repaired and idx == last
        record = _record_from_value(
            item,
            source_text=orjson.dumps(item).decode("utf-8"),
            was_repaired=was_repaired,
            line_number=idx + 1,
        )
        if record is None:
            failed += 1
            continue
        if was_repaired:
            repaired += 1
        records.append(record)
    return IngestResult(
        records=records,
        total=len(items),
        repaired=repaired,
        failed=failed,
        input_format=FORMAT_ARRAY,
    )


def ingest(text: str, *, workers: int = 1) -> IngestResult:
    stripped = text.strip()
    if not stripped:
        return IngestResult(records=[], total=0, repaired=0, failed=0, input_format=FORMAT_EMPTY)

    result: IngestResult | None = None
    if stripped.startswith("{"):
        result = _single_object(stripped)
    elif stripped.startswith("["):
        result = _array(stripped)
    if result is None:
        tally = parse_records(split_lines(text), workers=workers)
        result = IngestResult(
            records=tally.records,
            total=tally.total,
            repaired=tally.repaired,
            failed=tally.failed,
            input_format=FORMAT_NDJSON,
        )
    logger.debug(
        "ingested %s input: %d records, %d parsed, %d repaired, %d failed",
        result.input_format,
        result.total,
        result.parsed,
        result.repaired,
        result.failed,
    )
    return result
