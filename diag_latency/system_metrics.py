from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Iterable

from .latency import MetricStats, metric_stats
from .models import ClientConfigSnapshot, DiagnosticRecord, SystemMetricSnapshot
from .values import dig, parse_timestamp, to_float, to_int, to_text

DEFAULT_MAX_SNAPSHOTS = 500

_SYSTEM_INFO_PATHS = (
    ("systemInfo",),
    ("clientSideRequestStats", "systemInfo"),
)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# (lower inclusive ms, upper exclusive ms, label); None means unbounded
LATENCY_BINS: tuple[tuple[float, float | None, str], ...] = (
    (0.0, 100.0, "0-100ms"),
    (100.0, 500.0, "100-500ms"),
    (500.0, 1000.0, "500ms-1s"),
    (1000.0, 2000.0, "1-2s"),
    (2000.0, 5000.0, "2-5s"),
    (5000.0, None, "5s+"),
)
MINUTE_SECONDS = 60
FIVE_MINUTE_SECONDS = 300
HOUR_SECONDS = 3600
DAY_SECONDS = 86400

logger = logging.getLogger(__name__)


def _chronological(timestamp: str | None) -> tuple[int, datetime]:
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return (1, _EPOCH)
    return (0, parsed)


def _starving_flag(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return None


def _history_entries(block: object) -> list[dict[str, Any]]:
    if isinstance(block, dict):
        history = block.get("systemHistory")
        if isinstance(history, list):
            return [entry for entry in history if isinstance(entry, dict)]
        return []
    entries: list[dict[str, Any]] = []
    if isinstance(block, list):
        for item in block:
            if not isinstance(item, dict):
                continue
            if "systemHistory" in item:
                entries.extend(_history_entries(item))
            else:
                entries.append(item)
    return entries


def _snapshot(entry: dict[str, Any], fallback_timestamp: str | None) -> SystemMetricSnapshot:
    thread_info = entry.get("threadInfo")
    return SystemMetricSnapshot(
        timestamp=to_text(entry.get("dateUtc")) or fallback_timestamp,
        cpu=to_float(entry.get("cpu"), 0.0),
        memory_bytes=to_float(entry.get("memory"), 0.0),
        thread_wait_ms=to_float(dig(thread_info, "threadWaitIntervalInMs"), 0.0),
        tcp_connections=to_int(entry.get("numberOfOpenTcpConnection")) or 0,
        available_threads=to_int(dig(thread_info, "availableThreads")) or 0,
        min_threads=to_int(dig(thread_info, "minThreads")) or 0,
        max_threads=to_int(dig(thread_info, "maxThreads")) or 0,
        is_thread_starving=_starving_flag(dig(thread_info, "isThreadStarving")),
    )


@dataclass(slots=True)
class SystemMetricsSummary:
    snapshots: list[SystemMetricSnapshot]
    total_snapshots: int
    start_time: str | None
    end_time: str | None
    cpu: MetricStats
    memory_mb: MetricStats
    thread_wait_ms: MetricStats
    tcp_connections: MetricStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_snapshots": self.total_snapshots,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "stats": {
                "cpu": self.cpu.to_dict(),
                "memory_mb": self.memory_mb.to_dict(),
                "thread_wait_ms": self.thread_wait_ms.to_dict(),
                "tcp_connections": self.tcp_connections.to_dict(),
            },
            "snapshots": [snapshot.to_dict() for snapshot in self.snapshots],
        }


@dataclass(slots=True)
class SystemMetricsCollector:
    """Accumulates deduplicated system samples across many span trees."""

    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS
    duplicates: int = 0
    _seen: set[tuple[str | None, float, float]] = field(default_factory=set)
    _snapshots: list[SystemMetricSnapshot] = field(default_factory=list)

    def observe(
        self,
        spans: Iterable[DiagnosticRecord],
        *,
        fallback_timestamp: str | None = None,
    ) -> None:
        for span in spans:
            for path in _SYSTEM_INFO_PATHS:
                for entry in _history_entries(dig(span.data, *path)):
                    self.add(_snapshot(entry, fallback_timestamp))

    def add(self, snapshot: SystemMetricSnapshot) -> bool:
        key = snapshot.dedup_key()
        if key in self._seen:
            self.duplicates += 1
            return False
        self._seen.add(key)
        self._snapshots.append(snapshot)
        return True

    def summary(self) -> SystemMetricsSummary:
        ordered = sorted(self._snapshots, key=lambda snapshot: _chronological(snapshot.timestamp))
        if self.duplicates:
            logger.debug("dropped %d duplicate system snapshots", self.duplicates)
        return SystemMetricsSummary(
            snapshots=ordered[: max(0, self.max_snapshots)],
            total_snapshots=len(ordered),
            start_time=ordered[0].timestamp if ordered else None,
            end_time=ordered[-1].timestamp if ordered else None,
            cpu=metric_stats(sorted(s.cpu for s in ordered if s.cpu > 0)),
            memory_mb=metric_stats(sorted(s.memory_mb for s in ordered if s.memory_mb > 0)),
            thread_wait_ms=metric_stats(sorted(s.thread_wait_ms for s in ordered)),
            tcp_connections=metric_stats(sorted(float(s.tcp_connections) for s in ordered)),
        )


def extract_system_metrics(
    spans: Iterable[DiagnosticRecord],
    *,
    fallback_timestamp: str | None = None,
    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
) -> SystemMetricsSummary:
    collector = SystemMetricsCollector(max_snapshots=max_snapshots)
    collector.observe(spans, fallback_timestamp=fallback_timestamp)
    return collector.summary()


@dataclass(slots=True)
class ClientConfigSummary:
    snapshots: list[ClientConfigSnapshot]
    total_snapshots: int
    processor_count: MetricStats
    clients_created: MetricStats
    active_clients: MetricStats
    unique_machines: list[str]
    connection_modes: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_snapshots": self.total_snapshots,
            "stats": {
                "processor_count": self.processor_count.to_dict(),
                "clients_created": self.clients_created.to_dict(),
                "active_clients": self.active_clients.to_dict(),
            },
            "unique_machines": list(self.unique_machines),
            "connection_modes": list(self.connection_modes),
            "snapshots": [snapshot.to_dict() for snapshot in self.snapshots],
        }


def _distinct(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(value for value in values if value))


def extract_client_config(
    records: Iterable[DiagnosticRecord],
    *,
    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
) -> ClientConfigSummary:
    """Collect client configuration blocks from root records only."""
    snapshots: list[ClientConfigSnapshot] = []
    for record in records:
        config = record.data.get("clientConfiguration")
        if not isinstance(config, dict):
            continue
        snapshots.append(
            ClientConfigSnapshot(
                timestamp=record.start_time,
                machine_id=to_text(config.get("machineId")) or "",
                processor_count=to_int(config.get("processorCount")) or 0,
                clients_created=to_int(config.get("numberOfClientsCreated")) or 0,
                active_clients=to_int(config.get("numberOfActiveClients")) or 0,
                connection_mode=to_text(config.get("connectionMode")) or "",
                user_agent=to_text(config.get("userAgent")) or "",
            )
        )
    snapshots.sort(key=lambda snapshot: _chronological(snapshot.timestamp))
    return ClientConfigSummary(
        snapshots=snapshots[: max(0, max_snapshots)],
        total_snapshots=len(snapshots),
        processor_count=metric_stats(sorted(float(s.processor_count) for s in snapshots)),
        clients_created=metric_stats(sorted(float(s.clients_created) for s in snapshots)),
        active_clients=metric_stats(sorted(float(s.active_clients) for s in snapshots)),
        unique_machines=_distinct(s.machine_id for s in snapshots),
        connection_modes=_distinct(s.connection_mode for s in snapshots),
    )


def bucket_width_seconds(span_seconds: float) -> int:
    if span_seconds <= HOUR_SECONDS:
        return MINUTE_SECONDS
    if span_seconds <= DAY_SECONDS:
        return FIVE_MINUTE_SECONDS
    return HOUR_SECONDS


def latency_bin(duration_ms: float) -> int:
    for idx, (_, upper, _) in enumerate(LATENCY_BINS):
        if upper is None or duration_ms < upper:
            return idx
    return len(LATENCY_BINS) - 1


@dataclass(slots=True)
class LatencyHeatmap:
    bucket_seconds: int
    time_buckets: list[datetime]
    counts: list[list[int]]
    skipped: int = 0

    @property
    def latency_labels(self) -> list[str]:
        return [label for _, _, label in LATENCY_BINS]

    @property
    def total(self) -> int:
        return sum(sum(row) for row in self.counts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket_seconds": self.bucket_seconds,
            "latency_labels": self.latency_labels,
            "time_buckets": [bucket.isoformat() for bucket in self.time_buckets],
            "counts": [list(row) for row in self.counts],
            "skipped": self.skipped,
        }


def latency_heatmap(points: Iterable[tuple[str | None, float]]) -> LatencyHeatmap:
    """Bin (timestamp, latency ms) pairs; only occupied time buckets are listed."""
    parsed: list[tuple[datetime, float]] = []
    skipped = 0
    for timestamp, duration in points:
        moment = parse_timestamp(timestamp)
        if moment is None:
            skipped += 1
            continue
        parsed.append((moment, float(duration)))
    if not parsed:
        return LatencyHeatmap(bucket_seconds=MINUTE_SECONDS, time_buckets=[], counts=[], skipped=skipped)

    first = min(moment for moment, _ in parsed)
    last = max(moment for moment, _ in parsed)
    width = bucket_width_seconds((last - first).total_seconds())
    rows: dict[int, list[int]] = {}
    for moment, duration in parsed:
        epoch = int((moment - _EPOCH).total_seconds() // width) * width
        row = rows.setdefault(epoch, [0] * len(LATENCY_BINS))
        row[latency_bin(duration)] += 1
    ordered = sorted(rows)
    return LatencyHeatmap(
        bucket_seconds=width,
        time_buckets=[datetime.fromtimestamp(epoch, tz=timezone.utc) for epoch in ordered],
        counts=[rows[epoch] for epoch in ordered],
        skipped=skipped,
    )
