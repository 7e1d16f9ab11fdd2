from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any

import orjson

from .config import Config
from .grouping import (
    UNKNOWN_KEY,
    Group,
    OperationBucket,
    TransportEventGroup,
    operation_buckets,
    resource_type_groups,
    status_code_groups,
    transport_event_groups,
    transport_exception_groups,
)
from .ingest import IngestResult, ingest
from .interactions import extract_interactions
from .models import DiagnosticRecord, NetworkInteraction
from .system_metrics import (
    ClientConfigSummary,
    LatencyHeatmap,
    SystemMetricsCollector,
    SystemMetricsSummary,
    extract_client_config,
    latency_heatmap,
)
from .tree import flatten

logger = logging.getLogger(__name__)


def _by_duration_desc(items: list[Any]) -> list[Any]:
    return sorted(items, key=lambda item: item.duration_ms, reverse=True)


@dataclass(slots=True)
class AnalysisResult:
    total_entries: int
    parsed_entries: int
    repaired_entries: int
    failed_entries: int
    input_format: str
    is_single_entry: bool
    skip_latency_filter: bool
    threshold_ms: float
    high_latency_entries: int
    target_operation: str | None
    system_metrics: SystemMetricsSummary
    client_config: ClientConfigSummary
    latency_histogram: LatencyHeatmap
    operation_buckets: list[OperationBucket] = field(default_factory=list)
    high_latency_diagnostics: list[DiagnosticRecord] = field(default_factory=list)
    network_interactions: list[NetworkInteraction] = field(default_factory=list)
    total_interactions: int = 0
    resource_type_groups: list[Group] = field(default_factory=list)
    status_code_groups: list[Group] = field(default_factory=list)
    transport_event_groups: list[TransportEventGroup] = field(default_factory=list)
    transport_exception_groups: list[Group] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "parsed_entries": self.parsed_entries,
            "repaired_entries": self.repaired_entries,
            "failed_entries": self.failed_entries,
            "input_format": self.input_format,
            "is_single_entry": self.is_single_entry,
            "skip_latency_filter": self.skip_latency_filter,
            "threshold_ms": self.threshold_ms,
            "high_latency_entries": self.high_latency_entries,
            "target_operation": self.target_operation,
            "operation_buckets": [bucket.to_dict() for bucket in self.operation_buckets],
            "high_latency_diagnostics": [
                record.to_dict() for record in self.high_latency_diagnostics
            ],
            "total_interactions": self.total_interactions,
            "network_interactions": [item.to_dict() for item in self.network_interactions],
            "resource_type_groups": [group.to_dict() for group in self.resource_type_groups],
            "status_code_groups": [group.to_dict() for group in self.status_code_groups],
            "transport_event_groups": [group.to_dict() for group in self.transport_event_groups],
            "transport_exception_groups": [
                group.to_dict() for group in self.transport_exception_groups
            ],
            "system_metrics": self.system_metrics.to_dict(),
            "client_config": self.client_config.to_dict(),
            "latency_histogram": self.latency_histogram.to_dict(),
        }

    def to_json(self, *, pretty: bool = False) -> bytes:
        option = orjson.OPT_INDENT_2 if pretty else 0
        return orjson.dumps(self.to_dict(), option=option)


def analyze_records(ingested: IngestResult, config: Config | None = None) -> AnalysisResult:
    cfg = config or Config()
    threshold = cfg.threshold_ms()
    max_entries = max(1, int(cfg.max_group_entries))
    records = ingested.records
    skip_filter = bool(
        cfg.skip_latency_filter or (cfg.single_entry_skips_filter and ingested.is_single_entry)
    )

    # system samples, client config and the histogram see every parsed record
    collector = SystemMetricsCollector(max_snapshots=cfg.max_snapshots)
    for record in records:
        collector.observe(flatten(record), fallback_timestamp=record.start_time)
    client_config = extract_client_config(records, max_snapshots=cfg.max_snapshots)
    histogram = latency_heatmap((record.start_time, record.duration_ms) for record in records)

    if skip_filter:
        high_latency = list(records)
    else:
        high_latency = [record for record in records if record.duration_ms > threshold]
    buckets = operation_buckets(high_latency, max_entries=max_entries)
    target = buckets[0].key if buckets else None

    interactions: list[NetworkInteraction] = []
    if target is not None:
        for record in high_latency:
            if (record.name or UNKNOWN_KEY) != target:
                continue
            interactions.extend(extract_interactions(flatten(record), source=record))
    interactions = _by_duration_desc(interactions)

    result = AnalysisResult(
        total_entries=ingested.total,
        parsed_entries=ingested.parsed,
        repaired_entries=ingested.repaired,
        failed_entries=ingested.failed,
        input_format=ingested.input_format,
        is_single_entry=ingested.is_single_entry,
        skip_latency_filter=skip_filter,
        threshold_ms=threshold,
        high_latency_entries=len(high_latency),
        target_operation=target,
        system_metrics=collector.summary(),
        client_config=client_config,
        latency_histogram=histogram,
        operation_buckets=buckets,
        high_latency_diagnostics=_by_duration_desc(high_latency)[
            : max(0, cfg.max_listed_diagnostics)
        ],
        network_interactions=interactions[: max(0, cfg.max_listed_interactions)],
        total_interactions=len(interactions),
        resource_type_groups=resource_type_groups(interactions, max_entries=max_entries),
        status_code_groups=status_code_groups(interactions, max_entries=max_entries),
        transport_event_groups=transport_event_groups(interactions, max_entries=max_entries),
        transport_exception_groups=transport_exception_groups(
            interactions, max_entries=max_entries
        ),
    )
    logger.info(
        "analyzed %d entries (%d parsed, %d repaired, %d failed); "
        "%d above %.1f ms, target=%s, %d interactions",
        result.total_entries,
        result.parsed_entries,
        result.repaired_entries,
        result.failed_entries,
        result.high_latency_entries,
        threshold,
        target,
        result.total_interactions,
    )
    return result


def analyze(text: str, config: Config | None = None) -> AnalysisResult:
    cfg = config or Config()
    return analyze_records(ingest(text, workers=cfg.parse_workers), cfg)
