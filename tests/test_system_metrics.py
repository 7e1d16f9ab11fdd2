from datetime import datetime, timezone

from diag_latency.models import DiagnosticRecord
from diag_latency.system_metrics import (
    SystemMetricsCollector,
    bucket_width_seconds,
    extract_client_config,
    extract_system_metrics,
    latency_bin,
    latency_heatmap,
)


def _sample(ts: str | None, cpu: float, memory: float, **extra) -> dict:
    sample = {
        "cpu": cpu,
        "memory": memory,
        "threadInfo": {
            "threadWaitIntervalInMs": extra.get("wait", 0.0),
            "availableThreads": 100,
            "isThreadStarving": extra.get("starving", "False"),
        },
        "numberOfOpenTcpConnection": extra.get("tcp", 3),
    }
    if ts is not None:
        sample["dateUtc"] = ts
    return sample


def _span(data: dict) -> DiagnosticRecord:
    return DiagnosticRecord(name="span", start_time=None, duration_ms=0.0, data=data)


def test_collects_from_both_locations_and_deduplicates() -> None:
    spans = [
        _span({"systemInfo": {"systemHistory": [_sample("2024-05-01T10:00:20Z", 40.0, 2 * 1024 * 1024)]}}),
        _span(
            {
                "clientSideRequestStats": {
                    "systemInfo": [
                        {"systemHistory": [_sample("2024-05-01T10:00:00Z", 10.0, 1024 * 1024)]},
                        _sample("2024-05-01T10:00:20Z", 40.0, 2 * 1024 * 1024),
                    ]
                }
            }
        ),
    ]
    summary = extract_system_metrics(spans)
    assert summary.total_snapshots == 2
    assert [s.timestamp for s in summary.snapshots] == [
        "2024-05-01T10:00:00Z",
        "2024-05-01T10:00:20Z",
    ]
    assert summary.start_time == "2024-05-01T10:00:00Z"
    assert summary.end_time == "2024-05-01T10:00:20Z"
    assert summary.snapshots[0].memory_mb == 1.0
    assert summary.memory_mb.stats.max == 2.0
    assert summary.cpu.avg == 25.0


def test_cpu_and_memory_stats_ignore_zero_samples() -> None:
    history = [
        _sample("2024-05-01T10:00:00Z", 0.0, 0.0, wait=0.0, tcp=0),
        _sample("2024-05-01T10:00:10Z", 20.0, 1024 * 1024, wait=4.0, tcp=2, starving="True"),
    ]
    summary = extract_system_metrics([_span({"systemInfo": {"systemHistory": history}})])
    assert summary.cpu.count == 1
    assert summary.memory_mb.count == 1
    assert summary.thread_wait_ms.count == 2
    assert summary.tcp_connections.stats.max == 2.0
    assert summary.snapshots[1].is_thread_starving is True
    assert summary.snapshots[0].is_thread_starving is False


def test_fallback_timestamp_and_snapshot_cap() -> None:
    collector = SystemMetricsCollector(max_snapshots=2)
    history = [_sample(None, float(cpu), 1.0) for cpu in (1, 2, 3)]
    collector.observe([_span({"systemInfo": {"systemHistory": history}})], fallback_timestamp="2024-05-01T09:00:00Z")
    collector.observe([_span({"systemInfo": {"systemHistory": history}})], fallback_timestamp="2024-05-01T09:00:00Z")
    summary = collector.summary()
    assert collector.duplicates == 3
    assert summary.total_snapshots == 3
    assert len(summary.snapshots) == 2
    assert {s.timestamp for s in summary.snapshots} == {"2024-05-01T09:00:00Z"}


def test_no_samples_gives_empty_summary() -> None:
    summary = extract_system_metrics([_span({}), _span({"systemInfo": "n/a"})])
    assert summary.total_snapshots == 0
    assert summary.snapshots == []
    assert summary.start_time is None
    assert summary.to_dict()["stats"]["cpu"]["count"] == 0


def test_client_config_from_root_records() -> None:
    records = [
        DiagnosticRecord(
            name="Read",
            start_time="2024-05-01T10:05:00Z",
            duration_ms=1.0,
            data={
                "clientConfiguration": {
                    "machineId": "vmId:0f3c9a2e-1111-2222-3333-4455aabbccdd",
                    "processorCount": 8,
                    "numberOfClientsCreated": 2,
                    "numberOfActiveClients": 1,
                    "connectionMode": "Direct",
                    "userAgent": "sdk/1",
                }
            },
        ),
        DiagnosticRecord(
            name="Read",
            start_time="2024-05-01T10:00:00Z",
            duration_ms=1.0,
            data={"clientConfiguration": {"machineId": "m2", "processorCount": 4, "connectionMode": "Gateway"}},
        ),
        DiagnosticRecord(name="Read", start_time=None, duration_ms=1.0),
    ]
    summary = extract_client_config(records)
    assert summary.total_snapshots == 2
    assert summary.snapshots[0].machine_id == "m2"
    assert summary.snapshots[1].short_machine_id == "aabbccdd"
    assert summary.unique_machines == ["m2", "vmId:0f3c9a2e-1111-2222-3333-4455aabbccdd"]
    assert summary.connection_modes == ["Gateway", "Direct"]
    assert summary.processor_count.stats.max == 8.0
    assert summary.clients_created.stats.min == 0.0


def test_bucket_width_adapts_to_span() -> None:
    assert bucket_width_seconds(0) == 60
    assert bucket_width_seconds(3600) == 60
    assert bucket_width_seconds(3601) == 300
    assert bucket_width_seconds(86400) == 300
    assert bucket_width_seconds(86401) == 3600


def test_latency_bins_are_half_open() -> None:
    assert latency_bin(0) == 0
    assert latency_bin(99.9) == 0
    assert latency_bin(100) == 1
    assert latency_bin(499.99) == 1
    assert latency_bin(500) == 2
    assert latency_bin(1000) == 3
    assert latency_bin(2000) == 4
    assert latency_bin(5000) == 5
    assert latency_bin(1_000_000) == 5


def test_latency_heatmap_floor_aligned_rows() -> None:
    heatmap = latency_heatmap(
        [
            ("2024-05-01T10:00:10Z", 50.0),
            ("2024-05-01T10:00:50Z", 700.0),
            ("2024-05-01T10:02:05Z", 6000.0),
            ("garbage", 1.0),
            (None, 2.0),
        ]
    )
    assert heatmap.bucket_seconds == 60
    assert heatmap.skipped == 2
    assert heatmap.time_buckets == [
        datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
        datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc),
    ]
    assert heatmap.counts == [[1, 0, 1, 0, 0, 0], [0, 0, 0, 0, 0, 1]]
    assert heatmap.total == 3
    assert heatmap.to_dict()["latency_labels"][-1] == "5s+"


def test_latency_heatmap_wide_span_uses_hours() -> None:
    heatmap = latency_heatmap([("2024-05-01T10:30:00Z", 10.0), ("2024-05-03T10:30:00Z", 10.0)])
    assert heatmap.bucket_seconds == 3600
    assert heatmap.time_buckets[0] == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert latency_heatmap([]).counts == []
