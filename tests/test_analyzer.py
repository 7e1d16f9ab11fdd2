import logging
from pathlib import Path

import orjson

from diag_latency.analyzer import analyze
from diag_latency.config import Config

FIXTURE = Path(__file__).resolve().parents[1] / "testdata" / "fixtures" / "sample_diagnostics.jsonl"


def _record(name: str, duration: float, stat_duration: float, status: int = 200) -> str:
    return orjson.dumps(
        {
            "name": name,
            "start datetime": "2024-05-01T10:00:00Z",
            "duration in milliseconds": duration,
            "children": [
                {
                    "name": "transport",
                    "data": {
                        "StoreResponseStatistics": [
                            {
                                "DurationInMs": stat_duration,
                                "ResourceType": "Document",
                                "OperationType": "Read",
                                "StoreResult": {
                                    "StorePhysicalAddress": "rntbd://host:1/apps/a/services/s/partitions/p/replicas/r/",
                                    "StatusCode": status,
                                    "SubStatusCode": 0,
                                },
                            }
                        ]
                    },
                }
            ],
        }
    ).decode("utf-8")


def _fixture_result(**overrides):
    return analyze(FIXTURE.read_text(encoding="utf-8"), Config(**overrides))


def test_fixture_counts_and_target_operation() -> None:
    result = _fixture_result()
    assert (result.total_entries, result.parsed_entries) == (6, 5)
    assert (result.repaired_entries, result.failed_entries) == (1, 1)
    assert result.threshold_ms == 600.0
    assert result.high_latency_entries == 4
    assert result.target_operation == "ReadItemAsync"
    assert [(b.key, b.count) for b in result.operation_buckets] == [
        ("ReadItemAsync", 3),
        ("UpsertItemAsync", 1),
    ]
    read = result.operation_buckets[0]
    assert (read.min_network_calls, read.max_network_calls) == (0, 2)
    assert [d.duration_ms for d in result.high_latency_diagnostics] == [1500.0, 950.0, 812.5, 700.0]


def test_fixture_interactions_and_groups() -> None:
    result = _fixture_result()
    assert result.total_interactions == 3
    assert [i.duration_ms for i in result.network_interactions] == [930.5, 780.2, 688.0]
    first = result.network_interactions[0]
    assert first.transport_error_code == "ReceiveTimeout [0x0010]"
    assert first.partition_id == "part2"
    assert first.replica_id == "222s"
    assert [(g.key, g.count) for g in result.resource_type_groups] == [("Document → Read", 3)]
    assert [(g.key, g.count) for g in result.status_code_groups] == [
        ("200 → 0", 2),
        ("410 → 20001", 1),
    ]
    assert [g.key for g in result.transport_event_groups] == ["TransitTime", "Completed", "Received"]
    assert [(g.key, g.count) for g in result.transport_exception_groups] == [
        ("A client transport error occurred: The request timed out while waiting for a server response.", 1)
    ]


def test_fixture_system_metrics_config_and_histogram() -> None:
    result = _fixture_result()
    metrics = result.system_metrics
    assert metrics.total_snapshots == 2
    assert metrics.cpu.stats.max == 45.0
    assert metrics.snapshots[-1].is_thread_starving is True
    config = result.client_config
    assert config.total_snapshots == 2
    assert config.unique_machines == ["vmId:0f3c9a2e-1111-2222-3333-4455aabbccdd"]
    assert config.connection_modes == ["Direct"]
    assert config.snapshots[0].user_agent == "cosmos-netstandard-sdk/3.38.0"
    histogram = result.latency_histogram
    assert histogram.bucket_seconds == 60
    assert histogram.counts == [
        [0, 0, 2, 0, 0, 0],
        [0, 1, 1, 0, 0, 0],
        [0, 0, 0, 1, 0, 0],
    ]


def test_only_high_latency_records_feed_interactions() -> None:
    text = "\n".join([_record("Op", 800, 700), _record("Op", 900, 850), _record("Op", 400, 390)])
    result = analyze(text, Config(latency_threshold=600))
    assert result.high_latency_entries == 2
    assert result.total_interactions == 2
    assert sorted(i.duration_ms for i in result.network_interactions) == [700.0, 850.0]


def test_skip_latency_filter_includes_everything() -> None:
    text = "\n".join([_record("Op", 800, 700), _record("Op", 400, 390)])
    result = analyze(text, Config(skip_latency_filter=True))
    assert result.skip_latency_filter is True
    assert result.high_latency_entries == 2
    assert result.total_interactions == 2


def test_single_object_input_implies_single_record_mode() -> None:
    text = _record("Op", 100, 90)
    result = analyze(text)
    assert result.is_single_entry is True
    assert result.skip_latency_filter is True
    assert result.high_latency_entries == 1
    assert result.total_interactions == 1
    strict = analyze(text, Config(single_entry_skips_filter=False))
    assert strict.high_latency_entries == 0
    assert strict.target_operation is None
    assert strict.resource_type_groups == []


def test_status_code_zero_is_kept() -> None:
    result = analyze(_record("Op", 900, 850, status=0))
    assert [g.key for g in result.status_code_groups] == ["0 → 0"]


def test_invalid_threshold_falls_back(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="diag_latency.config"):
        result = analyze(_record("Op", 900, 850) + "\n", Config(latency_threshold="fast"))
    assert result.threshold_ms == 600.0
    assert "invalid latency threshold" in caplog.text
    assert analyze("", Config(latency_threshold=-5)).threshold_ms == 600.0


def test_caps_on_listed_items() -> None:
    text = "\n".join(_record("Op", 700 + idx, 650 + idx) for idx in range(6))
    result = analyze(text, Config(max_listed_interactions=2, max_listed_diagnostics=3, max_group_entries=1))
    assert result.total_interactions == 6
    assert len(result.network_interactions) == 2
    assert len(result.high_latency_diagnostics) == 3
    group = result.resource_type_groups[0]
    assert group.count == 6
    assert len(group.entries) == 1
    assert sum(bucket.count for bucket in group.buckets) == 6


def test_empty_input_produces_empty_result() -> None:
    result = analyze("")
    assert result.total_entries == 0
    assert result.target_operation is None
    assert result.operation_buckets == []
    assert result.transport_event_groups == []
    assert result.system_metrics.total_snapshots == 0


def test_to_json_round_trips_plain_types() -> None:
    result = _fixture_result()
    payload = orjson.loads(result.to_json())
    assert payload["total_entries"] == 6
    assert payload["target_operation"] == "ReadItemAsync"
    assert payload["operation_buckets"][0]["buckets"][0]["label"] == "<=P50"
    assert payload["network_interactions"][0]["bottleneck_phase"]["name"] == "TransitTime"
    assert payload["latency_histogram"]["time_buckets"][0] == "2024-05-01T10:00:00+00:00"
    pretty = result.to_json(pretty=True)
    assert pretty.startswith(b"{\n  ")
    assert orjson.loads(pretty) == payload


def test_over_closed_line_counts_as_failed() -> None:
    text = _record("Read", 900, 850) + "\n" + _record("Read", 950, 900) + "}\n"
    result = analyze(text)
    assert (result.parsed_entries, result.repaired_entries, result.failed_entries) == (1, 0, 1)
    assert result.high_latency_entries == 1
    assert [(b.key, b.count) for b in result.operation_buckets] == [("Read", 1)]
