from pathlib import Path

from diag_latency.ingest import (
    FORMAT_ARRAY,
    FORMAT_EMPTY,
    FORMAT_NDJSON,
    FORMAT_OBJECT,
    RawRecord,
    ingest,
    parse_records,
    split_lines,
)

FIXTURE = Path(__file__).resolve().parents[1] / "testdata" / "fixtures" / "sample_diagnostics.jsonl"


def test_ndjson_fixture_counts() -> None:
    result = ingest(FIXTURE.read_text(encoding="utf-8"))
    assert result.input_format == FORMAT_NDJSON
    assert result.is_single_entry is False
    assert (result.total, result.parsed, result.repaired, result.failed) == (6, 5, 1, 1)
    assert [record.line_number for record in result.records] == [1, 2, 3, 4, 6]
    repaired = result.records[3]
    assert repaired.was_repaired is True
    assert repaired.name == "ReadItemAsync"
    assert repaired.duration_ms == 700.0
    assert repaired.source_text.endswith('"Comple"}]}}}]}}]}')
    assert result.records[0].was_repaired is False


def test_single_pretty_printed_object() -> None:
    text = '{\n  "name": "ReadItemAsync",\n  "duration in milliseconds": 12,\n  "children": []\n}\n'
    result = ingest(text)
    assert result.input_format == FORMAT_OBJECT
    assert result.is_single_entry is True
    assert (result.total, result.parsed, result.repaired, result.failed) == (1, 1, 0, 0)
    assert result.records[0].duration_ms == 12.0
    assert result.records[0].line_number == 1


def test_truncated_pretty_printed_object_is_repaired_whole() -> None:
    text = '{\n  "name": "Read",\n  "duration in milliseconds": 700,\n  "children": [\n    {"name": "child"'
    result = ingest(text)
    assert result.input_format == FORMAT_OBJECT
    assert result.is_single_entry is True
    assert (result.total, result.parsed, result.repaired) == (1, 1, 1)
    record = result.records[0]
    assert record.was_repaired is True
    assert [child.name for child in record.children] == ["child"]


def test_json_array_input() -> None:
    text = '[{"name": "a", "duration in milliseconds": 1}, {"name": "b", "duration in milliseconds": 2}, 5]'
    result = ingest(text)
    assert result.input_format == FORMAT_ARRAY
    assert (result.total, result.parsed, result.repaired, result.failed) == (3, 2, 0, 1)
    assert [record.name for record in result.records] == ["a", "b"]
    assert [record.line_number for record in result.records] == [1, 2]
    assert result.records[0].source_text == '{"name":"a","duration in milliseconds":1}'


def test_truncated_array_flags_only_last_element() -> None:
    text = '[{"name": "a"}, {"name": "b", "duration in milliseconds": 70'
    result = ingest(text)
    assert result.input_format == FORMAT_ARRAY
    assert result.repaired == 1
    assert [record.was_repaired for record in result.records] == [False, True]
    assert result.records[1].duration_ms == 70.0


def test_multiple_objects_fall_back_to_ndjson() -> None:
    result = ingest('{"name": "a"}\n\n{"name": "b"}\n')
    assert result.input_format == FORMAT_NDJSON
    assert result.is_single_entry is False
    assert [record.line_number for record in result.records] == [1, 3]


def test_non_object_values_count_as_failed() -> None:
    result = ingest('1\n"text"\n{"name": "a"}\n')
    assert (result.total, result.parsed, result.failed) == (3, 1, 2)


def test_empty_input() -> None:
    result = ingest(" \n\t\n")
    assert result.input_format == FORMAT_EMPTY
    assert (result.total, result.parsed, result.failed) == (0, 0, 0)


def test_sharded_parse_matches_single_thread() -> None:
    lines = []
    for idx in range(23):
        if idx % 5 == 0:
            lines.append(f'{{"name": "op{idx}", "duration in milliseconds": {idx}')
        elif idx % 7 == 0:
            lines.append("garbage")
        else:
            lines.append(f'{{"name": "op{idx}", "duration in milliseconds": {idx}}}')
    raws = split_lines("\n".join(lines))
    single = parse_records(raws, workers=1)
    sharded = parse_records(raws, workers=4)
    assert [r.name for r in sharded.records] == [r.name for r in single.records]
    assert [r.line_number for r in sharded.records] == [r.line_number for r in single.records]
    assert (sharded.total, sharded.repaired, sharded.failed) == (single.total, single.repaired, single.failed)
    assert (single.total, single.repaired, single.failed) == (23, 5, 3)


def test_parse_records_with_more_workers_than_records() -> None:
    raws = [RawRecord(text='{"name": "x"}', line_number=1), RawRecord(text='{"name": "y"}', line_number=2)]
    tally = parse_records(raws, workers=8)
    assert [record.name for record in tally.records] == ["x", "y"]
