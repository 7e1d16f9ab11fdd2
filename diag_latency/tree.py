from __future__ import annotations

from typing import Any, Iterable

from .models import DiagnosticRecord
from .values import to_float, to_int, to_text


def count_calls(calls: object) -> int:
    if not isinstance(calls, dict):
        return 0
    total = 0
    for value in calls.values():
        count = to_int(value)
        if count is not None:
            total += count
    return total


def _node_from_mapping(mapping: dict[str, Any]) -> DiagnosticRecord:
    summary = mapping.get("summary")
    direct = 0
    gateway = 0
    if isinstance(summary, dict):
        direct = count_calls(summary.get("directCalls"))
        gateway = count_calls(summary.get("gatewayCalls"))
    data = mapping.get("data")
    return DiagnosticRecord(
        name=to_text(mapping.get("name")),
        start_time=to_text(mapping.get("startTime")),
        duration_ms=to_float(mapping.get("duration"), 0.0),
        direct_calls=direct,
        gateway_calls=gateway,
        data=data if isinstance(data, dict) else {},
    )


def _child_mappings(mapping: dict[str, Any]) -> Iterable[dict[str, Any]]:
    children = mapping.get("children")
    if not isinstance(children, list):
        return ()
    return [child for child in children if isinstance(child, dict)]


def build_record(
    mapping: dict[str, Any],
    *,
    source_text: str | None = None,
    was_repaired: bool = False,
    line_number: int | None = None,
) -> DiagnosticRecord:
    """Build a record tree from a key-normalized mapping without recursion."""
    root = _node_from_mapping(mapping)
    root.source_text = source_text
    root.was_repaired = was_repaired
    root.line_number = line_number
    stack: list[tuple[DiagnosticRecord, dict[str, Any]]] = [(root, mapping)]
    while stack:
        node, source = stack.pop()
        for child_mapping in _child_mappings(source):
            child = _node_from_mapping(child_mapping)
            node.children.append(child)
            stack.append((child, child_mapping))
    return root


def flatten(record: DiagnosticRecord | None) -> list[DiagnosticRecord]:
    """Return ``record`` and all of its descendants in pre-order."""
    if record is None:
        return []
    spans: list[DiagnosticRecord] = []
    stack = [record]
    while stack:
        node = stack.pop()
        spans.append(node)
        if node.children:
            stack.extend(reversed(node.children))
    return spans
