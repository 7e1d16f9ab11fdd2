from __future__ import annotations

import logging
import re
from typing import Any, Iterable
from urllib.parse import urlsplit

import orjson

from .models import DiagnosticRecord, NetworkInteraction, TimelinePhase
from .values import dig, to_float, to_int, to_text

# Furthest phase reached wins, regardless of the order phases were recorded in.
LAST_EVENT_PRIORITY = (
    "Completed",
    "Received",
    "TransitTime",
    "Pipelined",
    "ChannelAcquisitionStarted",
    "Created",
)
UNKNOWN_EVENT = "Unknown"
EXCEPTION_TIME_MARKER = "(Time:"

_STORE_STATS_PATHS = (
    ("clientSideRequestStats", "storeResponseStatistics"),
    ("storeResponseStatistics",),
)
_ERROR_CODE_RE = re.compile(r"error code:\s*(\w+(?:\s*\[0x[0-9A-Fa-f]+\])?)", re.IGNORECASE)
_PARTITION_SEGMENT = 6
_REPLICA_SEGMENT = 8

logger = logging.getLogger(__name__)


def phase_name(raw: object) -> str:
    text = to_text(raw)
    if not text:
        return UNKNOWN_EVENT
    return "".join(text.split())


def parse_timeline(timeline: object) -> list[TimelinePhase]:
    events = dig(timeline, "requestTimeline")
    if not isinstance(events, list):
        return []
    phases: list[TimelinePhase] = []
    for event in events:
        if not isinstance(event, dict):
            continue
        phases.append(
            TimelinePhase(
                name=phase_name(event.get("event")),
                start_time=to_text(event.get("startTimeUtc")),
                duration_ms=to_float(event.get("durationInMs"), 0.0),
            )
        )
    return phases


def last_event(phases: list[TimelinePhase]) -> str:
    if not phases:
        return UNKNOWN_EVENT
    present = {phase.name for phase in phases}
    for name in LAST_EVENT_PRIORITY:
        if name in present:
            return name
    return phases[-1].name


def bottleneck_phase(phases: list[TimelinePhase]) -> TimelinePhase | None:
    best: TimelinePhase | None = None
    for phase in phases:
        if best is None or phase.duration_ms > best.duration_ms:
            best = phase
    return best


def exception_message(payload: object) -> str | None:
    if payload is None:
        return None
    if isinstance(payload, str):
        return payload or None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
        return orjson.dumps(payload).decode("utf-8")
    return to_text(payload)


def exception_group_key(message: str) -> str:
    idx = message.find(EXCEPTION_TIME_MARKER)
    if idx == -1:
        return message
    return message[:idx].strip()


def exception_error_code(message: str | None) -> str | None:
    if not message:
        return None
    match = _ERROR_CODE_RE.search(message)
    if match is None:
        return None
    return match.group(1)


def endpoint_host(address: str) -> str:
    try:
        host = urlsplit(address).netloc
    except ValueError:
        return address
    return host or address


def _address_parts(address: str) -> tuple[str | None, str | None, str | None]:
    try:
        parts = urlsplit(address)
    except ValueError:
        return None, None, None
    segments = parts.path.split("/")
    partition_id = segments[_PARTITION_SEGMENT] if len(segments) > _PARTITION_SEGMENT else None
    replica_id = segments[_REPLICA_SEGMENT] if len(segments) > _REPLICA_SEGMENT else None
    return partition_id or None, replica_id or None, parts.netloc or None


def _store_statistics(data: dict[str, Any]) -> list[Any]:
    for path in _STORE_STATS_PATHS:
        stats = dig(data, *path)
        if isinstance(stats, list):
            return stats
    return []


def _interaction(
    stat: dict[str, Any],
    store_result: dict[str, Any],
    address: str,
    source: DiagnosticRecord | None,
) -> NetworkInteraction:
    timeline = store_result.get("transportRequestTimeline")
    phases = parse_timeline(timeline)
    message = exception_message(store_result.get("transportException"))
    partition_id, replica_id, tenant_id = _address_parts(address)
    return NetworkInteraction(
        resource_type=to_text(stat.get("resourceType")),
        operation_type=to_text(stat.get("operationType")),
        status_code=to_text(store_result.get("statusCode")),
        sub_status_code=to_text(store_result.get("subStatusCode")),
        duration_ms=to_float(stat.get("durationInMs"), 0.0),
        store_physical_address=address,
        be_latency_ms=to_float(store_result.get("beLatencyInMs")),
        transport_exception=message,
        transport_exception_key=None if message is None else exception_group_key(message),
        transport_error_code=exception_error_code(message),
        last_event=last_event(phases),
        bottleneck_phase=bottleneck_phase(phases),
        timeline=phases,
        partition_id=partition_id,
        replica_id=replica_id,
        tenant_id=tenant_id,
        inflight_requests=to_int(dig(timeline, "serviceEndpointStats", "inflightRequests")),
        open_connections=to_int(dig(timeline, "serviceEndpointStats", "openConnections")),
        calls_pending_receive=to_int(dig(timeline, "connectionStats", "callsPendingReceive")),
        wait_for_connection_init=to_text(dig(timeline, "connectionStats", "waitforConnectionInit")),
        record_name=None if source is None else source.name,
        line_number=None if source is None else source.line_number,
    )


def extract_interactions(
    spans: Iterable[DiagnosticRecord],
    *,
    source: DiagnosticRecord | None = None,
) -> list[NetworkInteraction]:
    interactions: list[NetworkInteraction] = []
    skipped = 0
    for span in spans:
        for stat in _store_statistics(span.data):
            if not isinstance(stat, dict):
                continue
            store_result = stat.get("storeResult")
            if not isinstance(store_result, dict):
                continue
            address = to_text(store_result.get("storePhysicalAddress"))
            if not address:
                skipped += 1
                continue
            interactions.append(_interaction(stat, store_result, address, source))
    if skipped:
        logger.debug("skipped %d store responses without a physical address", skipped)
    return interactions
