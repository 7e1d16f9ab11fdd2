from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class DiagnosticRecord:
    name: str | None
    start_time: str | None
    duration_ms: float
    direct_calls: int = 0
    gateway_calls: int = 0
    data: dict[str, Any] = field(default_factory=dict)
    children: list["DiagnosticRecord"] = field(default_factory=list)
    source_text: str | None = None
    was_repaired: bool = False
    line_number: int | None = None

    @property
    def total_calls(self) -> int:
        return self.direct_calls + self.gateway_calls

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name or "Unknown",
            "start_time": self.start_time or "",
            "duration_ms": float(self.duration_ms),
            "direct_calls": int(self.direct_calls),
            "gateway_calls": int(self.gateway_calls),
            "total_calls": int(self.total_calls),
            "line_number": self.line_number,
            "was_repaired": bool(self.was_repaired),
            "raw_json": self.source_text,
        }


@dataclass(frozen=True, slots=True)
class TimelinePhase:
    name: str
    start_time: str | None
    duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "start_time": self.start_time,
            "duration_ms": float(self.duration_ms),
        }


@dataclass(slots=True)
class NetworkInteraction:
    resource_type: str | None
    operation_type: str | None
    status_code: str | None
    sub_status_code: str | None
    duration_ms: float
    store_physical_address: str
    be_latency_ms: float | None = None
    transport_exception: str | None = None
    transport_exception_key: str | None = None
    transport_error_code: str | None = None
    last_event: str = "Unknown"
    bottleneck_phase: TimelinePhase | None = None
    timeline: list[TimelinePhase] = field(default_factory=list)
    partition_id: str | None = None
    replica_id: str | None = None
    tenant_id: str | None = None
    inflight_requests: int | None = None
    open_connections: int | None = None
    calls_pending_receive: int | None = None
    wait_for_connection_init: str | None = None
    record_name: str | None = None
    line_number: int | None = None

    @property
    def bottleneck_name(self) -> str:
        if self.bottleneck_phase is None:
            return "Unknown"
        return self.bottleneck_phase.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "operation_type": self.operation_type,
            "status_code": self.status_code,
            "sub_status_code": self.sub_status_code,
            "duration_ms": float(self.duration_ms),
            "be_latency_ms": self.be_latency_ms,
            "store_physical_address": self.store_physical_address,
            "transport_exception": self.transport_exception,
            "transport_error_code": self.transport_error_code,
            "last_event": self.last_event,
            "bottleneck_phase": (
                None if self.bottleneck_phase is None else self.bottleneck_phase.to_dict()
            ),
            "timeline": [phase.to_dict() for phase in self.timeline],
            "partition_id": self.partition_id,
            "replica_id": self.replica_id,
            "tenant_id": self.tenant_id,
            "inflight_requests": self.inflight_requests,
            "open_connections": self.open_connections,
            "calls_pending_receive": self.calls_pending_receive,
            "wait_for_connection_init": self.wait_for_connection_init,
            "record_name": self.record_name,
            "line_number": self.line_number,
        }


@dataclass(frozen=True, slots=True)
class SystemMetricSnapshot:
    timestamp: str | None
    cpu: float
    memory_bytes: float
    thread_wait_ms: float
    tcp_connections: int
    available_threads: int = 0
    min_threads: int = 0
    max_threads: int = 0
    is_thread_starving: bool | None = None

    @property
    def memory_mb(self) -> float:
        return self.memory_bytes / (1024 * 1024)

    def dedup_key(self) -> tuple[str | None, float, float]:
        return (self.timestamp, self.cpu, self.memory_bytes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "cpu": self.cpu,
            "memory_bytes": self.memory_bytes,
            "memory_mb": self.memory_mb,
            "thread_wait_ms": self.thread_wait_ms,
            "tcp_connections": self.tcp_connections,
            "available_threads": self.available_threads,
            "min_threads": self.min_threads,
            "max_threads": self.max_threads,
            "is_thread_starving": self.is_thread_starving,
        }


@dataclass(frozen=True, slots=True)
class ClientConfigSnapshot:
    timestamp: str | None
    machine_id: str
    processor_count: int
    clients_created: int
    active_clients: int
    connection_mode: str = ""
    user_agent: str = ""

    @property
    def short_machine_id(self) -> str:
        if len(self.machine_id) > 8:
            return self.machine_id[-8:]
        return self.machine_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "machine_id": self.machine_id,
            "short_machine_id": self.short_machine_id,
            "processor_count": self.processor_count,
            "clients_created": self.clients_created,
            "active_clients": self.active_clients,
            "connection_mode": self.connection_mode,
            "user_agent": self.user_agent,
        }
