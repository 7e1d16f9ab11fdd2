from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, TypeVar

from .interactions import endpoint_host
from .latency import PercentileStats, percentile_stats
from .models import DiagnosticRecord, NetworkInteraction

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 50
TOP_ENDPOINTS = 10
UNKNOWN_KEY = "Unknown"
KEY_SEPARATOR = " → "
BUCKET_LABELS = ("<=P50", "P50-P75", "P75-P90", "P90-P95", "P95-P99", ">P99")


def _entry_dict(entry: Any) -> Any:
    to_dict = getattr(entry, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return entry


def _duration_ms(item: Any) -> float:
    return float(item.duration_ms)


@dataclass(slots=True)
class PercentileBucket:
    label: str
    lower: float | None
    upper: float | None
    count: int = 0
    entries: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "lower_exclusive": self.lower,
            "upper_inclusive": self.upper,
            "count": self.count,
            "entries": [_entry_dict(entry) for entry in self.entries],
        }


@dataclass(slots=True)
class Group:
    key: str
    count: int
    stats: PercentileStats
    entries: list[Any] = field(default_factory=list)
    buckets: list[PercentileBucket] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "count": self.count,
            "stats": self.stats.to_dict(),
            "entries": [_entry_dict(entry) for entry in self.entries],
            "buckets": [bucket.to_dict() for bucket in self.buckets],
        }


@dataclass(slots=True)
class OperationBucket(Group):
    min_network_calls: int = 0
    max_network_calls: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload = Group.to_dict(self)
        payload["min_network_calls"] = self.min_network_calls
        payload["max_network_calls"] = self.max_network_calls
        return payload


@dataclass(slots=True)
class EndpointCount:
    endpoint: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "count": self.count}


@dataclass(slots=True)
class TransportPhaseDetail(Group):
    endpoint_count: int = 0
    top_endpoints: list[EndpointCount] = field(default_factory=list)

    @property
    def phase(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, Any]:
        payload = Group.to_dict(self)
        payload["phase"] = self.key
        payload["endpoint_count"] = self.endpoint_count
        payload["top_endpoints"] = [item.to_dict() for item in self.top_endpoints]
        return payload


@dataclass(slots=True)
class TransportEventGroup(Group):
    phase_details: list[TransportPhaseDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload = Group.to_dict(self)
        payload["phase_details"] = [detail.to_dict() for detail in self.phase_details]
        return payload


def bucket_index(duration: float, stats: PercentileStats) -> int:
    for idx, upper in enumerate(stats.ladder()):
        if duration <= upper:
            return idx
    return len(BUCKET_LABELS) - 1


def _empty_buckets(stats: PercentileStats) -> list[PercentileBucket]:
    ladder = stats.ladder()
    buckets: list[PercentileBucket] = []
    for idx, label in enumerate(BUCKET_LABELS):
        lower = ladder[idx - 1] if idx > 0 else None
        upper = ladder[idx] if idx < len(ladder) else None
        buckets.append(PercentileBucket(label=label, lower=lower, upper=upper))
    return buckets


def summarize_group(
    key: str,
    members: list[T],
    *,
    duration_fn: Callable[[T], float] = _duration_ms,
    max_entries: int = DEFAULT_MAX_ENTRIES,
    group_type: type[Group] = Group,
    **extra: Any,
) -> Group:
    by_duration = sorted(members, key=duration_fn, reverse=True)
    durations = [duration_fn(item) for item in reversed(by_duration)]
    stats = percentile_stats(durations)
    buckets = _empty_buckets(stats)
    for item in by_duration:
        bucket = buckets[bucket_index(duration_fn(item), stats)]
        bucket.count += 1
        if len(bucket.entries) < max_entries:
            bucket.entries.append(item)
    return group_type(
        key=key,
        count=len(members),
        stats=stats,
        entries=by_duration[:max_entries],
        buckets=buckets,
        **extra,
    )


def partition(items: Iterable[T], key_fn: Callable[[T], Hashable]) -> dict[Hashable, list[T]]:
    partitions: dict[Hashable, list[T]] = {}
    for item in items:
        partitions.setdefault(key_fn(item), []).append(item)
    return partitions


def _by_count(groups: list[Any]) -> list[Any]:
    # list.sort is stable, so equal counts keep first-seen key order
    groups.sort(key=lambda group: group.count, reverse=True)
    return groups


def group_by(
    items: Iterable[T],
    key_fn: Callable[[T], str],
    *,
    duration_fn: Callable[[T], float] = _duration_ms,
    max_entries: int = DEFAULT_MAX_ENTRIES,
) -> list[Group]:
    groups = [
        summarize_group(str(key), members, duration_fn=duration_fn, max_entries=max_entries)
        for key, members in partition(items, key_fn).items()
    ]
    return _by_count(groups)


def _or_unknown(value: str | None) -> str:
    if value is None or value == "":
        return UNKNOWN_KEY
    return value


def resource_type_key(item: NetworkInteraction) -> str:
    return _or_unknown(item.resource_type) + KEY_SEPARATOR + _or_unknown(item.operation_type)


def status_code_key(item: NetworkInteraction) -> str:
    return _or_unknown(item.status_code) + KEY_SEPARATOR + _or_unknown(item.sub_status_code)


def transport_exception_key(item: NetworkInteraction) -> str:
    return _or_unknown(item.transport_exception_key)


def operation_buckets(
    records: Iterable[DiagnosticRecord], *, max_entries: int = DEFAULT_MAX_ENTRIES
) -> list[OperationBucket]:
    buckets = []
    for key, members in partition(records, lambda record: record.name or UNKNOWN_KEY).items():
        calls = [record.direct_calls for record in members]
        buckets.append(
            summarize_group(
                str(key),
                members,
                max_entries=max_entries,
                group_type=OperationBucket,
                min_network_calls=min(calls),
                max_network_calls=max(calls),
            )
        )
    return _by_count(buckets)


def resource_type_groups(
    interactions: Iterable[NetworkInteraction], *, max_entries: int = DEFAULT_MAX_ENTRIES
) -> list[Group]:
    return group_by(interactions, resource_type_key, max_entries=max_entries)


def status_code_groups(
    interactions: Iterable[NetworkInteraction], *, max_entries: int = DEFAULT_MAX_ENTRIES
) -> list[Group]:
    return group_by(interactions, status_code_key, max_entries=max_entries)


def transport_exception_groups(
    interactions: Iterable[NetworkInteraction], *, max_entries: int = DEFAULT_MAX_ENTRIES
) -> list[Group]:
    with_exception = [item for item in interactions if item.transport_exception]
    return group_by(with_exception, transport_exception_key, max_entries=max_entries)


def _top_endpoints(members: list[NetworkInteraction]) -> Counter[str]:
    hosts: Counter[str] = Counter()
    for item in members:
        if item.store_physical_address:
            hosts[endpoint_host(item.store_physical_address)] += 1
    return hosts


def _phase_details(
    members: list[NetworkInteraction], *, max_entries: int
) -> list[TransportPhaseDetail]:
    details = []
    for phase, phase_members in partition(members, lambda item: item.bottleneck_name).items():
        hosts = _top_endpoints(phase_members)
        details.append(
            summarize_group(
                str(phase),
                phase_members,
                max_entries=max_entries,
                group_type=TransportPhaseDetail,
                endpoint_count=len(hosts),
                top_endpoints=[
                    EndpointCount(endpoint=host, count=count)
                    for host, count in hosts.most_common(TOP_ENDPOINTS)
                ],
            )
        )
    return _by_count(details)


def transport_event_groups(
    interactions: Iterable[NetworkInteraction], *, max_entries: int = DEFAULT_MAX_ENTRIES
) -> list[TransportEventGroup]:
    groups = []
    for event, members in partition(interactions, lambda item: item.last_event or UNKNOWN_KEY).items():
        groups.append(
            summarize_group(
                str(event),
                members,
                max_entries=max_entries,
                group_type=TransportEventGroup,
                phase_details=_phase_details(members, max_entries=max_entries),
            )
        )
    return _by_count(groups)
