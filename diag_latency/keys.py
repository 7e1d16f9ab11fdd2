from __future__ import annotations

from typing import Any

# alias -> canonical key; canonical keys never appear on the left-hand side
KEY_ALIASES: dict[str, str] = {
    "duration in milliseconds": "duration",
    "Duration": "duration",
    "start datetime": "startTime",
    "start time": "startTime",
    "StartTime": "startTime",
    "Name": "name",
    "Children": "children",
    "Data": "data",
    "Summary": "summary",
    "DirectCalls": "directCalls",
    "GatewayCalls": "gatewayCalls",
    "Client Side Request Stats": "clientSideRequestStats",
    "ClientSideRequestStats": "clientSideRequestStats",
    "StoreResponseStatistics": "storeResponseStatistics",
    "Store Response Statistics": "storeResponseStatistics",
    "AddressResolutionStatistics": "addressResolutionStatistics",
    "HttpResponseStats": "httpResponseStats",
    "TransportRequestTimeline": "transportRequestTimeline",
    "RequestTimeline": "requestTimeline",
    "Event": "event",
    "StartTimeUtc": "startTimeUtc",
    "DurationInMs": "durationInMs",
    "ResourceType": "resourceType",
    "OperationType": "operationType",
    "StatusCode": "statusCode",
    "SubStatusCode": "subStatusCode",
    "StoreResult": "storeResult",
    "Store Result": "storeResult",
    "StorePhysicalAddress": "storePhysicalAddress",
    "BELatencyInMs": "beLatencyInMs",
    "TransportException": "transportException",
    "Message": "message",
    "ResponseTimeUTC": "responseTimeUtc",
    "LocationEndpoint": "locationEndpoint",
    "RequestSessionToken": "requestSessionToken",
    "ActivityId": "activityId",
    "ServiceEndpointStats": "serviceEndpointStats",
    "InflightRequests": "inflightRequests",
    "OpenConnections": "openConnections",
    "ConnectionStats": "connectionStats",
    "CallsPendingReceive": "callsPendingReceive",
    "WaitforConnectionInit": "waitforConnectionInit",
    "System Info": "systemInfo",
    "SystemInfo": "systemInfo",
    "SystemHistory": "systemHistory",
    "DateUtc": "dateUtc",
    "Cpu": "cpu",
    "Memory": "memory",
    "ThreadInfo": "threadInfo",
    "ThreadWaitIntervalInMs": "threadWaitIntervalInMs",
    "AvailableThreads": "availableThreads",
    "IsThreadStarving": "isThreadStarving",
    "MinThreads": "minThreads",
    "MaxThreads": "maxThreads",
    "NumberOfOpenTcpConnection": "numberOfOpenTcpConnection",
    "Client Configuration": "clientConfiguration",
    "ClientConfiguration": "clientConfiguration",
    "ProcessorCount": "processorCount",
    "NumberOfClientsCreated": "numberOfClientsCreated",
    "NumberOfActiveClients": "numberOfActiveClients",
    "MachineId": "machineId",
    "ConnectionMode": "connectionMode",
    "UserAgent": "userAgent",
    "User Agent": "userAgent",
}


def canonical_key(key: str) -> str:
    return KEY_ALIASES.get(key, key)


def normalize_keys(value: Any) -> Any:
    """Return a copy of ``value`` with every aliased object key canonicalized.

    Traversal uses an explicit work list so nesting depth is bounded by memory,
    not by the interpreter stack. If an object holds both an alias and its
    canonical key, the first one encountered wins.
    """
    if not isinstance(value, (dict, list)):
        return value
    root: list[Any] = [None]
    pending: list[tuple[Any, Any, Any]] = [(value, root, 0)]
    while pending:
        source, parent, slot = pending.pop()
        if isinstance(source, dict):
            target: dict[str, Any] = {}
            parent[slot] = target
            for key, item in source.items():
                name = canonical_key(key) if isinstance(key, str) else key
                if name in target:
                    continue
                target[name] = item
                if isinstance(item, (dict, list)):
                    pending.append((item, target, name))
        elif isinstance(source, list):
            items = list(source)
            parent[slot] = items
            for idx, item in enumerate(items):
                if isinstance(item, (dict, list)):
                    pending.append((item, items, idx))
        else:
            parent[slot] = source
    return root[0]
