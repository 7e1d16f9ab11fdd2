"""Diagnostic trace repair and latency drill-down analytics."""

__all__ = [
    "analyzer",
    "cli",
    "config",
    "grouping",
    "ingest",
    "interactions",
    "keys",
    "latency",
    "log",
    "models",
    "repair",
    "system_metrics",
    "tree",
    "values",
]
