from __future__ import annotations

from dataclasses import dataclass, fields
import logging
import math
from typing import Any

ENV_PREFIX = "DIAG_LATENCY_"
DEFAULT_LATENCY_THRESHOLD_MS = 600.0

# Kept as raw text when they fail to parse; resolved later with a fallback.
_LENIENT_FIELDS = frozenset({"latency_threshold"})

_TRUE_WORDS = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "n", "off"})

logger = logging.getLogger(__name__)


def parse_flag(value: str) -> bool:
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid bool: {value}")


def is_field_type(field_type: Any, expected: type) -> bool:
    """Match a dataclass field type, which is a string under postponed annotations."""
    return field_type is expected or field_type == expected.__name__


def coerce_field(raw: str, field_type: Any) -> Any:
    if is_field_type(field_type, bool):
        return parse_flag(raw)
    if is_field_type(field_type, int):
        return int(raw)
    if is_field_type(field_type, float):
        return float(raw)
    return raw


def resolve_threshold(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_LATENCY_THRESHOLD_MS
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        logger.warning(
            "invalid latency threshold %r, using %s ms", value, DEFAULT_LATENCY_THRESHOLD_MS
        )
        return DEFAULT_LATENCY_THRESHOLD_MS
    if not math.isfinite(threshold) or threshold < 0:
        logger.warning(
            "invalid latency threshold %r, using %s ms", value, DEFAULT_LATENCY_THRESHOLD_MS
        )
        return DEFAULT_LATENCY_THRESHOLD_MS
    return threshold


@dataclass
class Config:
    latency_threshold: float = DEFAULT_LATENCY_THRESHOLD_MS
    skip_latency_filter: bool = False
    single_entry_skips_filter: bool = True
    max_group_entries: int = 50
    max_listed_interactions: int = 100
    max_listed_diagnostics: int = 500
    max_snapshots: int = 500
    parse_workers: int = 1
    log_level: str = "INFO"

    def threshold_ms(self) -> float:
        return resolve_threshold(self.latency_threshold)

    def apply_overrides(self, overrides: dict[str, Any]) -> "Config":
        for field in fields(self):
            value = overrides.get(field.name)
            if value is not None:
                setattr(self, field.name, value)
        return self

    @classmethod
    def from_env_and_cli(cls, cli_overrides: dict[str, Any], env: dict[str, str]) -> "Config":
        cfg = cls().apply_overrides(cli_overrides)
        for field in fields(cfg):
            env_key = ENV_PREFIX + field.name.upper()
            if env_key not in env:
                continue
            raw = env[env_key]
            try:
                value = coerce_field(raw, field.type)
            except ValueError:
                if field.name not in _LENIENT_FIELDS:
                    raise
                value = raw
            setattr(cfg, field.name, value)
        return cfg
