from __future__ import annotations

import argparse
import os
from dataclasses import fields
from pathlib import Path
import sys
from typing import Any

from .analyzer import AnalysisResult, analyze
from .config import Config, is_field_type, parse_flag
from .log import get_logger

EXIT_INPUT_ERROR = 2


def _str2bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    try:
        return parse_flag(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    for field in fields(Config):
        name = field.name.replace("_", "-")
        if is_field_type(field.type, bool):
            group = parser.add_mutually_exclusive_group()
            group.add_argument(f"--{name}", dest=field.name, action="store_true")
            group.add_argument(f"--no-{name}", dest=field.name, action="store_false")
            parser.set_defaults(**{field.name: None})
        else:
            parser.add_argument(f"--{name}", dest=field.name, default=None)


def _cli_overrides(ns: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for field in fields(Config):
        value = getattr(ns, field.name, None)
        if value is None:
            continue
        if is_field_type(field.type, bool):
            overrides[field.name] = _str2bool(value)
        elif is_field_type(field.type, int):
            overrides[field.name] = int(value)
        elif field.name == "latency_threshold":
            # resolved with a logged fallback instead of an argparse error
            overrides[field.name] = value
        elif is_field_type(field.type, float):
            overrides[field.name] = float(value)
        else:
            overrides[field.name] = value
    return overrides


def _read_input(source: str) -> str:
    if source == "-":
        data = sys.stdin.buffer.read()
    else:
        data = Path(source).read_bytes()
    return data.decode("utf-8-sig", errors="replace")


def format_summary(result: AnalysisResult) -> str:
    lines = [
        f"entries: {result.total_entries} total, {result.parsed_entries} parsed, "
        f"{result.repaired_entries} repaired, {result.failed_entries} failed",
        f"format: {result.input_format}"
        + (" (single entry)" if result.is_single_entry else ""),
        f"threshold: {result.threshold_ms:g} ms"
        + (" (filter skipped)" if result.skip_latency_filter else ""),
        f"high latency entries: {result.high_latency_entries}",
        f"target operation: {result.target_operation or '-'}",
        f"network interactions: {result.total_interactions}",
    ]
    for title, groups in (
        ("operations", result.operation_buckets),
        ("resource types", result.resource_type_groups),
        ("status codes", result.status_code_groups),
        ("last transport events", result.transport_event_groups),
        ("transport exceptions", result.transport_exception_groups),
    ):
        if not groups:
            continue
        lines.append(f"{title}:")
        for group in groups:
            stats = group.stats
            lines.append(
                f"  {group.key}\tcount={group.count}\tp50={stats.p50:g}\t"
                f"p99={stats.p99:g}\tmax={stats.max:g}"
            )
    metrics = result.system_metrics
    if metrics.total_snapshots:
        lines.append(
            f"system snapshots: {metrics.total_snapshots} "
            f"(cpu p50={metrics.cpu.stats.p50:g}, "
            f"memory p50={metrics.memory_mb.stats.p50:.1f} MB)"
        )
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="diag-latency")
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    _add_config_args(common)
    common.add_argument("input", help="diagnostics export file, or - for stdin")

    analyze_cmd = subparsers.add_parser("analyze", parents=[common])
    analyze_cmd.add_argument("--out", default=None)
    analyze_cmd.add_argument("--pretty", action="store_true")

    subparsers.add_parser("summary", parents=[common])

    args = parser.parse_args(argv)
    overrides = _cli_overrides(args)
    config = Config.from_env_and_cli(overrides, os.environ)
    logger = get_logger(level=config.log_level)

    try:
        text = _read_input(args.input)
    except OSError as exc:
        logger.error("cannot read %s: %s", args.input, exc)
        return EXIT_INPUT_ERROR

    result = analyze(text, config)
    if args.command == "analyze":
        payload = result.to_json(pretty=args.pretty)
        if args.out:
            Path(args.out).write_bytes(payload + b"\n")
            print(f"analysis written to {args.out}")
        else:
            sys.stdout.buffer.write(payload + b"\n")
            sys.stdout.flush()
        return 0
    if args.command == "summary":
        print(format_summary(result))
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
