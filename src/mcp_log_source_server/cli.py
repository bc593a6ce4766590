from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from mcp_log_source_server.core.config import EngineConfig
from mcp_log_source_server.core.errors import LogSourceError
from mcp_log_source_server.core.log_service import LogSourceService
from mcp_log_source_server.core.models import Category, ScanMode
from mcp_log_source_server.core.regex_suggest import suggest
from mcp_log_source_server.core.sources import SourceType
from mcp_log_source_server.core.tail import SessionState


def _source(s: str) -> SourceType:
    try:
        return SourceType.parse(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _detect(service: LogSourceService, args: argparse.Namespace) -> None:
    detection = await service.detect_logging_services(refresh=True)
    if args.json:
        _print_json(detection.to_dict())
        return
    print(f"Host root: {detection.host_root} (available={detection.available})")
    print(f"Rotation: {detection.rotation.system.value} {detection.rotation.config_path or ''}".rstrip())
    for entry in detection.rotation.configured_entries:
        print(f"  {entry.path} {entry.rotation_pattern or '-'} keep={entry.keep_days or '-'}")
    for svc in detection.services:
        print(f"Service: {svc.name} {svc.config_path or ''}".rstrip())
        for f in svc.log_files:
            print(f"  {f.path} [{f.log_type}]")
    for path in detection.system_critical:
        print(f"System critical: {path}")
    for path in detection.auto_detected:
        print(f"Auto detected: {path}")


async def _files(service: LogSourceService, args: argparse.Namespace) -> None:
    try:
        result = await service.detected_files(
            args.source,
            mode=ScanMode.FULL if args.full else ScanMode.QUICK,
            base_path=args.base_path,
        )
    finally:
        await service.shutdown()
    if args.json:
        _print_json(result.to_dict())
        return
    total = 0
    for category in Category:
        files = result.classification.bucket(category)
        if not files:
            continue
        print(f"{category.value}:")
        for f in files:
            marker = " (override)" if f.is_override else ""
            print(f"  {f.logical_path} [{f.log_type.value}]{marker}")
        total += len(files)
    suffix = " (truncated)" if result.truncated else ""
    print(f"\nFound {total} logical files under {result.base_path}{suffix}.")


async def _tail(service: LogSourceService, args: argparse.Namespace) -> None:
    session = service.open_stream(
        args.source,
        args.path,
        max_lines=args.lines,
        read_compressed=args.read_compressed,
    )
    try:
        closed = False
        while not closed:
            events = await service.read_stream(session.session_id, 500, wait_seconds=1.0)
            for e in events:
                if e.type == "line":
                    print(e.line, flush=True)
                else:
                    print(f"# {e.state.value if e.state else '-'}: {e.message}", file=sys.stderr)
                    closed = closed or e.state == SessionState.CLOSED
    finally:
        await service.close_stream(session.session_id)


def main() -> None:
    p = argparse.ArgumentParser(description="Log source discovery, classification and tailing.")
    p.add_argument("--log-level", default="WARNING", help="Logging level for diagnostics on stderr")
    sub = p.add_subparsers(dest="command", required=True)

    d = sub.add_parser("detect", help="Detect logging daemons and the rotation policy")
    d.add_argument("--json", action="store_true")

    f = sub.add_parser("files", help="Discover and classify log files of a source")
    f.add_argument("source", type=_source)
    f.add_argument("--base-path", default=None, help="Directory to scan instead of the default")
    f.add_argument("--full", action="store_true", help="Read samples and include compressed archives")
    f.add_argument("--json", action="store_true")

    s = sub.add_parser("suggest", help="Suggest a regex for a sample line")
    s.add_argument("line")

    t = sub.add_parser("tail", help="Follow a logical log file across rotations")
    t.add_argument("source", type=_source)
    t.add_argument("path")
    t.add_argument("-n", "--lines", type=int, default=10, help="Historical lines to show (0 = whole file)")
    t.add_argument("--read-compressed", action="store_true")

    args = p.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "suggest":
            _print_json(suggest(args.line).to_dict())
            return
        service = LogSourceService(EngineConfig.from_env())
        if args.command == "detect":
            asyncio.run(_detect(service, args))
        elif args.command == "files":
            asyncio.run(_files(service, args))
        elif args.command == "tail":
            asyncio.run(_tail(service, args))
    except LogSourceError as e:
        print(f"Error [{e.code}]: {e}", file=sys.stderr)
        raise SystemExit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)
    except KeyboardInterrupt:
        raise SystemExit(130)


if __name__ == "__main__":
    main()
