"""Command-line entry for filling, draining and inspecting shared buckets."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from typing import Any

from .bucket import Bucket
from .config import ConfigManager, Settings
from .logging import LogManager
from .redis_store import RedisBucketStore
from .store import BucketStore


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    config: dict[str, Any] = {}
    if args.redis_socket:
        config.setdefault("redis", {})["socket_path"] = args.redis_socket
    if args.redis_url:
        config.setdefault("redis", {})["url"] = args.redis_url
    if args.capacity is not None:
        config.setdefault("bucket", {})["capacity"] = args.capacity
    if args.cadence is not None:
        config.setdefault("bucket", {})["cadence"] = args.cadence
    if args.no_fencing:
        config.setdefault("bucket", {})["fencing"] = False
    if args.log_level:
        config["logging_level"] = args.log_level
    return config


async def _fill(bucket: Bucket, args: argparse.Namespace) -> None:
    async with bucket:
        await bucket.refill_loop.join()
    fault = bucket.faults.current()
    if fault is not None:
        raise fault


async def _take(bucket: Bucket, args: argparse.Namespace) -> None:
    for index in range(args.count):
        await bucket.acquire_token(timeout=args.timeout)
        print(json.dumps({"bucket": bucket.name, "token": index + 1}))


async def _inspect(bucket: Bucket, args: argparse.Namespace) -> None:
    stats = await bucket.stats()
    print(json.dumps(asdict(stats), default=str, indent=2))


_COMMANDS = {
    "fill": _fill,
    "take": _take,
    "inspect": _inspect,
}


async def _run_async(args: argparse.Namespace, settings: Settings, store: BucketStore) -> None:
    bucket = Bucket.from_settings(args.name, store, settings)
    await _COMMANDS[args.command](bucket, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Distributed token bucket backed by Redis")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--redis-socket", help="Redis UNIX socket path")
    parser.add_argument("--redis-url", help="Redis URL")
    parser.add_argument("--capacity", type=int, help="Maximum resident tokens")
    parser.add_argument("--cadence", type=float, help="Refill interval in seconds")
    parser.add_argument("--no-fencing", action="store_true", help="Use timestamp-only leases")
    parser.add_argument("--log-level", help="Logging level")

    commands = parser.add_subparsers(dest="command", required=True)

    fill = commands.add_parser("fill", help="Run a filler until interrupted")
    fill.add_argument("name")

    take = commands.add_parser("take", help="Acquire tokens")
    take.add_argument("name")
    take.add_argument("--count", type=int, default=1)
    take.add_argument("--timeout", type=float, help="Seconds to wait for each token")

    inspect = commands.add_parser("inspect", help="Show queue length and lease state")
    inspect.add_argument("name")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = ConfigManager.load(args.config, override=_overrides(args))
    LogManager.setup(settings.logging_level, settings.log_dir)
    log = LogManager.get_logger(args.name, command=args.command)

    store = RedisBucketStore.from_settings(settings.redis)
    try:
        asyncio.run(_run_async(args, settings, store))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI guardrail
        log.error("bucket_command_failed", error=str(exc))
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":  # pragma: no cover - module entry point
    raise SystemExit(main())
