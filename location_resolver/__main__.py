"""CLI entrypoint for location_resolver."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from location_resolver.logging_config import setup_logging


def main() -> None:
    setup_logging()

    parser = argparse.ArgumentParser(prog="location-resolver")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve_parser = sub.add_parser("resolve")
    resolve_parser.add_argument("locations", nargs="*")
    resolve_parser.add_argument("--file", type=Path, help="one location per line")
    resolve_parser.add_argument("--json", action="store_true", dest="as_json")

    sub.add_parser("serve")
    sub.add_parser("migrate")

    cache_parser = sub.add_parser("cache")
    cache_parser.add_argument("action", choices=["stats", "cleanup", "clear"])

    args = parser.parse_args()

    if args.command == "resolve":
        locations = list(args.locations)
        if args.file is not None:
            locations.extend(args.file.read_text(encoding="utf-8").splitlines())
        sys.exit(asyncio.run(_resolve(locations, args.as_json)))
    elif args.command == "serve":
        _serve()
    elif args.command == "migrate":
        asyncio.run(_migrate())
    elif args.command == "cache":
        asyncio.run(_cache(args.action))


async def _resolve(locations: list[str], as_json: bool) -> int:
    from location_resolver.errors import Cancelled, NothingToResolve
    from location_resolver.pipeline import CancelToken, build_pipeline

    pipeline = build_pipeline()
    token = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        pass  # Windows

    def on_progress(completed: int, total: int) -> None:
        print(f"\r{pipeline.progress.message}", end="", file=sys.stderr, flush=True)
        if completed == total:
            print(file=sys.stderr)

    try:
        results = await pipeline.resolve_all(locations, on_progress, token)
    except NothingToResolve as e:
        print(f"Nothing to resolve: {e}", file=sys.stderr)
        return 2
    except Cancelled:
        print("\nCancelled.", file=sys.stderr)
        return 130
    finally:
        await pipeline.aclose()

    if as_json:
        payload = {
            raw: loc.model_dump(mode="json") if loc is not None else None
            for raw, loc in results.items()
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        for raw, loc in results.items():
            if loc is None:
                print(f"{raw!r:40} -> (no match)")
            else:
                print(f"{raw!r:40} -> {loc.lat:.4f}, {loc.lng:.4f}  {loc.display_name} [{loc.source.value}]")
    return 0


def _serve() -> None:
    import uvicorn

    from location_resolver.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "location_resolver.api:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=(settings.env == "development"),
        log_level=settings.log_level.lower(),
    )


async def _migrate() -> None:
    from location_resolver.db import close_pool, get_pool, run_migrations

    await get_pool()
    await run_migrations()
    await close_pool()
    print("Migrations applied successfully.")


async def _cache(action: str) -> None:
    from location_resolver.cache import ResultCache
    from location_resolver.config import get_settings
    from location_resolver.stores import create_store

    settings = get_settings()
    cache = ResultCache(
        create_store(settings),
        prefix=settings.cache.key_prefix,
        ttl_days=settings.cache.ttl_days,
    )
    try:
        if action == "stats":
            print(f"backend={settings.cache.backend} entries={await cache.size()} "
                  f"ttl_days={settings.cache.ttl_days}")
        elif action == "cleanup":
            print(f"Removed {await cache.cleanup()} expired entries.")
        elif action == "clear":
            print(f"Removed {await cache.clear()} entries.")
    finally:
        await cache.store.aclose()


if __name__ == "__main__":
    main()
