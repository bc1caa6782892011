"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import sys

import uvicorn

from sleep_detector.config import get_settings
from sleep_detector.logger import setup_logging


async def _export(output: str) -> None:
    from sleep_detector.export import export_snapshot_json
    from sleep_detector.service import SleepDetectionService
    from sleep_detector.storage.database import dispose_engine, init_db
    from sleep_detector.storage.keyvalue import SqlKeyValueStore

    await init_db()
    service = SleepDetectionService(SqlKeyValueStore())
    await service.controller.load(seed=False)
    path = await export_snapshot_json(service.controller, output)
    await dispose_engine()
    print(f"Snapshot written to {path}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="sleep-detector",
        description="Passive sleep / wake detection from phone activity signals.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── export ────────────────────────────────────────────────
    export_parser = sub.add_parser("export", help="Write a JSON snapshot of all stored data.")
    export_parser.add_argument("output", help="Destination file, e.g. exports/sleep.json")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "sleep_detector.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "init-db":
        from sleep_detector.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "export":
        asyncio.run(_export(args.output))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
