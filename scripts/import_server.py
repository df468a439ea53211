#!/usr/bin/env python3
"""Import one server bundle into the local library.

Usage:
  python scripts/import_server.py --object-key 6f1c2e8a-... \
      [--archives-path Uploads] [--storage-path Servers] [--create-schema]
"""
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
import sys

import structlog

# Ensure src is on the import path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from Lanforge.config import load_settings  # type: ignore
from Lanforge.db import create_schema, dispose_engine  # type: ignore
from Lanforge.errors import ImporterError  # type: ignore
from Lanforge.importer import build_importer  # type: ignore
from Lanforge.logging import redact_settings, setup_logging  # type: ignore
from Lanforge.metrics import get_counters  # type: ignore


async def _run(args: argparse.Namespace) -> dict:
    settings = load_settings()
    setup_logging(settings)
    structlog.get_logger().info("import_server.settings", settings=redact_settings(settings))

    overrides = {}
    if args.storage_path is not None:
        overrides["servers_storage_path"] = args.storage_path
    if args.archives_path is not None:
        overrides["archives_path"] = args.archives_path
    importer = build_importer(settings.model_copy(update=overrides))
    try:
        if args.create_schema:
            await create_schema()
        server = await importer.import_server(args.object_key)
    finally:
        await dispose_engine()
    return {
        "server_id": str(server.id),
        "name": server.name,
        "working_directory": server.working_directory,
        "game_id": str(server.game_id) if server.game_id else None,
        "consoles": len(server.consoles),
        "http_paths": len(server.http_paths),
        "scripts": len(server.scripts),
        "actions": len(server.actions),
        "metrics": get_counters(),
    }


def main() -> int:
    ap = argparse.ArgumentParser(description="Import a server bundle")
    ap.add_argument("--object-key", required=True, help="Bundle object key under the archives path")
    ap.add_argument("--archives-path", type=Path, default=None)
    ap.add_argument("--storage-path", type=Path, default=None)
    ap.add_argument(
        "--create-schema", action="store_true", help="Create tables first (local SQLite setups)"
    )
    args = ap.parse_args()

    try:
        summary = asyncio.run(_run(args))
    except ImporterError as exc:
        print(f"{type(exc).__name__}: {exc}")
        return 1

    print("=== Import Summary ===")
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
