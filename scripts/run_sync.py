#!/usr/bin/env python3
"""CLI script to run a Zoho sync pass (for cron or manual use).

Usage:
    python scripts/run_sync.py
    python scripts/run_sync.py --modules crm inventory --direction bidirectional
    python scripts/run_sync.py --modules products --direction from_external --dry-run

Reads DATABASE_URL and ZOHO_* settings from the environment or .env file.
Exits non-zero when any module reports a fatal error or item failures.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path so we can import src.storesync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(direction: str, modules: list[str], batch_size: int, dry_run: bool) -> int:
    """Run one full sync and print the per-module results as JSON."""
    from src.storesync.api.middleware.logging import configure_structlog
    from src.storesync.config import get_settings
    from src.storesync.core.database import close_db
    from src.storesync.services import build_services, create_http_client, seed_credentials
    from src.storesync.zoho.schemas import SyncDirection, SyncModule, SyncOptions

    settings = get_settings()
    configure_structlog()

    async with create_http_client(settings) as http_client:
        services = build_services(settings, http_client)
        await seed_credentials(services.token_manager, settings)
        options = SyncOptions(
            direction=SyncDirection(direction),
            modules={SyncModule(m) for m in modules},
            batch_size=batch_size,
            dry_run=dry_run,
        )
        result = await services.orchestrator.full_sync(options)

    await close_db()

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    print(f"Synced: {result.total_synced}  Failed: {result.total_failed}")

    fatal = any(not r.success for r in result.module_results())
    return 1 if fatal or result.total_failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a Zoho sync pass")
    parser.add_argument(
        "--direction",
        choices=["to_external", "from_external", "bidirectional"],
        default="to_external",
    )
    parser.add_argument(
        "--modules",
        nargs="+",
        choices=["crm", "inventory", "products", "orders", "customers"],
        default=["crm", "inventory"],
    )
    parser.add_argument("--batch-size", type=int, default=50)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args.direction, args.modules, args.batch_size, args.dry_run)))


if __name__ == "__main__":
    main()
