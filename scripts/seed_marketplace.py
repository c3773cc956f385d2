#!/usr/bin/env python3
"""
Seed the Marketplace
====================

Creates the document table and registers the platform operator with the
built-in watcher types. Safe to run repeatedly; an already seeded store is
left untouched.

Usage:
    python scripts/seed_marketplace.py [--wallet 0x...]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import settings
from src.container import ServiceContainer
from src.infrastructure.database import close_database, create_tables, get_session_maker, init_database
from src.infrastructure.documents import SQLAlchemyDocumentStore
from src.marketplace.application import seed_marketplace
from src.marketplace.infrastructure import PolicyConfigManager
from src.shared.infrastructure.logging import setup_logging


async def main(wallet: str) -> None:
    setup_logging(settings.log_level, settings.environment)

    init_database()
    await create_tables()

    policy_manager = PolicyConfigManager()
    policy_manager.load(settings.marketplace_config_path)

    container = ServiceContainer(
        SQLAlchemyDocumentStore(get_session_maker()),
        policy_manager=policy_manager,
    )
    try:
        created = await seed_marketplace(container.marketplace, wallet=wallet)
        if created:
            print(f"Seeded {len(created)} watcher types:")
            for watcher_type in created:
                print(f"  {watcher_type.id}  {watcher_type.name}  ${watcher_type.price}")
        else:
            print("Marketplace already seeded, nothing to do.")
    finally:
        await container.close()
        await close_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Sentinel marketplace")
    parser.add_argument(
        "--wallet",
        default=settings.platform_wallet,
        help="Payout wallet of the platform operator"
    )
    args = parser.parse_args()
    asyncio.run(main(args.wallet))
