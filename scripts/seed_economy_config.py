"""Write the starting economy config as version 1 (skipped if one exists)"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).parent.parent))

from economy_engine.core.database import AsyncSessionLocal, engine
from economy_engine.domains.economy.config_store import EconomyConfigStore
from economy_engine.domains.economy.defaults import DEFAULT_ECONOMY_CONFIG
from economy_engine.domains.economy.errors import ConfigUnavailable
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


async def seed(document: dict, force: bool = False) -> int:
    store = EconomyConfigStore(AsyncSessionLocal)
    try:
        if not force:
            try:
                row, _ = await store.read()
                logger.info(f"Economy config v{row.version} already present, skipping")
                return row.version
            except ConfigUnavailable:
                pass

        row, _ = await store.write(document, admin_id="seed")
        logger.info(f"✅ Economy config v{row.version} written")
        return row.version
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--file", help="JSON document to write instead of the defaults")
    parser.add_argument("--force", action="store_true", help="write a new version even if one exists")
    args = parser.parse_args()

    document = DEFAULT_ECONOMY_CONFIG
    if args.file:
        document = json.loads(Path(args.file).read_text(encoding="utf-8"))
    asyncio.run(seed(document, force=args.force))


if __name__ == "__main__":
    main()
