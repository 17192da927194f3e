"""
Database initialization script - key-value store collection for TableText

Run once before the first deploy with STORE_BACKEND=mongo:
    python scripts/init_db.py

The app also creates these indexes on startup; this script is for
provisioning and for checking what a live database holds.
"""

import asyncio
import sys
from pathlib import Path
import os
from collections import Counter
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment variables
load_dotenv()

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
import logging

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


# MongoDB connection - load from .env
MONGODB_URL = os.getenv("MONGODB_URL")
MONGODB_DB_NAME = os.getenv("MONGODB_DB_NAME", "tabletext")
MONGODB_COLLECTION = os.getenv("MONGODB_COLLECTION", "kv_store")

if not MONGODB_URL:
    raise ValueError("❌ MONGODB_URL must be set in .env file")


async def create_indexes():
    """Create the store indexes and report what is in the collection"""

    logger.info(f"🔌 Connecting to MongoDB: {MONGODB_DB_NAME}")
    client = AsyncIOMotorClient(MONGODB_URL)
    db = client[MONGODB_DB_NAME]

    try:
        # Test connection
        await client.admin.command('ping')
        logger.info("✅ Connected successfully\n")

        logger.info(f"📋 Preparing '{MONGODB_COLLECTION}' collection...")
        records = db[MONGODB_COLLECTION]

        # 1. One document per (pk, sk)
        await records.create_index(
            [("pk", ASCENDING), ("sk", ASCENDING)],
            unique=True,
            name="pk_sk_unique"
        )
        logger.info("  ✅ pk + sk index created (unique)")

        # 2. Per-record expiry (OTP, challenge, magic links, history, flags)
        await records.create_index(
            [("expires_at", ASCENDING)],
            name="record_expiry_ttl_idx",
            expireAfterSeconds=0
        )
        logger.info("  ✅ TTL index created (expires_at)")

        # ==================== VERIFICATION ====================
        logger.info("\n🔍 Verifying indexes...")
        indexes = await records.index_information()
        for idx_name in indexes.keys():
            if idx_name != "_id_":
                logger.info(f"    ✅ {idx_name}")

        # ==================== STATS ====================
        prefixes = Counter()
        async for doc in records.find({}, {"pk": 1}):
            prefixes[doc["pk"].split("#", 1)[0]] += 1

        logger.info(f"\n📊 Current records: {sum(prefixes.values())}")
        for prefix, count in sorted(prefixes.items()):
            logger.info(f"  {prefix}: {count}")

        logger.info("\n✅ Database initialization complete!")

    except Exception as e:
        logger.error(f"\n❌ Error: {e}")
        raise

    finally:
        client.close()


async def main():
    """Main initialization"""
    logger.info("=" * 60)
    logger.info("  TableText Database Setup")
    logger.info("=" * 60 + "\n")

    await create_indexes()

    logger.info("\n" + "=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
