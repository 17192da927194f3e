"""
app/db/indexes.py

Purpose: Database index management

- Unique (pk, sk) index so every record has one durable address
- TTL index on expires_at so the store enforces per-item expiry
"""

from app.db.mongo import get_kv_collection
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes.
    This function is idempotent - safe to run multiple times.
    """
    try:
        records = get_kv_collection()

        logger.info("Creating database indexes...")

        await records.create_index(
            [("pk", 1), ("sk", 1)],
            unique=True,
            name="pk_sk_unique"
        )
        logger.debug("Created unique index on pk + sk")

        # Delete when expires_at is reached; documents without the field never expire
        await records.create_index(
            "expires_at",
            expireAfterSeconds=0,
            name="record_expiry_ttl_idx"
        )
        logger.debug("Created TTL index on expires_at")

        indexes = await records.index_information()
        logger.info(f"✅ Database indexes ready ({len(indexes)} total)")

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    import asyncio
    from app.db.mongo import connect_to_mongo, close_mongo_connection

    async def main():
        await connect_to_mongo()
        await create_indexes()
        await close_mongo_connection()

    asyncio.run(main())
