import functools
from typing import Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, ExecutionTimeout, OperationFailure, WTimeoutError

from app.config import MONGODB_URL, DATABASE_NAME, MONGODB_TIMEOUT_MS
from app.core.errors import StorageUnavailableError

logger = structlog.get_logger()


class Database:
    client: Optional[AsyncIOMotorClient] = None

    @classmethod
    async def connect_db(cls):
        """Connect to MongoDB"""
        cls.client = AsyncIOMotorClient(
            MONGODB_URL,
            serverSelectionTimeoutMS=MONGODB_TIMEOUT_MS,
            connectTimeoutMS=MONGODB_TIMEOUT_MS,
            socketTimeoutMS=MONGODB_TIMEOUT_MS,
        )
        logger.info("Connected to MongoDB", database=DATABASE_NAME)

        # Create indexes
        await create_indexes(cls.get_db())

    @classmethod
    async def close_db(cls):
        """Close MongoDB connection"""
        if cls.client:
            cls.client.close()
            cls.client = None
            logger.info("Disconnected from MongoDB")

    @classmethod
    def get_db(cls) -> Optional[AsyncIOMotorDatabase]:
        """Get database instance"""
        if cls.client is None:
            return None
        return cls.client[DATABASE_NAME]


async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes (unique ones back the idempotency guarantees)"""
    try:
        await db.profiles.create_index([("user_id", ASCENDING)], unique=True)
        logger.info("Created unique index on profiles.user_id")
    except OperationFailure as e:
        logger.warning("Index on profiles.user_id may already exist", error=str(e))

    try:
        await db.badges.create_index([("slug", ASCENDING)], unique=True)
        logger.info("Created unique index on badges.slug")
    except OperationFailure as e:
        logger.warning("Index on badges.slug may already exist", error=str(e))

    # One submission per (author, challenge); submit relies on it
    try:
        await db.challenge_submissions.create_index(
            [("author_id", ASCENDING), ("challenge_id", ASCENDING)],
            unique=True
        )
        logger.info("Created unique index on challenge_submissions.author_id+challenge_id")
    except OperationFailure as e:
        logger.error(
            "Unique index on challenge_submissions.author_id+challenge_id failed, duplicate submissions possible",
            error=str(e)
        )

    try:
        await db.challenge_submissions.create_index([
            ("challenge_id", ASCENDING),
            ("vote_count", DESCENDING),
            ("submitted_at", ASCENDING)
        ])
        await db.challenge_submissions.create_index([("author_id", ASCENDING), ("like_count", DESCENDING)])
        await db.challenge_submissions.create_index([("liked_by", ASCENDING)])
        logger.info("Created indexes on challenge_submissions")
    except OperationFailure as e:
        logger.warning("Indexes on challenge_submissions may already exist", error=str(e))

    try:
        await db.challenges.create_index([("status", ASCENDING), ("voting_start_date", ASCENDING)])
        await db.challenges.create_index([("status", ASCENDING), ("voting_end_date", ASCENDING)])
        logger.info("Created indexes on challenges")
    except OperationFailure as e:
        logger.warning("Indexes on challenges may already exist", error=str(e))

    try:
        await db.challenge_audit_log.create_index([("challenge_id", ASCENDING), ("timestamp", DESCENDING)])
        logger.info("Created index on challenge_audit_log")
    except OperationFailure as e:
        logger.warning("Index on challenge_audit_log may already exist", error=str(e))


def guard_storage(func):
    """Surface driver connectivity failures and timeouts as StorageUnavailableError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (ConnectionFailure, ExecutionTimeout, WTimeoutError) as e:
            logger.error("Storage call failed", operation=func.__qualname__, error=str(e))
            raise StorageUnavailableError() from e
    return wrapper
