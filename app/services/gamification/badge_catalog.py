"""
Badges awarded by the achievement rules.

The slugs here must match the ones used in DEFAULT_RULES; a rule whose
badge is missing from the database fails with BadgeNotConfiguredError.
"""
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Dict, List

import structlog

from app.models.gamification.badge import BadgeCategory, BadgeInDB, BadgeRarity

logger = structlog.get_logger()

BADGE_DEFINITIONS: List[BadgeInDB] = [
    BadgeInDB(
        slug="first-project",
        name="First Project",
        description="Created your very first project! This is just the beginning of your coding journey.",
        icon="🎯",
        requirement="Create your first project",
        category=BadgeCategory.MILESTONE,
        rarity=BadgeRarity.COMMON,
    ),
    BadgeInDB(
        slug="first-challenge-submit",
        name="First Challenge Submit",
        description="Completed your first challenge submission! You're taking your skills to the next level.",
        icon="🏆",
        requirement="Submit to your first challenge",
        category=BadgeCategory.MILESTONE,
        rarity=BadgeRarity.COMMON,
    ),
    BadgeInDB(
        slug="junior-star",
        name="Junior Star",
        description="One of your projects reached 3 likes from the community! People are noticing your work.",
        icon="⭐",
        requirement="Get 3 likes on any project",
        category=BadgeCategory.SOCIAL,
        rarity=BadgeRarity.RARE,
    ),
]


async def seed_badges(db: AsyncIOMotorDatabase) -> Dict[str, int]:
    """Upsert every badge by slug; running it again only refreshes the texts"""
    stats = {"created": 0, "updated": 0}
    for badge in BADGE_DEFINITIONS:
        result = await db.badges.update_one(
            {"slug": badge.slug},
            {"$set": badge.model_dump(mode="json")},
            upsert=True
        )
        if result.upserted_id is not None:
            stats["created"] += 1
            logger.info("Badge created", slug=badge.slug)
        elif result.modified_count:
            stats["updated"] += 1
            logger.info("Badge updated", slug=badge.slug)
    return stats
