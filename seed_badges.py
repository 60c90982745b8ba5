"""
Seed Achievement Badges
Run this script to create the badges the achievement rules award.
Safe to run repeatedly: badges are matched by slug.

Usage:
    python seed_badges.py
"""
import asyncio

from app.core.logging import configure_logging
from app.database import Database
from app.services.gamification.badge_catalog import BADGE_DEFINITIONS, seed_badges


async def main():
    configure_logging()
    await Database.connect_db()
    try:
        stats = await seed_badges(Database.get_db())
    finally:
        await Database.close_db()

    print("=" * 50)
    print(f"Badges defined: {len(BADGE_DEFINITIONS)}")
    print(f"Created: {stats['created']}  Updated: {stats['updated']}")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
