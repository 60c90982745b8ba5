"""
Achievement Service

Badges are awarded from domain events, after the write that triggered them
has been committed. Each rule names the event it listens to, the payload
field holding the user to check, and a condition that re-reads current
state. Events can be redelivered or arrive out of order, so a rule never
trusts counts carried in the payload.

Awarding is a single conditional update on the profile (`badges` must not
contain the slug yet), so concurrent evaluations create exactly one link.
"""
from dataclasses import dataclass
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Any, Awaitable, Callable, Dict, List

import structlog

from app.core.clock import Clock
from app.core.errors import BadgeNotConfiguredError, NotFoundError
from app.core.events import DomainEvent, Event, EventBus
from app.database import guard_storage
from app.models.gamification.badge import AwardOutcome

logger = structlog.get_logger()

JUNIOR_STAR_LIKES = 3

BadgeCondition = Callable[[AsyncIOMotorDatabase, str], Awaitable[bool]]


@dataclass(frozen=True)
class BadgeRule:
    badge_slug: str
    event: DomainEvent
    user_field: str
    condition: BadgeCondition


async def has_any_submission(db: AsyncIOMotorDatabase, user_id: str) -> bool:
    return await db.challenge_submissions.find_one({"author_id": user_id}, {"_id": 1}) is not None


async def has_completed_a_challenge(db: AsyncIOMotorDatabase, user_id: str) -> bool:
    profile = await db.profiles.find_one(
        {"user_id": user_id, "challenges_completed": {"$gte": 1}},
        {"_id": 1}
    )
    return profile is not None


async def has_liked_submission(db: AsyncIOMotorDatabase, user_id: str) -> bool:
    submission = await db.challenge_submissions.find_one(
        {"author_id": user_id, "like_count": {"$gte": JUNIOR_STAR_LIKES}},
        {"_id": 1}
    )
    return submission is not None


DEFAULT_RULES = [
    BadgeRule("first-project", DomainEvent.SUBMISSION_CREATED, "author_id", has_any_submission),
    BadgeRule("first-challenge-submit", DomainEvent.CHALLENGE_SUBMISSION_MADE, "user_id", has_completed_a_challenge),
    BadgeRule("junior-star", DomainEvent.LIKE_COUNT_CHANGED, "author_id", has_liked_submission),
]


class AchievementService:
    """Service for badge rules and awards"""

    def __init__(self, db: AsyncIOMotorDatabase, bus: EventBus, clock: Clock):
        self.db = db
        self.bus = bus
        self.clock = clock
        self.profiles = db.profiles
        self.badges = db.badges
        self._rules: Dict[DomainEvent, List[BadgeRule]] = {}
        self._subscribed = False
        for rule in DEFAULT_RULES:
            self.register_rule(rule)

    def register_rule(self, rule: BadgeRule):
        self._rules.setdefault(rule.event, []).append(rule)
        if self._subscribed:
            self.bus.subscribe(rule.event, self.handle_event)

    def rules_for(self, event_name: DomainEvent) -> List[BadgeRule]:
        return list(self._rules.get(event_name, []))

    def subscribe(self):
        """Listen on the bus for every event that has rules"""
        for event_name in self._rules:
            self.bus.subscribe(event_name, self.handle_event)
        self._subscribed = True

    async def handle_event(self, event: Event):
        """
        Bus handler for every event with badge rules.

        Errors propagate so the bus retries the delivery; evaluate_and_award
        is idempotent, so rules that already succeeded are harmless to rerun.
        """
        for rule in self.rules_for(event.name):
            user_id = event.payload.get(rule.user_field)
            if not user_id:
                logger.warning(
                    "Event has no user for badge rule",
                    event_name=event.name.value,
                    badge=rule.badge_slug,
                    field=rule.user_field
                )
                continue

            if await rule.condition(self.db, user_id):
                await self.evaluate_and_award(user_id, rule.badge_slug)

    @guard_storage
    async def evaluate_and_award(self, user_id: str, badge_slug: str) -> AwardOutcome:
        """Link a badge to the user's profile at most once"""
        profile = await self.profiles.find_one({"user_id": user_id}, {"badges": 1})
        if not profile:
            raise NotFoundError("Profile not found")

        if badge_slug in profile.get("badges", []):
            return AwardOutcome.ALREADY_AWARDED

        badge = await self.badges.find_one({"slug": badge_slug})
        if not badge:
            raise BadgeNotConfiguredError(f"Badge '{badge_slug}' is not configured")

        result = await self.profiles.update_one(
            {"_id": profile["_id"], "badges": {"$ne": badge_slug}},
            {"$addToSet": {"badges": badge_slug}, "$set": {"updated_at": self.clock.now()}}
        )
        if result.modified_count == 0:
            # A concurrent evaluation linked it between the read and the write
            return AwardOutcome.ALREADY_AWARDED

        await self.bus.publish(DomainEvent.BADGE_AWARDED, {
            "user_id": user_id,
            "badge_slug": badge_slug,
            "badge_name": badge.get("name")
        })
        logger.info("Badge awarded", user_id=user_id, badge=badge_slug)
        return AwardOutcome.AWARDED

    @guard_storage
    async def reconcile_badges(self) -> Dict[str, Any]:
        """
        Re-run every rule for profiles still missing one of its badges.

        Events queued in memory die with the process; this sweep makes the
        awards they would have made without needing the events.
        """
        results = {
            "processed": 0,
            "checked": 0,
            "awarded": [],
            "errors": []
        }
        rules = [rule for event_rules in self._rules.values() for rule in event_rules]
        if not rules:
            return results

        slugs = sorted({rule.badge_slug for rule in rules})
        cursor = self.profiles.find(
            {"$or": [{"badges": {"$ne": slug}} for slug in slugs]},
            {"user_id": 1, "badges": 1}
        )
        async for profile in cursor:
            user_id = profile["user_id"]
            owned = set(profile.get("badges", []))
            results["checked"] += 1
            for rule in rules:
                if rule.badge_slug in owned or not await rule.condition(self.db, user_id):
                    continue
                try:
                    outcome = await self.evaluate_and_award(user_id, rule.badge_slug)
                except BadgeNotConfiguredError as e:
                    results["errors"].append({"user_id": user_id, "badge": rule.badge_slug, "error": e.message})
                    continue
                owned.add(rule.badge_slug)
                if outcome == AwardOutcome.AWARDED:
                    results["awarded"].append({"user_id": user_id, "badge": rule.badge_slug})
                    results["processed"] += 1

        if results["awarded"]:
            logger.info("Reconciled missing badges", awarded=len(results["awarded"]))
        return results

    @guard_storage
    async def get_badges(self, user_id: str) -> List[Dict]:
        """Badge documents linked to the user's profile"""
        profile = await self.profiles.find_one({"user_id": user_id}, {"badges": 1})
        if not profile:
            raise NotFoundError("Profile not found")
        slugs = profile.get("badges", [])
        if not slugs:
            return []
        return await self.badges.find({"slug": {"$in": slugs}}).to_list(length=len(slugs))
