"""
Profile Service

Owns the per-account gamification document. Every counter change is a
single conditional update on the profile, so retries and concurrent
requests can never double-count:

- first completion of a challenge is keyed by membership in
  `completed_challenges`
- a podium reward is keyed by membership in `won_challenges`
"""
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Any, Dict, Union

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.clock import Clock
from app.core.errors import NotFoundError, UnauthenticatedError, ValidationError
from app.core.events import Event, EventBus
from app.database import guard_storage
from app.models.gamification.profile import ProfileInDB, ProfileUpdate

logger = structlog.get_logger()


class ProfileService:
    """Service for gamification profile operations"""

    def __init__(self, db: AsyncIOMotorDatabase, bus: EventBus, clock: Clock):
        self.db = db
        self.bus = bus
        self.clock = clock
        self.profiles = db.profiles

    @guard_storage
    async def ensure_profile(self, user_id: str) -> Dict:
        """Return the user's profile, creating it on first use (idempotent upsert)"""
        if not user_id:
            raise UnauthenticatedError()

        now = self.clock.now()
        defaults = ProfileInDB(user_id=user_id, created_at=now, updated_at=now).model_dump()
        defaults.pop("user_id")

        try:
            return await self.profiles.find_one_and_update(
                {"user_id": user_id},
                {"$setOnInsert": defaults},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # Lost a concurrent upsert race on the unique user_id index
            return await self.profiles.find_one({"user_id": user_id})

    async def handle_account_created(self, event: Event):
        """AccountCreated handler: every account gets exactly one profile"""
        user_id = str(event.payload["user_id"])
        profile = await self.ensure_profile(user_id)
        logger.info("Profile ready for new account", user_id=user_id, profile_id=str(profile["_id"]))

    @guard_storage
    async def get_profile(self, user_id: str) -> Dict:
        profile = await self.profiles.find_one({"user_id": user_id})
        if not profile:
            raise NotFoundError("Profile not found")
        return profile

    @guard_storage
    async def update_profile(self, user_id: str, data: Union[ProfileUpdate, Dict[str, Any]]) -> Dict:
        """Set bio / github_user on the user's profile (fields left out are unchanged)"""
        if not isinstance(data, ProfileUpdate):
            try:
                data = ProfileUpdate.model_validate(data or {})
            except PydanticValidationError as e:
                errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()}
                raise ValidationError("Invalid profile data", errors=errors)

        await self.ensure_profile(user_id)
        changes = data.model_dump(exclude_unset=True)
        return await self.profiles.find_one_and_update(
            {"user_id": user_id},
            {"$set": {**changes, "updated_at": self.clock.now()}},
            return_document=ReturnDocument.AFTER
        )

    @guard_storage
    async def record_challenge_completion(self, user_id: str, challenge_id: str, xp_reward: int) -> bool:
        """
        Count a first submission to a challenge.

        Returns True only for the call that actually added the challenge to
        `completed_challenges`; repeats match nothing and change nothing.
        """
        result = await self.profiles.update_one(
            {"user_id": user_id, "completed_challenges": {"$ne": challenge_id}},
            {
                "$addToSet": {"completed_challenges": challenge_id},
                "$inc": {"challenges_completed": 1, "total_xp": xp_reward},
                "$set": {"updated_at": self.clock.now()}
            }
        )
        return result.modified_count == 1

    @guard_storage
    async def record_challenge_win(self, user_id: str, challenge_id: str, xp_bonus: int) -> bool:
        """Pay a podium bonus once per (profile, challenge)"""
        result = await self.profiles.update_one(
            {"user_id": user_id, "won_challenges": {"$ne": challenge_id}},
            {
                "$addToSet": {"won_challenges": challenge_id},
                "$inc": {"challenges_won": 1, "total_xp": xp_bonus},
                "$set": {"updated_at": self.clock.now()}
            }
        )
        return result.modified_count == 1
