from dataclasses import dataclass
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.config import DEFAULT_XP_REWARD
from app.core.clock import Clock
from app.core.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from app.core.events import DomainEvent, EventBus
from app.database import guard_storage
from app.models.challenge.challenge import ChallengeStatus, OPENED_STATUSES, TERMINAL_STATUSES
from app.models.challenge.submission import SubmissionContent, SubmissionInDB
from app.services.gamification.profile import ProfileService
from app.utils.ids import parse_object_id

logger = structlog.get_logger()


@dataclass
class SubmitResult:
    submission: Dict[str, Any]
    created: bool
    xp_awarded: int


class SubmissionService:
    """Service for challenge submission operations"""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        bus: EventBus,
        clock: Clock,
        profiles: ProfileService
    ):
        self.db = db
        self.bus = bus
        self.clock = clock
        self.profiles = profiles
        self.submissions = db.challenge_submissions
        self.challenges = db.challenges

    @guard_storage
    async def submit(
        self,
        user_id: Optional[str],
        challenge_id: str,
        content: Union[SubmissionContent, Dict[str, Any]],
        existing_submission_id: Optional[str] = None
    ) -> SubmitResult:
        """
        Create or update the caller's project for a challenge.

        A user has at most one submission per challenge. The first successful
        submission counts the challenge as completed on the profile and pays
        the challenge's XP reward; later ones only refresh the content.
        """
        if not user_id:
            raise UnauthenticatedError("You must be authenticated to submit")

        content = self._validate_content(content)

        challenge_oid = parse_object_id(challenge_id, "Challenge")
        challenge = await self.challenges.find_one({"_id": challenge_oid})
        if not challenge:
            raise NotFoundError("Challenge not found")

        challenge_id = str(challenge_oid)
        if challenge["status"] in TERMINAL_STATUSES:
            raise InvalidStateError(f"Challenge is {challenge['status']} and no longer accepts submissions")

        is_public = challenge["status"] == ChallengeStatus.VOTING
        profile = await self.profiles.ensure_profile(user_id)
        now = self.clock.now()

        changes = {
            **content.model_dump(),
            "is_public": is_public,
            "submitted_at": now,
            "updated_at": now
        }

        created = False
        if existing_submission_id:
            submission = await self._update_existing(existing_submission_id, user_id, challenge_id, changes)
        else:
            submission = await self.submissions.find_one_and_update(
                {"author_id": user_id, "challenge_id": challenge_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER
            )
            if not submission:
                submission_doc = SubmissionInDB(
                    author_id=user_id,
                    profile_id=str(profile["_id"]),
                    challenge_id=challenge_id,
                    is_public=is_public,
                    submitted_at=now,
                    created_at=now,
                    updated_at=now,
                    **content.model_dump()
                )
                try:
                    result = await self.submissions.insert_one(submission_doc.model_dump())
                    submission = await self.submissions.find_one({"_id": result.inserted_id})
                    created = True
                except DuplicateKeyError:
                    # A concurrent submit created it first; update that one instead
                    submission = await self.submissions.find_one_and_update(
                        {"author_id": user_id, "challenge_id": challenge_id},
                        {"$set": changes},
                        return_document=ReturnDocument.AFTER
                    )

        if created:
            await self.bus.publish(DomainEvent.SUBMISSION_CREATED, {
                "submission_id": str(submission["_id"]),
                "author_id": user_id,
                "challenge_id": challenge_id
            })

        submission = await self._open_if_voting_started(challenge_oid, submission)

        xp_reward = challenge.get("xp_reward", DEFAULT_XP_REWARD)
        first_completion = await self.profiles.record_challenge_completion(user_id, challenge_id, xp_reward)
        xp_awarded = 0
        if first_completion:
            xp_awarded = xp_reward
            await self.challenges.update_one(
                {"_id": challenge_oid},
                {"$inc": {"submission_count": 1}, "$set": {"updated_at": now}}
            )
            await self.bus.publish(DomainEvent.CHALLENGE_SUBMISSION_MADE, {
                "submission_id": str(submission["_id"]),
                "user_id": user_id,
                "challenge_id": challenge_id,
                "xp_awarded": xp_awarded
            })

        logger.info(
            "Submission saved",
            submission_id=str(submission["_id"]),
            challenge_id=challenge_id,
            user_id=user_id,
            created=created,
            xp_awarded=xp_awarded
        )
        return SubmitResult(submission=submission, created=created, xp_awarded=xp_awarded)

    @guard_storage
    async def get_submission(self, submission_id: str) -> Dict[str, Any]:
        submission = await self.submissions.find_one({"_id": parse_object_id(submission_id, "Project")})
        if not submission:
            raise NotFoundError("Project not found")
        return submission

    @guard_storage
    async def get_visible_submission(self, submission_id: str, viewer_id: Optional[str] = None) -> Dict[str, Any]:
        """A submission as seen by `viewer_id`; private ones exist only for their author"""
        submission = await self.get_submission(submission_id)
        if not submission.get("is_public") and submission["author_id"] != viewer_id:
            raise NotFoundError("Project not found")
        return submission

    @guard_storage
    async def find_user_submissions(self, user_id: Optional[str], challenge_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """The user's submission per challenge id, for the given challenges"""
        if not user_id or not challenge_ids:
            return {}
        cursor = self.submissions.find(
            {"author_id": user_id, "challenge_id": {"$in": challenge_ids}},
            {"name": 1, "challenge_id": 1, "submitted_at": 1, "is_public": 1}
        )
        return {
            submission["challenge_id"]: submission
            async for submission in cursor
        }

    async def _open_if_voting_started(self, challenge_oid, submission: Dict[str, Any]) -> Dict[str, Any]:
        # start_voting may have run its cascade between our status read and the write
        if submission.get("is_public"):
            return submission
        current = await self.challenges.find_one({"_id": challenge_oid}, {"status": 1})
        if not current or current["status"] not in OPENED_STATUSES:
            return submission

        await self.submissions.update_one(
            {"_id": submission["_id"], "is_public": {"$ne": True}},
            {"$set": {"is_public": True, "updated_at": self.clock.now()}}
        )
        logger.info("Submission opened after racing voting start", submission_id=str(submission["_id"]))
        return await self.submissions.find_one({"_id": submission["_id"]})

    async def _update_existing(
        self,
        submission_id: str,
        user_id: str,
        challenge_id: str,
        changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        submission = await self.get_submission(submission_id)
        if submission["author_id"] != user_id:
            raise ForbiddenError("You can only update your own project")
        if submission["challenge_id"] != challenge_id:
            raise ValidationError("Project belongs to a different challenge")

        # Like and vote state is left untouched
        return await self.submissions.find_one_and_update(
            {"_id": submission["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER
        )

    @staticmethod
    def _validate_content(content: Union[SubmissionContent, Dict[str, Any]]) -> SubmissionContent:
        if isinstance(content, SubmissionContent):
            data = content.model_dump(include=set(SubmissionContent.model_fields))
        else:
            data = content or {}
        try:
            validated = SubmissionContent.model_validate(data)
        except PydanticValidationError as e:
            errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()}
            raise ValidationError("Project name and HTML code are required", errors=errors)

        if not validated.name.strip() or not validated.html_code.strip():
            raise ValidationError("Project name and HTML code are required")
        return validated
