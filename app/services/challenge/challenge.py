"""
Challenge State Machine

draft -> active -> voting -> completed, with archived reachable from every
non-terminal state. Each transition is one conditional update on the
challenge document whose filter names the states it may start from, so two
concurrent callers can never both perform the same transition: the loser's
update matches nothing and it gets InvalidTransitionError.

Transitions that touch submissions (start of voting) or profiles (results)
are written so that calling them again after an interruption finishes the
work without repeating any of it.
"""
from dataclasses import dataclass, field
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo import DESCENDING, ReturnDocument

from app.config import WINNER_XP_REWARDS
from app.core.clock import Clock
from app.core.errors import (
    InvalidDateRangeError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    TooEarlyError,
    ValidationError,
)
from app.core.events import DomainEvent, EventBus
from app.database import guard_storage
from app.models.challenge.audit import AuditAction
from app.models.challenge.challenge import (
    ChallengeCreate,
    ChallengeInDB,
    ChallengeStatus,
    ChallengeUpdate,
    TERMINAL_STATUSES,
    WinnerEntry,
)
from app.services.challenge.audit import AuditService
from app.services.challenge.voting import VotingService, visibility_filter
from app.services.gamification.profile import ProfileService
from app.utils.ids import parse_object_id

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

PRE_VOTING = [ChallengeStatus.DRAFT.value, ChallengeStatus.ACTIVE.value]
NON_TERMINAL = [ChallengeStatus.DRAFT.value, ChallengeStatus.ACTIVE.value, ChallengeStatus.VOTING.value]


@dataclass
class ChallengeResults:
    """Outcome of end_voting / finalize_results"""
    challenge: Dict[str, Any]
    winners: List[Dict[str, Any]] = field(default_factory=list)


def validate_schedule(start_date, voting_start_date, voting_end_date):
    """Raise InvalidDateRangeError unless start < voting start < voting end"""
    if voting_start_date <= start_date:
        raise InvalidDateRangeError("Voting start date must be after the challenge start date")
    if voting_end_date <= voting_start_date:
        raise InvalidDateRangeError("Voting end date must be after the voting start date")


def _coerce(model: Type[ModelT], data: Union[ModelT, Dict[str, Any]]) -> ModelT:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        errors = {".".join(str(part) for part in err["loc"]): err["msg"] for err in e.errors()}
        raise ValidationError("Invalid challenge data", errors=errors)


class ChallengeService:
    """Service for the challenge lifecycle"""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        bus: EventBus,
        clock: Clock,
        profiles: ProfileService,
        voting: VotingService,
        audit: AuditService,
        winner_rewards: Optional[List[int]] = None
    ):
        self.db = db
        self.bus = bus
        self.clock = clock
        self.profiles = profiles
        self.voting = voting
        self.audit = audit
        self.winner_rewards = list(winner_rewards or WINNER_XP_REWARDS)
        self.challenges = db.challenges
        self.submissions = db.challenge_submissions

    @guard_storage
    async def create_challenge(
        self,
        data: Union[ChallengeCreate, Dict[str, Any]],
        actor_id: Optional[str] = None
    ) -> Dict[str, Any]:
        data = _coerce(ChallengeCreate, data)
        validate_schedule(data.start_date, data.voting_start_date, data.voting_end_date)

        now = self.clock.now()
        challenge_doc = ChallengeInDB(
            **data.model_dump(),
            created_at=now,
            updated_at=now
        )
        result = await self.challenges.insert_one(challenge_doc.model_dump())
        challenge_id = str(result.inserted_id)

        await self.audit.log_action(
            challenge_id=challenge_id,
            action=AuditAction.CHALLENGE_CREATED,
            actor_id=actor_id,
            metadata={"status": challenge_doc.status}
        )
        logger.info("Challenge created", challenge_id=challenge_id, status=challenge_doc.status)
        return await self.challenges.find_one({"_id": result.inserted_id})

    @guard_storage
    async def update_challenge(
        self,
        challenge_id: str,
        data: Union[ChallengeUpdate, Dict[str, Any]],
        actor_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Update title/description/reward/schedule of a non-terminal challenge.

        Submitted dates are merged with the stored ones and the merged
        schedule is validated before anything is written.
        """
        data = _coerce(ChallengeUpdate, data)
        challenge = await self.get_challenge(challenge_id)
        if challenge["status"] in TERMINAL_STATUSES:
            raise InvalidStateError(f"Cannot update a {challenge['status']} challenge")

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return challenge

        dates = ("start_date", "voting_start_date", "voting_end_date")
        schedule = {name: changes.get(name, challenge[name]) for name in dates}
        validate_schedule(**schedule)

        # Filter on the stored schedule too: a concurrent schedule change
        # would otherwise be merged with stale dates
        updated = await self.challenges.find_one_and_update(
            {
                "_id": challenge["_id"],
                "status": {"$in": NON_TERMINAL},
                **{name: challenge[name] for name in dates}
            },
            {"$set": {**changes, "updated_at": self.clock.now()}},
            return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise InvalidStateError("Challenge changed while updating, please retry")

        await self.audit.log_action(
            challenge_id=str(challenge["_id"]),
            action=AuditAction.CHALLENGE_UPDATED,
            actor_id=actor_id,
            changes={key: str(value) for key, value in changes.items()}
        )
        return updated

    @guard_storage
    async def get_challenge(self, challenge_id: str) -> Dict[str, Any]:
        challenge = await self.challenges.find_one({"_id": parse_object_id(challenge_id, "Challenge")})
        if not challenge:
            raise NotFoundError("Challenge not found")
        return challenge

    @guard_storage
    async def list_challenges(
        self,
        status: Optional[ChallengeStatus] = None,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Challenges newest first, with the total matching count.

        Drafts are only listed when asked for explicitly.
        """
        if status:
            query = {"status": ChallengeStatus(status).value}
        else:
            query = {"status": {"$ne": ChallengeStatus.DRAFT.value}}

        skip = (page - 1) * limit
        cursor = self.challenges.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).skip(skip).limit(limit)
        challenges = await cursor.to_list(length=limit)
        total = await self.challenges.count_documents(query)
        return challenges, total

    @guard_storage
    async def publish(self, challenge_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """draft -> active"""
        challenge = await self.get_challenge(challenge_id)
        if challenge["status"] != ChallengeStatus.DRAFT:
            raise InvalidTransitionError(f"Only draft challenges can be published (status: {challenge['status']})")

        updated = await self._transition(
            challenge,
            from_statuses=[ChallengeStatus.DRAFT.value],
            to_status=ChallengeStatus.ACTIVE
        )
        await self.audit.log_action(
            challenge_id=str(challenge["_id"]),
            action=AuditAction.CHALLENGE_PUBLISHED,
            actor_id=actor_id,
            changes={"status": {"from": challenge["status"], "to": updated["status"]}}
        )
        return updated

    @guard_storage
    async def start_voting(self, challenge_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        draft/active -> voting, once voting_start_date has passed.

        Submissions are made public with their votes cleared before the
        status flips, so an interrupted call leaves the challenge in its
        old state and is finished by simply calling this again.
        """
        challenge = await self.get_challenge(challenge_id)
        status = challenge["status"]
        if status not in PRE_VOTING:
            raise InvalidTransitionError(f"Cannot start voting for a {status} challenge")

        now = self.clock.now()
        if now < challenge["voting_start_date"]:
            raise TooEarlyError("Voting cannot start before the voting start date")

        cid = str(challenge["_id"])

        # Submissions already public were reset by an earlier, interrupted call
        reset = await self.submissions.update_many(
            {"challenge_id": cid, "is_public": {"$ne": True}},
            {"$set": {"is_public": True, "vote_count": 0, "voted_by": [], "updated_at": now}}
        )

        updated = await self.challenges.find_one_and_update(
            {"_id": challenge["_id"], "status": {"$in": PRE_VOTING}},
            {"$set": {
                "status": ChallengeStatus.VOTING.value,
                "voting_started_at": now,
                "updated_at": now
            }},
            return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise InvalidTransitionError("Voting was already started for this challenge")

        # Submissions saved while the cascade ran
        stragglers = await self.submissions.update_many(
            {"challenge_id": cid, "is_public": {"$ne": True}},
            {"$set": {"is_public": True, "updated_at": now}}
        )

        submission_count = await self.submissions.count_documents({"challenge_id": cid})
        await self.audit.log_action(
            challenge_id=cid,
            action=AuditAction.VOTING_STARTED,
            actor_id=actor_id,
            changes={"status": {"from": status, "to": ChallengeStatus.VOTING.value}},
            metadata={
                "submissions_opened": reset.modified_count + stragglers.modified_count,
                "trigger": "manual" if actor_id else "scheduler"
            }
        )
        await self.bus.publish(DomainEvent.CHALLENGE_VOTING_STARTED, {
            "challenge_id": cid,
            "submission_count": submission_count
        })
        logger.info("Voting started", challenge_id=cid, submissions=submission_count)
        return updated

    @guard_storage
    async def end_voting(self, challenge_id: str, actor_id: Optional[str] = None) -> ChallengeResults:
        """voting -> completed once voting_end_date has passed, then pick and reward winners"""
        challenge = await self.get_challenge(challenge_id)
        if challenge["status"] != ChallengeStatus.VOTING:
            raise InvalidTransitionError(f"Cannot end voting for a {challenge['status']} challenge")

        now = self.clock.now()
        if now < challenge["voting_end_date"]:
            raise TooEarlyError("Voting cannot end before the voting end date")

        updated = await self.challenges.find_one_and_update(
            {"_id": challenge["_id"], "status": ChallengeStatus.VOTING.value},
            {"$set": {
                "status": ChallengeStatus.COMPLETED.value,
                "completed_at": now,
                "updated_at": now
            }},
            return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise InvalidTransitionError("Voting was already ended for this challenge")

        cid = str(challenge["_id"])
        await self.audit.log_action(
            challenge_id=cid,
            action=AuditAction.VOTING_ENDED,
            actor_id=actor_id,
            changes={"status": {"from": ChallengeStatus.VOTING.value, "to": ChallengeStatus.COMPLETED.value}},
            metadata={"trigger": "manual" if actor_id else "scheduler"}
        )
        return await self.finalize_results(cid)

    @guard_storage
    async def finalize_results(self, challenge_id: str) -> ChallengeResults:
        """
        Pick the podium of a completed challenge and pay its rewards.

        Safe to call any number of times:
        1. winners are computed only while the challenge has none
        2. each reward is keyed by the challenge id in the profile's won_challenges
        3. rewards_distributed is set last, and ChallengeCompleted goes out
           from the call that set it
        """
        challenge = await self.get_challenge(challenge_id)
        if challenge["status"] != ChallengeStatus.COMPLETED:
            raise InvalidStateError("Results can only be finalised for completed challenges")

        cid = str(challenge["_id"])
        if challenge.get("winners") is None:
            top = await self.voting.top_submissions(cid, len(self.winner_rewards))
            winner_ids = [str(submission["_id"]) for submission in top]
            result = await self.challenges.update_one(
                {"_id": challenge["_id"], "winners": None},
                {"$set": {"winners": winner_ids, "updated_at": self.clock.now()}}
            )
            if result.modified_count:
                await self.audit.log_action(
                    challenge_id=cid,
                    action=AuditAction.WINNERS_SELECTED,
                    metadata={"winners": winner_ids}
                )
            # Re-read: a concurrent finaliser may have stored its list first
            challenge = await self.get_challenge(cid)

        winners = []
        for position, submission_id in enumerate(challenge["winners"], start=1):
            submission = await self.submissions.find_one({"_id": parse_object_id(submission_id, "Project")})
            if not submission:
                logger.warning("Winning submission missing", challenge_id=cid, submission_id=submission_id)
                continue

            author_id = submission["author_id"]
            xp_bonus = self.winner_rewards[position - 1]
            await self.profiles.ensure_profile(author_id)
            if await self.profiles.record_challenge_win(author_id, cid, xp_bonus):
                await self.audit.log_action(
                    challenge_id=cid,
                    action=AuditAction.WINNER_REWARDED,
                    entity_type="profile",
                    entity_id=author_id,
                    metadata={"position": position, "xp": xp_bonus, "submission_id": submission_id}
                )

            winners.append(WinnerEntry(
                position=position,
                submission_id=submission_id,
                author_id=author_id,
                vote_count=submission.get("vote_count", 0),
                xp_awarded=xp_bonus
            ).model_dump())

        result = await self.challenges.update_one(
            {"_id": challenge["_id"], "rewards_distributed": {"$ne": True}},
            {"$set": {"rewards_distributed": True, "updated_at": self.clock.now()}}
        )
        if result.modified_count:
            await self.bus.publish(DomainEvent.CHALLENGE_COMPLETED, {
                "challenge_id": cid,
                "winners": winners
            })
            logger.info("Challenge completed", challenge_id=cid, winners=len(winners))

        return ChallengeResults(challenge=await self.get_challenge(cid), winners=winners)

    @guard_storage
    async def archive(self, challenge_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Retire a non-terminal challenge without results"""
        challenge = await self.get_challenge(challenge_id)
        if challenge["status"] in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"Cannot archive a {challenge['status']} challenge")

        updated = await self._transition(
            challenge,
            from_statuses=NON_TERMINAL,
            to_status=ChallengeStatus.ARCHIVED,
            extra={"archived_at": self.clock.now()}
        )

        cid = str(challenge["_id"])
        await self.audit.log_action(
            challenge_id=cid,
            action=AuditAction.CHALLENGE_ARCHIVED,
            actor_id=actor_id,
            changes={"status": {"from": challenge["status"], "to": ChallengeStatus.ARCHIVED.value}}
        )
        await self.bus.publish(DomainEvent.CHALLENGE_ARCHIVED, {
            "challenge_id": cid,
            "previous_status": challenge["status"]
        })
        return updated

    @guard_storage
    async def get_ranking(
        self,
        challenge_id: str,
        limit: Optional[int] = None,
        viewer_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Ranked submissions of a challenge, best first.

        Only public submissions and the viewer's own are listed, so before
        voting starts a user sees nothing but their own project.
        """
        challenge = await self.get_challenge(challenge_id)
        cid = str(challenge["_id"])
        where = visibility_filter(viewer_id)
        if limit is not None:
            return await self.voting.top_submissions(cid, limit, where)
        return [submission async for submission in self.voting.rank(cid, where)]

    async def _transition(
        self,
        challenge: Dict[str, Any],
        from_statuses: List[str],
        to_status: ChallengeStatus,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        updated = await self.challenges.find_one_and_update(
            {"_id": challenge["_id"], "status": {"$in": from_statuses}},
            {"$set": {"status": to_status.value, "updated_at": self.clock.now(), **(extra or {})}},
            return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise InvalidTransitionError(f"Challenge is no longer {challenge['status']}")
        return updated
