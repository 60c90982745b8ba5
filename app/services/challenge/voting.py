"""
Voting & Ranking Service

Likes and votes live on the submission document as a membership set plus a
counter. Both always change together in one update whose filter states the
expected membership, so:

- a repeated like/vote matches nothing (no double count)
- a counter is never recomputed from a separately read snapshot
- a vote and the like it implies are written by the same update
"""
from dataclasses import dataclass
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import AsyncIterator, Dict, List, Optional

import structlog
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from app.core.clock import Clock
from app.core.errors import (
    DuplicateVoteError,
    InvalidStateError,
    NotFoundError,
    SelfVoteError,
    UnauthenticatedError,
)
from app.core.events import DomainEvent, EventBus
from app.database import guard_storage
from app.models.challenge.challenge import ChallengeStatus
from app.utils.ids import parse_object_id

logger = structlog.get_logger()

# Attempts when a concurrent like/unlike keeps moving the vote precondition
VOTE_WRITE_ATTEMPTS = 3

RANKING_SORT = [("vote_count", DESCENDING), ("submitted_at", ASCENDING), ("_id", ASCENDING)]


def visibility_filter(viewer_id: Optional[str]) -> Dict:
    """Public submissions plus the viewer's own"""
    if not viewer_id:
        return {"is_public": True}
    return {"$or": [{"is_public": True}, {"author_id": viewer_id}]}


@dataclass
class LikeResult:
    liked: bool
    like_count: int
    changed: bool


@dataclass
class VoteResult:
    vote_count: int
    like_count: int
    like_added: bool


class VotingService:
    """Service for likes, votes and challenge rankings"""

    def __init__(self, db: AsyncIOMotorDatabase, bus: EventBus, clock: Clock):
        self.db = db
        self.bus = bus
        self.clock = clock
        self.submissions = db.challenge_submissions
        self.challenges = db.challenges

    @guard_storage
    async def like(self, submission_id: str, user_id: Optional[str]) -> LikeResult:
        """Add user_id to liked_by; liking twice is a no-op"""
        if not user_id:
            raise UnauthenticatedError("You must be authenticated to like")

        oid = parse_object_id(submission_id, "Project")
        updated = await self.submissions.find_one_and_update(
            {"_id": oid, "liked_by": {"$ne": user_id}},
            {
                "$addToSet": {"liked_by": user_id},
                "$inc": {"like_count": 1},
                "$set": {"updated_at": self.clock.now()}
            },
            return_document=ReturnDocument.AFTER
        )
        if updated:
            await self._publish_like_count(updated)
            return LikeResult(liked=True, like_count=updated["like_count"], changed=True)

        current = await self._get_counters(oid)
        return LikeResult(liked=True, like_count=current["like_count"], changed=False)

    @guard_storage
    async def unlike(self, submission_id: str, user_id: Optional[str]) -> LikeResult:
        """Remove user_id from liked_by; unliking twice is a no-op"""
        if not user_id:
            raise UnauthenticatedError("You must be authenticated to like")

        oid = parse_object_id(submission_id, "Project")
        updated = await self.submissions.find_one_and_update(
            {"_id": oid, "liked_by": user_id},
            {
                "$pull": {"liked_by": user_id},
                "$inc": {"like_count": -1},
                "$set": {"updated_at": self.clock.now()}
            },
            return_document=ReturnDocument.AFTER
        )
        if updated:
            await self._publish_like_count(updated)
            return LikeResult(liked=False, like_count=updated["like_count"], changed=True)

        current = await self._get_counters(oid)
        return LikeResult(liked=False, like_count=current["like_count"], changed=False)

    async def toggle_like(self, submission_id: str, user_id: Optional[str]) -> LikeResult:
        """Like button behaviour: like if not liked yet, otherwise remove the like"""
        result = await self.like(submission_id, user_id)
        if result.changed:
            return result
        return await self.unlike(submission_id, user_id)

    @guard_storage
    async def vote(self, submission_id: str, user_id: Optional[str]) -> VoteResult:
        """
        Cast one vote for a submission during its challenge's voting window.

        A vote also counts as a like. When the voter has not liked the
        submission yet, vote and like are added by the same update; when
        they have, only the vote is added.
        """
        if not user_id:
            raise UnauthenticatedError("You must be authenticated to vote")

        oid = parse_object_id(submission_id, "Project")
        submission = await self.submissions.find_one({"_id": oid}, {"author_id": 1, "challenge_id": 1})
        if not submission:
            raise NotFoundError("Project not found")

        challenge = await self.challenges.find_one(
            {"_id": parse_object_id(submission["challenge_id"], "Challenge")},
            {"status": 1}
        )
        if not challenge or challenge["status"] != ChallengeStatus.VOTING:
            raise InvalidStateError("Voting is not open for this challenge")

        now = self.clock.now()
        eligible = {"_id": oid, "author_id": {"$ne": user_id}, "voted_by": {"$ne": user_id}}

        for _ in range(VOTE_WRITE_ATTEMPTS):
            updated = await self.submissions.find_one_and_update(
                {**eligible, "liked_by": {"$ne": user_id}},
                {
                    "$addToSet": {"voted_by": user_id, "liked_by": user_id},
                    "$inc": {"vote_count": 1, "like_count": 1},
                    "$set": {"updated_at": now}
                },
                return_document=ReturnDocument.AFTER
            )
            if updated:
                await self._publish_vote(updated, user_id, like_added=True)
                return VoteResult(updated["vote_count"], updated["like_count"], like_added=True)

            updated = await self.submissions.find_one_and_update(
                {**eligible, "liked_by": user_id},
                {
                    "$addToSet": {"voted_by": user_id},
                    "$inc": {"vote_count": 1},
                    "$set": {"updated_at": now}
                },
                return_document=ReturnDocument.AFTER
            )
            if updated:
                await self._publish_vote(updated, user_id, like_added=False)
                return VoteResult(updated["vote_count"], updated["like_count"], like_added=False)

            # Neither matched: find out which precondition failed
            current = await self.submissions.find_one({"_id": oid}, {"author_id": 1, "voted_by": 1})
            if not current:
                raise NotFoundError("Project not found")
            if user_id in current.get("voted_by", []):
                raise DuplicateVoteError()
            if current.get("author_id") == user_id:
                raise SelfVoteError()
            # liked_by changed between the two writes; try again

        logger.warning("Vote write kept conflicting", submission_id=submission_id, user_id=user_id)
        raise InvalidStateError("Project changed while voting, please retry")

    async def rank(self, challenge_id: str, where: Optional[Dict] = None) -> AsyncIterator[Dict]:
        """
        Yield the challenge's submissions best first.

        Order: vote_count desc, then earliest submitted_at, then id. Each
        call opens a fresh cursor, so the sequence can be restarted. `where`
        narrows the submissions ranked (see visibility_filter).
        """
        cursor = self.submissions.find({"challenge_id": challenge_id, **(where or {})}).sort(RANKING_SORT)
        async for submission in cursor:
            yield submission

    @guard_storage
    async def count_liked_by(self, user_id: str) -> int:
        """Number of submissions the user currently likes"""
        return await self.submissions.count_documents({"liked_by": user_id})

    @guard_storage
    async def top_submissions(self, challenge_id: str, limit: int, where: Optional[Dict] = None) -> List[Dict]:
        """First `limit` entries of rank()"""
        top = []
        if limit <= 0:
            return top
        async for submission in self.rank(challenge_id, where):
            top.append(submission)
            if len(top) >= limit:
                break
        return top

    async def _get_counters(self, oid) -> Dict:
        current = await self.submissions.find_one({"_id": oid}, {"like_count": 1, "vote_count": 1})
        if not current:
            raise NotFoundError("Project not found")
        return current

    async def _publish_like_count(self, submission: Dict):
        await self.bus.publish(DomainEvent.LIKE_COUNT_CHANGED, {
            "submission_id": str(submission["_id"]),
            "author_id": submission["author_id"],
            "like_count": submission["like_count"]
        })

    async def _publish_vote(self, submission: Dict, voter_id: str, like_added: bool):
        await self.bus.publish(DomainEvent.VOTE_CAST, {
            "submission_id": str(submission["_id"]),
            "challenge_id": submission["challenge_id"],
            "author_id": submission["author_id"],
            "voter_id": voter_id,
            "vote_count": submission["vote_count"]
        })
        if like_added:
            await self._publish_like_count(submission)
