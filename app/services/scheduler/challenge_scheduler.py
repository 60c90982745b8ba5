"""
Challenge Scheduler Service

Handles automatic challenge state transitions:
- Auto-start voting: ACTIVE -> VOTING when voting_start_date is reached
- Auto-end voting: VOTING -> COMPLETED when voting_end_date is reached
- Retry results: finish completed challenges whose rewards were interrupted

Every sweep goes through ChallengeService, so a challenge moved by an
operator in the meantime is simply reported as an error and skipped.
"""
from typing import Any, Dict

import structlog

from app.core.errors import ArenaError
from app.models.challenge.challenge import ChallengeStatus
from app.services.challenge.challenge import ChallengeService

logger = structlog.get_logger()

# Challenges handled per sweep
SWEEP_BATCH_SIZE = 100


class ChallengeScheduler:
    """
    Background job handler for challenge lifecycle management.

    Jobs:
    1. auto_start_voting
    2. auto_end_voting
    3. retry_pending_results
    """

    def __init__(self, challenge_service: ChallengeService):
        self.challenge_service = challenge_service
        self.clock = challenge_service.clock
        self.challenges = challenge_service.challenges

    async def auto_start_voting(self) -> Dict[str, Any]:
        """
        Open voting for active challenges whose voting_start_date has passed.

        Draft challenges are left alone: an operator has to publish them first.
        """
        now = self.clock.now()
        results = {
            "processed": 0,
            "started": [],
            "errors": []
        }

        challenges = await self.challenges.find({
            "status": ChallengeStatus.ACTIVE.value,
            "voting_start_date": {"$lte": now}
        }).to_list(length=SWEEP_BATCH_SIZE)

        for challenge in challenges:
            challenge_id = str(challenge["_id"])
            try:
                await self.challenge_service.start_voting(challenge_id)
                results["started"].append({
                    "challenge_id": challenge_id,
                    "title": challenge.get("title", "Unknown")
                })
                results["processed"] += 1
                logger.info("Auto-started voting", challenge_id=challenge_id, title=challenge.get("title"))
            except ArenaError as e:
                results["errors"].append({"challenge_id": challenge_id, "error": e.message})
                logger.error("Failed to auto-start voting", challenge_id=challenge_id, error=e.message)

        return results

    async def auto_end_voting(self) -> Dict[str, Any]:
        """Close voting for challenges whose voting_end_date has passed and reward winners"""
        now = self.clock.now()
        results = {
            "processed": 0,
            "completed": [],
            "errors": []
        }

        challenges = await self.challenges.find({
            "status": ChallengeStatus.VOTING.value,
            "voting_end_date": {"$lte": now}
        }).to_list(length=SWEEP_BATCH_SIZE)

        for challenge in challenges:
            challenge_id = str(challenge["_id"])
            try:
                outcome = await self.challenge_service.end_voting(challenge_id)
                results["completed"].append({
                    "challenge_id": challenge_id,
                    "title": challenge.get("title", "Unknown"),
                    "winners": [winner["submission_id"] for winner in outcome.winners]
                })
                results["processed"] += 1
                logger.info("Auto-ended voting", challenge_id=challenge_id, winners=len(outcome.winners))
            except ArenaError as e:
                results["errors"].append({"challenge_id": challenge_id, "error": e.message})
                logger.error("Failed to auto-end voting", challenge_id=challenge_id, error=e.message)

        return results

    async def retry_pending_results(self) -> Dict[str, Any]:
        """
        Resume completed challenges whose winners were not fully rewarded.

        This happens when end_voting was interrupted after the status flip.
        """
        results = {
            "processed": 0,
            "finalized": [],
            "errors": []
        }

        challenges = await self.challenges.find({
            "status": ChallengeStatus.COMPLETED.value,
            "rewards_distributed": {"$ne": True}
        }).to_list(length=SWEEP_BATCH_SIZE)

        for challenge in challenges:
            challenge_id = str(challenge["_id"])
            try:
                outcome = await self.challenge_service.finalize_results(challenge_id)
                results["finalized"].append({
                    "challenge_id": challenge_id,
                    "winners": [winner["submission_id"] for winner in outcome.winners]
                })
                results["processed"] += 1
                logger.info("Finalized pending results", challenge_id=challenge_id)
            except ArenaError as e:
                results["errors"].append({"challenge_id": challenge_id, "error": e.message})
                logger.error("Failed to finalize results", challenge_id=challenge_id, error=e.message)

        return results

    async def run_all_jobs(self) -> Dict[str, Any]:
        """Run every sweep once (manual trigger and tests)"""
        return {
            "auto_start_voting": await self.auto_start_voting(),
            "auto_end_voting": await self.auto_end_voting(),
            "retry_pending_results": await self.retry_pending_results()
        }
