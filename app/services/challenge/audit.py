from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional, Dict, Any, List

import structlog
from pymongo.errors import PyMongoError

from app.core.clock import Clock
from app.models.challenge.audit import AuditAction, AuditEntry

logger = structlog.get_logger()

SYSTEM_ACTOR = "system"


class AuditService:
    """Service for challenge audit trail logging"""

    def __init__(self, db: AsyncIOMotorDatabase, clock: Clock):
        self.db = db
        self.clock = clock
        self.audit_log = db.challenge_audit_log

    async def log_action(
        self,
        challenge_id: str,
        action: AuditAction,
        actor_id: Optional[str] = None,
        entity_type: str = "challenge",
        entity_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Log an audit trail entry; a failed write never fails the audited operation"""
        entry = AuditEntry(
            challenge_id=challenge_id,
            action=action,
            actor_id=actor_id or SYSTEM_ACTOR,
            entity_type=entity_type,
            entity_id=entity_id or challenge_id,
            changes=changes,
            metadata=metadata,
            timestamp=self.clock.now()
        )
        try:
            await self.audit_log.insert_one(entry.model_dump(mode="python"))
            return True
        except PyMongoError as e:
            logger.error("Error logging audit", challenge_id=challenge_id, action=action.value, error=str(e))
            return False

    async def get_challenge_history(self, challenge_id: str, limit: int = 100) -> List[Dict]:
        """Get audit history for a challenge, newest first"""
        return await self.audit_log.find(
            {"challenge_id": challenge_id}
        ).sort("timestamp", -1).limit(limit).to_list(length=limit)
