from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class AuditAction(str, Enum):
    """Audit action types"""
    # Challenge actions
    CHALLENGE_CREATED = "challenge_created"
    CHALLENGE_UPDATED = "challenge_updated"
    CHALLENGE_PUBLISHED = "challenge_published"
    VOTING_STARTED = "voting_started"
    VOTING_ENDED = "voting_ended"
    CHALLENGE_ARCHIVED = "challenge_archived"

    # Results
    WINNERS_SELECTED = "winners_selected"
    WINNER_REWARDED = "winner_rewarded"


class AuditEntry(BaseModel):
    """Audit trail entry"""
    model_config = ConfigDict(use_enum_values=True)

    challenge_id: str
    action: AuditAction
    actor_id: str
    entity_type: str  # "challenge", "submission", "profile"
    entity_id: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None  # What changed
    metadata: Optional[Dict[str, Any]] = None  # Additional info
    timestamp: datetime
