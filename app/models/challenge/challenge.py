from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.config import DEFAULT_XP_REWARD
from app.core.clock import to_naive_utc


class ChallengeStatus(str, Enum):
    """
    Challenge status types - State Machine

    State Transitions:
    - DRAFT -> ACTIVE (operator publishes)
    - DRAFT/ACTIVE -> VOTING (voting_start_date reached)
    - VOTING -> COMPLETED (voting_end_date reached, winners rewarded)
    - DRAFT/ACTIVE/VOTING -> ARCHIVED (operator retires the challenge)

    COMPLETED and ARCHIVED are terminal.
    """
    DRAFT = "draft"  # Being prepared, not accepting the public yet
    ACTIVE = "active"  # Accepting private submissions
    VOTING = "voting"  # Submissions public, votes counted
    COMPLETED = "completed"  # Winners picked and rewarded
    ARCHIVED = "archived"  # Retired without results


TERMINAL_STATUSES = (ChallengeStatus.COMPLETED, ChallengeStatus.ARCHIVED)

# Every submission is public once voting has started
OPENED_STATUSES = (ChallengeStatus.VOTING, ChallengeStatus.COMPLETED)


class ChallengeCreate(BaseModel):
    """Schema for creating a challenge"""
    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = None
    start_date: datetime
    voting_start_date: datetime
    voting_end_date: datetime
    xp_reward: int = Field(DEFAULT_XP_REWARD, ge=0)
    status: ChallengeStatus = ChallengeStatus.DRAFT

    @field_validator("start_date", "voting_start_date", "voting_end_date")
    @classmethod
    def normalise_dates(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @field_validator("status")
    @classmethod
    def initial_status(cls, value: ChallengeStatus) -> ChallengeStatus:
        if value not in (ChallengeStatus.DRAFT, ChallengeStatus.ACTIVE):
            raise ValueError("A challenge starts as draft or active")
        return value


class ChallengeUpdate(BaseModel):
    """Schema for updating a challenge (schedule changes are re-validated against stored dates)"""
    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    voting_start_date: Optional[datetime] = None
    voting_end_date: Optional[datetime] = None
    xp_reward: Optional[int] = Field(None, ge=0)

    @field_validator("start_date", "voting_start_date", "voting_end_date")
    @classmethod
    def normalise_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value else value


class WinnerEntry(BaseModel):
    """One podium place"""
    position: int
    submission_id: str
    author_id: str
    vote_count: int
    xp_awarded: int


class ChallengeInDB(BaseModel):
    """Schema for challenge stored in database"""
    model_config = ConfigDict(use_enum_values=True)

    title: str
    description: Optional[str] = None
    status: ChallengeStatus = ChallengeStatus.DRAFT
    start_date: datetime
    voting_start_date: datetime
    voting_end_date: datetime
    xp_reward: int = DEFAULT_XP_REWARD
    submission_count: int = 0

    # Results (None until computed once)
    winners: Optional[List[str]] = None
    rewards_distributed: bool = False

    # Lifecycle
    voting_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime
