from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class ProfileUpdate(BaseModel):
    """Schema for the fields a user edits on their own profile"""
    bio: Optional[str] = Field(None, max_length=500)
    github_user: Optional[str] = Field(None, max_length=39, pattern=r"^[A-Za-z0-9-]*$")


class ProfileInDB(BaseModel):
    """Schema for profile stored in database"""
    user_id: str
    bio: Optional[str] = None
    github_user: Optional[str] = None
    total_xp: int = 0
    challenges_completed: int = 0
    challenges_won: int = 0

    # Sets (mutated with $addToSet only)
    badges: List[str] = []  # Badge slugs
    completed_challenges: List[str] = []
    won_challenges: List[str] = []

    created_at: datetime
    updated_at: datetime
