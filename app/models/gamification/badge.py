from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class AwardOutcome(str, Enum):
    """Result of an award attempt; ALREADY_AWARDED is informational, not a failure"""
    AWARDED = "awarded"
    ALREADY_AWARDED = "already_awarded"


class BadgeCategory(str, Enum):
    MILESTONE = "milestone"
    SOCIAL = "social"


class BadgeRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"


class BadgeInDB(BaseModel):
    """Schema for badge stored in database"""
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    name: str
    description: str
    icon: Optional[str] = None
    requirement: Optional[str] = None
    category: BadgeCategory = BadgeCategory.MILESTONE
    rarity: BadgeRarity = BadgeRarity.COMMON
