from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class SubmissionContent(BaseModel):
    """Project payload submitted to a challenge"""
    name: str = Field(..., min_length=1, max_length=200)
    html_code: str = Field(..., min_length=1)
    css_code: str = ""
    js_code: str = ""


class SubmitRequest(SubmissionContent):
    """Body of the submit endpoint"""
    project_id: Optional[str] = Field(None, description="Existing project to update in place")


class SubmissionInDB(BaseModel):
    """Schema for submission stored in database"""
    author_id: str
    profile_id: Optional[str] = None
    challenge_id: str
    name: str
    html_code: str
    css_code: str = ""
    js_code: str = ""
    is_public: bool = False

    # Counters are kept equal to the size of their sets
    like_count: int = 0
    vote_count: int = 0
    liked_by: List[str] = []
    voted_by: List[str] = []

    submitted_at: datetime
    created_at: datetime
    updated_at: datetime
