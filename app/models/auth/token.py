from pydantic import BaseModel
from typing import Optional


class TokenData(BaseModel):
    """Token payload data (tokens are issued by the account service)"""
    user_id: str
    email: Optional[str] = None
