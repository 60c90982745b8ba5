from jose import JWTError, jwt
from typing import Optional

from app.config import SECRET_KEY, ALGORITHM
from app.models.auth.token import TokenData


class SecurityService:
    """Resolves the caller from a JWT access token"""

    def __init__(self, secret_key: str = SECRET_KEY, algorithm: str = ALGORITHM):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify_token(self, token: Optional[str], token_type: str = "access") -> Optional[TokenData]:
        """Verify and decode JWT token"""
        if not token:
            return None
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError:
            return None

        # Verify token type
        if payload.get("type") != token_type:
            return None

        user_id = payload.get("user_id")
        if user_id is None:
            return None

        return TokenData(user_id=str(user_id), email=payload.get("sub"))

    def create_access_token(self, data: dict) -> str:
        """Create JWT access token (used by seed scripts and tests)"""
        to_encode = {**data, "type": "access"}
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)


security_service = SecurityService()
