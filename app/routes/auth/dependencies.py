from typing import Annotated, Optional
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from app.core.container import Services
from app.core.errors import StorageUnavailableError, UnauthenticatedError
from app.services.auth.security import security_service

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_services(request: Request) -> Services:
    """Service graph built at start-up"""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise StorageUnavailableError("Database is not connected")
    return services


async def get_optional_user_id(
    token: Annotated[Optional[str], Depends(oauth2_scheme)]
) -> Optional[str]:
    """Caller's user id, or None for anonymous requests"""
    token_data = security_service.verify_token(token, "access")
    if token_data is None:
        return None
    return token_data.user_id


async def get_current_user_id(
    user_id: Annotated[Optional[str], Depends(get_optional_user_id)]
) -> str:
    """Caller's user id; anonymous requests are rejected"""
    if not user_id:
        raise UnauthenticatedError()
    return user_id
