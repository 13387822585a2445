from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
import logging
from uuid import UUID

from vault.schemas.auth import TokenData
from vault.core.config import settings
from vault.core.exceptions import ForbiddenError
from vault.utils.utils import parse_uuid

logger = logging.getLogger(__name__)

security = HTTPBearer()


def decode_access_token(token: str) -> TokenData:
    """Decode and verify a bearer token issued by the auth service"""
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise JWTError("Token is missing a subject")
    return TokenData(
        user_id=str(user_id),
        email=payload.get("email"),
        role=payload.get("role", "user"),
    )


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> TokenData:
    """Verify JWT token and return user data"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.info("Rejected bearer token: %s", e)
        raise credentials_exception


async def require_admin(current_user: TokenData = Depends(get_current_user)) -> TokenData:
    """Only allow admin users through"""
    if current_user.role != "admin":
        raise ForbiddenError("Admin access required")
    return current_user


def user_uuid(current_user: TokenData) -> UUID:
    """The token subject as a UUID; rejects tokens issued for non-UUID subjects"""
    user_id = parse_uuid(current_user.user_id)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
