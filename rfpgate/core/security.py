"""
Security utilities: JWT access tokens and short-lived signed tokens.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from jose import jwt, JWTError
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
import enum

from rfpgate.core.config import settings

ACCESS_TOKEN_TYPE = "access"

# auto_error=False: anonymous callers are legitimate for public documents.
security = HTTPBearer(auto_error=False)


def get_role_value(role: Union[str, enum.Enum, None]) -> Optional[str]:
    """
    Get the string value of a role, handling both string and Enum types.
    Roles are stored as plain strings; enums are accepted for convenience.
    """
    if role is None or isinstance(role, str):
        return role
    if hasattr(role, 'value'):
        return role.value
    return str(role)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "iat": now, "type": ACCESS_TOKEN_TYPE})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
