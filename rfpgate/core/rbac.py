"""
Actors and role checks.

Every decision and lifecycle call takes an explicit ``Actor``; nothing reads
an ambient "current user". The FastAPI dependencies below are the only place
a bearer token is turned into an Actor.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from rfpgate.core.security import ACCESS_TOKEN_TYPE, decode_token, security, get_role_value
from rfpgate.db.session import get_db
from rfpgate.db.models import User, UserRole, CompanyRole


REVIEWER_ROLES = frozenset({UserRole.ADMIN.value, UserRole.CLIENT_REVIEWER.value})


@dataclass(frozen=True)
class Actor:
    """Identity, platform role and company membership of a caller."""
    user_id: Optional[int] = None
    role: Optional[str] = None
    company_id: Optional[int] = None
    company_role: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "Actor":
        return cls()

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            user_id=user.id,
            role=get_role_value(user.role),
            company_id=user.company_id,
            company_role=get_role_value(user.company_role),
        )

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_reviewer(self) -> bool:
        """Admins and client reviewers may countersign or reject NDAs."""
        return self.role in REVIEWER_ROLES

    @property
    def is_company_admin(self) -> bool:
        return self.company_id is not None and self.company_role == CompanyRole.ADMIN.value

    def cache_identity(self) -> str:
        """Stable identity string used in decision cache keys."""
        if not self.is_authenticated:
            return "anon"
        return f"{self.user_id}:{self.role}:{self.company_id or '-'}:{self.company_role or '-'}"


async def get_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve the caller. No token means an anonymous actor.

    Company membership is read from the users table rather than the token so
    that a user who joins a company picks up its NDAs immediately.
    """
    if credentials is None:
        return Actor.anonymous()

    payload = decode_token(credentials.credentials)
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: not an access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id_raw = payload.get("sub") or payload.get("user_id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )

    try:
        user_id = int(user_id_raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: malformed user identifier",
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    return Actor.from_user(user)


async def require_actor(actor: Actor = Depends(get_actor)) -> Actor:
    """Reject anonymous callers."""
    if not actor.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor
