"""Bearer-token authentication against the store's auth service.

Access tokens are HS256 JWTs signed with the store's JWT secret; ``sub``
carries the user id. Role checks go through ``has_role`` and are applied
to routes as a dependency so that privileged handlers share one gate.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import InvalidTokenError
from sqlalchemy.orm import Session

from meetlines.config import get_settings
from meetlines.database import get_db
from meetlines.errors import AuthenticationError, AuthorizationError
from meetlines.models import User, UserRole, AppRole

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No authorization header provided")
    return authorization.replace("Bearer ", "", 1).strip()


def get_user_from_token(db: Session, token: str) -> User:
    """Resolve a token to its user, raising AuthenticationError on any failure."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.store_jwt_secret,
            algorithms=["HS256"],
            audience=settings.store_jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except InvalidTokenError as e:
        raise AuthenticationError(f"Authentication error: {e}")

    user = db.query(User).filter(User.id == payload["sub"]).first()
    if not user:
        raise AuthenticationError("Authentication error: User not found")
    return user


def has_role(db: Session, user_id: str, role: AppRole) -> bool:
    return (
        db.query(UserRole.id)
        .filter(UserRole.user_id == user_id, UserRole.role == role.value)
        .first()
        is not None
    )


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """Dependency: the authenticated caller."""
    return get_user_from_token(db, bearer_token(authorization))


def require_role(role: AppRole):
    """Dependency factory gating a route on a store role."""

    def _check(
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        if not has_role(db, user.id, role):
            logger.info("User %s denied: %s role required", user.id, role.value)
            raise AuthorizationError(f"Unauthorized: {role.value.capitalize()} role required")
        return user

    return _check


require_admin = require_role(AppRole.ADMIN)


def require_service_role(authorization: Optional[str] = Header(None)) -> None:
    """Dependency for maintenance functions invoked by the platform scheduler.

    Open when no service-role key is configured.
    """
    service_key = get_settings().store_service_role_key
    if not service_key:
        return
    if bearer_token(authorization) != service_key:
        raise AuthorizationError("Unauthorized: service role required")
