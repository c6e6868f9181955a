"""
Admin context extraction from the platform's bearer token.

The back-office only needs to know that the caller is an authenticated
superadmin and who they are. Tokens are HS256 JWTs signed by the platform's
auth service with ADMIN_JWT_SECRET and verified here with PyJWT.

Claims used:
- sub: admin user id (recorded as the actor on every mutation)
- role: must be "superadmin"
- exp: enforced
"""

import logging
import os
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)

SUPERADMIN_ROLE = "superadmin"
JWT_ALGORITHM = "HS256"

# Security scheme for extracting Bearer token
security = HTTPBearer(auto_error=False)


class AdminContext:
    """Immutable identity of the admin making a request."""

    def __init__(self, user_id: str, role: str, email: Optional[str] = None):
        if not user_id:
            raise ValueError("user_id cannot be empty")
        self.user_id = user_id
        self.role = role
        self.email = email

    @property
    def is_superadmin(self) -> bool:
        return self.role == SUPERADMIN_ROLE

    def __repr__(self) -> str:
        return f"AdminContext(user_id={self.user_id}, role={self.role})"


def _get_secret() -> str:
    secret = os.getenv("ADMIN_JWT_SECRET")
    if not secret:
        logger.error("ADMIN_JWT_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured",
        )
    return secret


def decode_admin_token(token: str, secret: str) -> AdminContext:
    """
    Verify and decode an admin token.

    Raises:
        InvalidTokenError: bad signature, expired, or missing claims
    """
    payload = jwt.decode(
        token,
        secret,
        algorithms=[JWT_ALGORITHM],
        options={"require": ["sub", "exp"], "verify_aud": False},
    )
    if not payload["sub"]:
        raise InvalidTokenError("Empty subject")
    return AdminContext(
        user_id=str(payload["sub"]),
        role=payload.get("role", ""),
        email=payload.get("email"),
    )


def get_admin_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AdminContext:
    """FastAPI dependency: authenticated admin, any role. 401 otherwise."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_admin_token(credentials.credentials, _get_secret())
    except InvalidTokenError as e:
        logger.warning("Admin token rejected", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_superadmin(admin: AdminContext = Depends(get_admin_context)) -> AdminContext:
    """
    FastAPI dependency: caller must be a superadmin.

    SECURITY: Every back-office route depends on this.
    """
    if not admin.is_superadmin:
        logger.warning("Unauthorized admin access attempt", extra={
            "user_id": admin.user_id,
            "role": admin.role,
        })
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superadmin role required",
        )
    return admin
