"""
Admin authentication: salted password hashes and signed session tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from werkzeug.security import check_password_hash, generate_password_hash

from sitestore.config import Settings, get_settings
from sitestore.db import SqlDbClient
from sitestore.errors import AuthenticationError, NotFound, ValidationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def check_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def create_token(user_id: int, username: str, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "id": user_id,
        "username": username,
        "iat": now,
        "exp": now + timedelta(hours=settings.jwt_expires_hours),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])


def require_admin(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Resolve the bearer token into its claims or reject the request."""
    token = None
    if authorization:
        parts = authorization.split(" ", 1)
        token = parts[1].strip() if len(parts) == 2 else None
    if not token:
        raise HTTPException(status_code=401, detail="Token missing")
    try:
        return decode_token(token, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected token: %s", exc)
        raise HTTPException(status_code=403, detail="Invalid token")


MIN_PASSWORD_LENGTH = 6


def authenticate(db: SqlDbClient, username: str, password: str, settings: Settings) -> dict:
    """Check credentials and issue a session token."""
    if not username or not password:
        raise ValidationError("Username and password are required")
    admin = db.get_admin(username)
    if admin is None or not check_password(admin.password_hash, password):
        logger.info("Failed login for %s", username)
        raise AuthenticationError("Invalid username or password")
    logger.info("Admin %s logged in", username)
    return {
        "success": True,
        "token": create_token(admin.id, admin.username, settings),
        "username": admin.username,
        "expiresIn": f"{settings.jwt_expires_hours}h",
    }


def change_password(
    db: SqlDbClient, username: str, current_password: str, new_password: str
) -> None:
    if not current_password or not new_password:
        raise ValidationError("Current and new password are required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"New password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    admin = db.get_admin(username)
    if admin is None:
        raise NotFound(f"Admin {username}")
    if not check_password(admin.password_hash, current_password):
        raise AuthenticationError("Current password is incorrect")
    db.set_password_hash(username, hash_password(new_password))
    logger.info("Password changed for %s", username)
