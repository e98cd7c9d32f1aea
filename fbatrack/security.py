"""Passwords and the two token kinds used by the auth API.

Access tokens are short-lived HS256 JWTs carrying the user id. Refresh tokens
are opaque random strings, stored only as SHA-256 digests and rotated on use.
"""
import hashlib
import secrets
import time
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app
from passlib.hash import argon2

from .models import db, RefreshToken, User

ACCESS = "access"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)

# -------- passwords --------
def hash_password(raw: str) -> str:
    return argon2.hash(raw)

def verify_password(raw: str, hashed: str) -> bool:
    try:
        return argon2.verify(raw, hashed)
    except (ValueError, TypeError):
        return False

# -------- access JWT --------
def make_access_token(user: User) -> str:
    cfg = current_app.config
    issued = int(time.time())
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "name": user.name,
        "typ": ACCESS,
        "iat": issued,
        "exp": issued + cfg["ACCESS_TTL_MIN"] * 60,
    }
    return jwt.encode(claims, cfg["JWT_SECRET"], algorithm=cfg["JWT_ALG"])

def decode_access_token(token: str) -> dict:
    cfg = current_app.config
    claims = jwt.decode(token, cfg["JWT_SECRET"], algorithms=[cfg["JWT_ALG"]])
    if claims.get("typ") != ACCESS:
        raise jwt.InvalidTokenError("not an access token")
    return claims

# -------- refresh tokens --------
def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()

def issue_refresh_token(user: User, user_agent: str = "", ip: str | None = None) -> str:
    """Add a new refresh token row to the session (caller commits); returns the raw token."""
    raw = secrets.token_urlsafe(48)
    db.session.add(RefreshToken(user_id=user.id, token_hash=_digest(raw), user_agent=user_agent, ip=ip))
    return raw

def find_refresh_token(raw: str) -> RefreshToken | None:
    return db.session.scalar(db.select(RefreshToken).where(RefreshToken.token_hash == _digest(raw)))

def refresh_expired(token: RefreshToken) -> bool:
    created = token.created_at
    if created.tzinfo is None:
        # sqlite hands back naive timestamps
        created = created.replace(tzinfo=timezone.utc)
    return created + timedelta(days=current_app.config["REFRESH_TTL_D"]) < now_utc()
