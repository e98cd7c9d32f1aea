# fbatrack/api/auth/__init__.py
from flask import Blueprint, request, jsonify, abort
from sqlalchemy import func
from ...models import db, User
from ...security import (
    hash_password, verify_password, make_access_token,
    issue_refresh_token, find_refresh_token, refresh_expired, now_utc,
)
from ...decorators import require_auth

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# ---------- helpers ----------
def normalize_email(email: str) -> str:
    return (email or "").strip()

def client_fingerprint():
    ua = request.headers.get("User-Agent", "")[:300]
    ip = request.headers.get("X-Forwarded-For", request.remote_addr)
    return ua, ip

def _issue_refresh(u: User) -> str:
    return issue_refresh_token(u, *client_fingerprint())

# ---------- register ----------
@auth_bp.post("/register")
def register():
    """Create an account. Every account only ever sees its own data."""
    data = request.get_json() or {}
    email = normalize_email(data.get("email"))
    password = data.get("password")
    name = data.get("name") or email

    if not email or not password:
        abort(400, description="email and password are required")

    # unique case-insensitive
    exists = db.session.scalar(
        db.select(User.id).where(func.lower(User.email) == func.lower(email))
    )
    if exists:
        abort(409, description="email already registered")

    u = User(email=email, pass_hash=hash_password(password), name=name, status="ACTIVE")
    db.session.add(u)
    db.session.commit()

    return jsonify({"id": u.id, "email": u.email}), 201

# ---------- login ----------
@auth_bp.post("/login")
def login():
    data = request.get_json() or {}
    email = normalize_email(data.get("email"))
    password = data.get("password")

    if not email or not password:
        abort(400, description="email and password are required")

    u: User | None = db.session.scalar(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    )
    if not u or u.status != "ACTIVE" or not verify_password(password, u.pass_hash):
        abort(401, description="invalid credentials")

    access = make_access_token(u)
    # opaque, rotating refresh token
    raw_refresh = _issue_refresh(u)
    u.last_login_at = now_utc()
    db.session.commit()

    return jsonify({
        "access_token": access,
        "refresh_token": raw_refresh,
        "user": {"id": u.id, "email": u.email, "name": u.name}
    }), 200

# ---------- refresh (mandatory rotation) ----------
@auth_bp.post("/refresh")
def refresh():
    data = request.get_json() or {}
    raw = data.get("refresh_token")
    if not raw:
        abort(400, description="refresh_token is required")

    rt = find_refresh_token(raw)
    if not rt or rt.revoked_at is not None:
        abort(401, description="invalid refresh token")

    if refresh_expired(rt):
        rt.revoked_at = now_utc()
        db.session.commit()
        abort(401, description="refresh token expired")

    u: User | None = db.session.get(User, rt.user_id)
    if not u or u.status != "ACTIVE":
        abort(401, description="inactive user")

    access = make_access_token(u)

    rt.revoked_at = now_utc()
    raw_new = _issue_refresh(u)
    db.session.commit()

    return jsonify({"access_token": access, "refresh_token": raw_new}), 200

# ---------- logout (revokes refresh) ----------
@auth_bp.post("/logout")
def logout():
    data = request.get_json() or {}
    raw = data.get("refresh_token")
    if not raw:
        abort(400, description="refresh_token is required")
    rt = find_refresh_token(raw)
    if rt and rt.revoked_at is None:
        rt.revoked_at = now_utc()
        db.session.commit()
    return jsonify({"ok": True}), 200

# ---------- whoami ----------
@auth_bp.get("/whoami")
@require_auth
def whoami():
    p = getattr(request, "user", {})
    return jsonify(p), 200
