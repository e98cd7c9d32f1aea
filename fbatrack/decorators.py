from functools import wraps
import jwt
from flask import request, abort, make_response
from .models import db
from .security import decode_access_token

def require_auth(fn):
    """Reject the request with 401 unless it carries a valid bearer access token."""
    @wraps(fn)
    def _w(*args, **kwargs):
        # CORS pre-flight carries no token
        if request.method == "OPTIONS":
            return make_response(("", 204))

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme != "Bearer" or not token:
            abort(401)
        try:
            request.user = decode_access_token(token.strip())
        except jwt.PyJWTError:
            abort(401)
        return fn(*args, **kwargs)
    return _w

def current_user_id() -> int:
    """Id of the authenticated user; every query is scoped by it."""
    return int(request.user["sub"])

def owned_or_404(model, obj_id: str):
    """Row of ``model`` belonging to the current user; another user's row is a 404 too."""
    obj = db.session.get(model, obj_id)
    if obj is None or obj.user_id != current_user_id():
        abort(404)
    return obj
