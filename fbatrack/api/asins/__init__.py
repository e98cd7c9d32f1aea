from flask import Blueprint, request, jsonify, abort
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from ...models import db, Asin
from ...decorators import require_auth, current_user_id, owned_or_404
from ...packing.weights import get_asin_by_code, update_asin, weight_in_grams

asins_bp = Blueprint("asins", __name__, url_prefix="/asins")

TYPES = {"Single", "Bundle"}
CATEGORIES = {"Stock", "Other"}
WEIGHT_UNITS = {"g", "kg"}
TEXT_FIELDS = ["title", "brand", "image_url", "fnsku"]

def _num(n):
    return float(n) if n is not None else None

def serialize_asin(a: Asin) -> dict:
    return {
        "id": a.id,
        "asin": a.asin,
        "title": a.title,
        "brand": a.brand,
        "image_url": a.image_url,
        "type": a.type,
        "pack": a.pack,
        "category": a.category,
        "weight": _num(a.weight),
        "weight_unit": a.weight_unit,
        "weight_grams": weight_in_grams(a),
        "fnsku": a.fnsku,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }

def _paginated(query):
    try:
        page = int(request.args.get("page", 1))
        per_page = int(request.args.get("per_page", 20))
    except ValueError:
        abort(400, description="invalid page/per_page")
    per_page = max(1, min(per_page, 100))
    items = db.session.scalars(query.limit(per_page).offset((page-1)*per_page)).all()
    return items, page, per_page

def _validated(data: dict) -> dict:
    out = {}
    for field, allowed in (("type", TYPES), ("category", CATEGORIES), ("weight_unit", WEIGHT_UNITS)):
        if field in data:
            v = (data.get(field) or "").strip()
            if v not in allowed:
                abort(400, description=f"invalid {field} ({'|'.join(sorted(allowed))})")
            out[field] = v
    if "pack" in data:
        try:
            out["pack"] = int(data["pack"])
        except (TypeError, ValueError):
            abort(400, description="pack must be an integer")
        if out["pack"] < 1:
            abort(400, description="pack must be >= 1")
    if "weight" in data:
        try:
            out["weight"] = float(data["weight"]) if data["weight"] is not None else None
        except (TypeError, ValueError):
            abort(400, description="weight must be a number")
        if out["weight"] is not None and out["weight"] < 0:
            abort(400, description="weight must be >= 0")
    for k in TEXT_FIELDS:
        if k in data:
            out[k] = (data[k] or "").strip() or (None if k == "fnsku" else "")
    return out

@asins_bp.get("")
@require_auth
def list_asins():
    q = db.select(Asin).where(Asin.user_id == current_user_id())
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search.lower()}%"
        q = q.where(or_(func.lower(Asin.asin).like(like), func.lower(Asin.title).like(like)))
    q = q.order_by(Asin.asin)
    items, page, per_page = _paginated(q)
    return jsonify({
        "data": [serialize_asin(a) for a in items],
        "page": page, "per_page": per_page
    })

@asins_bp.post("")
@require_auth
def create_asin():
    data = request.get_json() or {}
    code = (data.get("asin") or "").strip()
    if not code:
        abort(400, description="asin is required")
    uid = current_user_id()
    if get_asin_by_code(uid, code):
        abort(409, description="asin already exists")

    fields = _validated(data)
    try:
        a = Asin(user_id=uid, asin=code, **fields)
        db.session.add(a)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        abort(409, description="integrity error (duplicate or invalid values)")
    return jsonify(serialize_asin(a)), 201

@asins_bp.get("/<code>")
@require_auth
def get_asin(code: str):
    a = get_asin_by_code(current_user_id(), code)
    if not a:
        abort(404)
    return jsonify(serialize_asin(a))

@asins_bp.patch("/<asin_id>")
@require_auth
def edit_asin(asin_id: str):
    a = owned_or_404(Asin, asin_id)
    data = request.get_json() or {}
    update_asin(a, **_validated(data))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        abort(400, description="integrity error (invalid values)")
    return jsonify(serialize_asin(a))
