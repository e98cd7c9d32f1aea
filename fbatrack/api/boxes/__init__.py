from flask import Blueprint, request, jsonify, abort
from sqlalchemy.exc import IntegrityError
from ...models import db, Box, PackGroup, PackGroupItem
from ...decorators import require_auth, owned_or_404
from ...packing.csv_import import next_box_name
from ...packing.engine import refresh_totals

boxes_bp = Blueprint("boxes", __name__)

DIMENSIONS = ["weight", "width", "length", "height"]   # kg, cm, cm, cm

def _num(n):
    return float(n) if n is not None else None

def serialize_box_row(b: Box) -> dict:
    return {
        "id": b.id,
        "pack_group_id": b.pack_group_id,
        "name": b.name,
        "position": b.position,
        "weight": _num(b.weight),
        "width": _num(b.width),
        "length": _num(b.length),
        "height": _num(b.height),
        "total_units": b.total_units,
    }

def _dimensions(data: dict) -> dict:
    out = {}
    for k in DIMENSIONS:
        if k not in data:
            continue
        v = data[k]
        if v is None or v == "":
            out[k] = None
            continue
        try:
            v = float(v)
        except (TypeError, ValueError):
            abort(400, description=f"{k} must be a number")
        if v < 0:
            abort(400, description=f"{k} must be >= 0")
        out[k] = v
    return out

@boxes_bp.post("/pack-groups/<pack_group_id>/boxes")
@require_auth
def add_box(pack_group_id: str):
    pg = owned_or_404(PackGroup, pack_group_id)
    data = request.get_json(silent=True) or {}
    dims = _dimensions(data)

    b = Box(
        user_id=pg.user_id,
        name=(data.get("name") or "").strip() or next_box_name(pg),
        position=max((x.position for x in pg.boxes), default=-1) + 1,
        **dims,
    )
    pg.boxes.append(b)
    try:
        refresh_totals(pg.user_id, [pg])
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        abort(400, description="integrity error (invalid values)")
    return jsonify(serialize_box_row(b)), 201

@boxes_bp.patch("/boxes/<box_id>")
@require_auth
def edit_box(box_id: str):
    b = owned_or_404(Box, box_id)
    data = request.get_json() or {}
    for k, v in _dimensions(data).items():
        setattr(b, k, v)
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            abort(400, description="name cannot be empty")
        b.name = name
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        abort(400, description="integrity error (invalid values)")
    return jsonify(serialize_box_row(b))

@boxes_bp.delete("/boxes/<box_id>")
@require_auth
def delete_box(box_id: str):
    b = owned_or_404(Box, box_id)
    pg = b.pack_group
    items = db.session.scalars(
        db.select(PackGroupItem).where(PackGroupItem.pack_group_id == pg.id)
    ).all()
    for item in items:
        if box_id in (item.boxed_quantities or {}):
            item.boxed_quantities = {k: v for k, v in item.boxed_quantities.items() if k != box_id}
    pg.boxes.remove(b)
    db.session.delete(b)
    refresh_totals(pg.user_id, [pg])
    db.session.commit()
    return jsonify({"ok": True}), 200
