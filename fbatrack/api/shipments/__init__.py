from flask import Blueprint, Response, request, jsonify, abort
from ...models import db, Shipment
from ...decorators import require_auth, current_user_id, owned_or_404
from ...packing.csv_import import CsvUpload, import_into_shipment, import_pack_group_csvs
from ...packing.engine import AllocationSession
from ...packing.export import export_shipment, validate_shipment_for_export
from ...packing.model import BoxView, ItemView, PackGroupView, ShipmentView, get_shipment, load_shipment_view

shipments_bp = Blueprint("shipments", __name__, url_prefix="/shipments")

# ---------- serializers ----------
def serialize_item(i: ItemView) -> dict:
    return {
        "id": i.id,
        "asin": i.asin,
        "fnsku": i.fnsku,
        "sku": i.sku,
        "title": i.title,
        "prep_type": i.prep_type,
        "order_index": i.order_index,
        "expected_quantity": i.expected_quantity,
        "boxed_quantities": i.boxed_quantities,
        "total_boxed": i.total_boxed,
        "remaining": i.remaining,
        "status": i.status,
        "unit_weight_g": i.unit_weight_g,
        "total_weight": i.total_weight,
        "dirty": i.dirty,
    }

def serialize_box(b: BoxView) -> dict:
    return {
        "id": b.id,
        "name": b.name,
        "position": b.position,
        "weight": b.weight,
        "width": b.width,
        "length": b.length,
        "height": b.height,
        "total_units": b.total_units,
        "content_weight": b.content_weight,
    }

def serialize_pack_group(pg: PackGroupView) -> dict:
    return {
        "id": pg.id,
        "name": pg.name,
        "position": pg.position,
        "total_boxes": pg.total_boxes,
        "total_units": pg.total_units,
        "total_boxed": pg.total_boxed,
        "total_weight": pg.total_weight,
        "boxes": [serialize_box(b) for b in pg.boxes],
        "items": [serialize_item(i) for i in pg.items],
    }

def serialize_shipment(v: ShipmentView) -> dict:
    return {
        "id": v.id,
        "name": v.name,
        "total_asins": v.total_asins,
        "total_units": v.total_units,
        "total_weight": v.total_weight,
        "has_pending_changes": v.has_pending_changes,
        "pack_groups": [serialize_pack_group(pg) for pg in v.pack_groups],
    }

def serialize_shipment_summary(s: Shipment) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "total_asins": s.total_asins,
        "total_units": s.total_units,
        "total_weight": s.total_weight,
        "pack_groups": len(s.pack_groups),
        "created_at": s.created_at.isoformat() if s.created_at else None,
    }

# ---------- helpers ----------
def _uploads() -> list[CsvUpload]:
    files = request.files.getlist("files")
    if not files:
        abort(400, description="at least one CSV file is required (field 'files')")
    return [CsvUpload(filename=f.filename or "", content=f.read(), mimetype=f.mimetype or "") for f in files]

def _view_or_404(shipment_id: str) -> ShipmentView:
    v = load_shipment_view(current_user_id(), shipment_id)
    if v is None:
        abort(404)
    return v

def _session(shipment_id: str) -> AllocationSession:
    if get_shipment(current_user_id(), shipment_id) is None:
        abort(404)
    return AllocationSession(current_user_id(), shipment_id)

def _changes() -> dict:
    data = request.get_json() or {}
    changes = data.get("changes")
    if not isinstance(changes, dict) or not changes:
        abort(400, description="'changes' must be a non-empty {item_id: {box_id: quantity}} object")
    return changes

def _paginated(query):
    try:
        page = int(request.args.get("page", 1))
        per_page = int(request.args.get("per_page", 20))
    except ValueError:
        abort(400, description="invalid page/per_page")
    per_page = max(1, min(per_page, 100))
    items = db.session.scalars(query.limit(per_page).offset((page-1)*per_page)).all()
    return items, page, per_page

# ---------- shipments ----------
@shipments_bp.post("")
@require_auth
def create_shipment():
    name = (request.form.get("name") or "").strip()
    if not name:
        abort(400, description="name is required")
    result = import_pack_group_csvs(current_user_id(), name, _uploads())
    v = load_shipment_view(current_user_id(), result.shipment_id)
    return jsonify({
        "shipment": serialize_shipment(v),
        "import": {
            "pack_groups": len(result.pack_group_ids),
            "boxes": result.boxes_created,
            "items": result.items_created,
            "fnsku_updates": result.fnsku_updates,
        },
    }), 201

@shipments_bp.post("/<shipment_id>/pack-groups")
@require_auth
def add_pack_groups(shipment_id: str):
    uploads = _uploads()
    result = import_into_shipment(current_user_id(), shipment_id, uploads)
    if result is None:
        abort(404)
    return jsonify(serialize_shipment(_view_or_404(shipment_id))), 201

@shipments_bp.get("")
@require_auth
def list_shipments():
    q = (
        db.select(Shipment)
        .where(Shipment.user_id == current_user_id())
        .order_by(Shipment.created_at.desc(), Shipment.id.desc())
    )
    items, page, per_page = _paginated(q)
    return jsonify({
        "data": [serialize_shipment_summary(s) for s in items],
        "page": page, "per_page": per_page
    })

@shipments_bp.get("/<shipment_id>")
@require_auth
def shipment_detail(shipment_id: str):
    return jsonify(serialize_shipment(_view_or_404(shipment_id)))

@shipments_bp.delete("/<shipment_id>")
@require_auth
def delete_shipment(shipment_id: str):
    s = owned_or_404(Shipment, shipment_id)
    db.session.delete(s)
    db.session.commit()
    return jsonify({"ok": True}), 200

# ---------- allocation ----------
@shipments_bp.put("/<shipment_id>/quantities")
@require_auth
def save_quantities(shipment_id: str):
    changes = _changes()
    session = _session(shipment_id)
    session.apply(changes)
    result = session.save()
    return jsonify({
        "items_updated": result.items_updated,
        "shipment": serialize_shipment(session.view(dirty=False)),
    })

@shipments_bp.post("/<shipment_id>/quantities/preview")
@require_auth
def preview_quantities(shipment_id: str):
    changes = _changes()
    session = _session(shipment_id)
    session.apply(changes)
    view = session.view(dirty=True)
    check = validate_shipment_for_export(view)
    session.discard()
    return jsonify({
        "shipment": serialize_shipment(view),
        "validation": {"is_valid": check.is_valid, "errors": check.errors},
    })

# ---------- export ----------
@shipments_bp.get("/<shipment_id>/export/validate")
@require_auth
def validate_export(shipment_id: str):
    check = validate_shipment_for_export(_view_or_404(shipment_id))
    return jsonify({"is_valid": check.is_valid, "errors": check.errors})

@shipments_bp.get("/<shipment_id>/export")
@require_auth
def export_csv(shipment_id: str):
    exported = export_shipment(current_user_id(), shipment_id)
    if exported is None:
        abort(404)
    filename, text = exported
    return Response(
        text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
