from flask import Blueprint, Response, current_app, request, jsonify, abort
from ...decorators import require_auth, current_user_id
from ...storage import get_receipt_store
from ...backup.archive import generate_expense_report_backup
from ...backup.restore import import_expense_backup

backups_bp = Blueprint("backups", __name__, url_prefix="/backups")

@backups_bp.get("/export")
@require_auth
def export_backup():
    archive = generate_expense_report_backup(
        current_user_id(),
        get_receipt_store(),
        workers=current_app.config.get("BACKUP_DOWNLOAD_WORKERS", 4),
    )
    return Response(
        archive.content,
        mimetype="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{archive.filename}"'},
    )

@backups_bp.post("/import")
@require_auth
def import_backup():
    f = request.files.get("file")
    if f is None or not f.filename:
        abort(400, description="a backup .zip is required (field 'file')")
    if not f.filename.lower().endswith(".zip"):
        abort(400, description="invalid file type, only .zip backups are accepted")
    result = import_expense_backup(current_user_id(), f.read(), get_receipt_store())
    return jsonify(result.to_dict()), 200
