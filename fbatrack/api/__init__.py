from flask import Blueprint

def create_api_bp():
    api_bp = Blueprint("api", __name__, url_prefix="/api")

    from .auth import auth_bp
    from .asins import asins_bp
    from .shipments import shipments_bp
    from .boxes import boxes_bp
    from .backups import backups_bp

    api_bp.register_blueprint(auth_bp)
    api_bp.register_blueprint(asins_bp)
    api_bp.register_blueprint(shipments_bp)
    api_bp.register_blueprint(boxes_bp)
    api_bp.register_blueprint(backups_bp)

    return api_bp

def register_blueprints(app):
    api_bp = create_api_bp()
    app.register_blueprint(api_bp)
