# fbatrack/extensions.py
from flask_cors import CORS
from flask_migrate import Migrate
from .models import db

migrate = Migrate()

def register_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    # Content-Disposition carries the export and backup file names
    CORS(
        app,
        resources={r"/api/*": {"origins": app.config.get("CORS_ORIGINS", "*")}},
        supports_credentials=False,
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["Content-Disposition"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )
