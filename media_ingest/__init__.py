"""Flask application factory for the media ingestion service."""

import os

from flask import Flask

from media_ingest.config import get_package_version, get_settings


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    # Room for a full batch: one video at the size ceiling plus the image cap
    app.config["MAX_CONTENT_LENGTH"] = settings.max_video_size_bytes + 256 * 1024 * 1024

    app.config["SETTINGS"] = settings

    from media_ingest.routes.logs import logs_bp
    from media_ingest.routes.rooms import rooms_bp
    from media_ingest.routes.settings import settings_bp
    from media_ingest.routes.upload import upload_bp

    app.register_blueprint(upload_bp, url_prefix="/api/upload")
    app.register_blueprint(rooms_bp, url_prefix="/api/rooms")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")

    from media_ingest.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {"version": get_package_version(), "storage_backend": settings.storage_backend},
    )

    return app
