"""Settings API routes for media_ingest"""

import os

from flask import Blueprint, Response, jsonify, request

from media_ingest.config import (
    DEFAULT_SETTINGS,
    get_package_name,
    get_package_version,
    get_settings,
)
from media_ingest.services import s3_service
from media_ingest.services.log_service import get_log_service
from media_ingest.services.upload_manager import get_upload_manager

settings_bp = Blueprint("settings", __name__)

# database_path is fixed for the lifetime of the process
EDITABLE_KEYS = set(DEFAULT_SETTINGS) - {"database_path"}
STORAGE_BACKENDS = ("s3", "filesystem")


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings and the application name and version."""
    settings = get_settings()
    return jsonify(
        {**settings.all(), "name": get_package_name(), "version": get_package_version()}
    ), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings.

    Request body:
        JSON object with settings to update; unknown keys are ignored

    Returns:
        JSON response with updated settings
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    if not data:
        return jsonify({"error": "Empty body"}), 400

    filtered_data = {k: v for k, v in data.items() if k in EDITABLE_KEYS}
    if not filtered_data:
        return jsonify({"error": "No valid settings provided"}), 400

    backend = filtered_data.get("storage_backend")
    if backend is not None and backend not in STORAGE_BACKENDS:
        return jsonify({"error": f"Unknown storage backend: {backend}"}), 400
    for key in ("max_video_size_mb", "max_images_per_batch", "review_timeout_seconds"):
        if key in filtered_data:
            value = filtered_data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                return jsonify({"error": f"{key} must be a positive integer"}), 400

    settings = get_settings()
    settings.update(filtered_data)
    get_upload_manager().reset_transport()

    get_log_service().info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200


@settings_bp.route("/validate", methods=["POST"])
def validate_storage() -> tuple[Response, int]:
    """Check that the configured (or provided) storage backend is usable.

    Request body (optional):
        storage_backend, aws_profile, aws_region, s3_bucket, storage_root

    Returns:
        JSON response with validation result
    """
    settings = get_settings()
    data = (request.get_json(silent=True) or {}) if request.is_json else {}
    backend = data.get("storage_backend", settings.storage_backend)
    log = get_log_service()

    if backend == "filesystem":
        root = data.get("storage_root") or str(settings.storage_root)
        try:
            os.makedirs(root, exist_ok=True)
        except OSError as e:
            return jsonify({"success": False, "error": f"Cannot create {root}: {e}"}), 200
        if not os.access(root, os.W_OK):
            return jsonify({"success": False, "error": f"Storage root {root} is not writable"}), 200
        log.info(
            "settings",
            "storage_validated",
            f"Storage root '{root}' is writable",
            {"backend": backend, "storage_root": root},
        )
        return jsonify({"success": True, "message": f"Storage root '{root}' is writable"}), 200

    if backend != "s3":
        return jsonify({"error": f"Unknown storage backend: {backend}"}), 400

    profile = data.get("aws_profile", settings.aws_profile)
    region = data.get("aws_region", settings.aws_region)
    bucket = data.get("s3_bucket", settings.s3_bucket)
    if not bucket:
        return jsonify({"error": "S3 bucket not specified"}), 400

    try:
        client = s3_service.create_s3_client(profile, region)
        result = s3_service.validate_bucket_access(client, bucket)
    except Exception as e:
        log.error(
            "settings",
            "storage_validated",
            f"Connection test error for bucket '{bucket}': {e}",
            {"bucket": bucket, "profile": profile, "region": region, "error": str(e)},
        )
        return jsonify({"success": False, "error": str(e)}), 200

    if result["success"]:
        log.info(
            "settings",
            "storage_validated",
            f"Connection test succeeded for bucket '{bucket}'",
            {"bucket": bucket, "profile": profile, "region": region, "success": True},
        )
        return jsonify(
            {"success": True, "message": f"Successfully connected to bucket '{bucket}'"}
        ), 200

    log.warning(
        "settings",
        "storage_validated",
        f"Connection test failed for bucket '{bucket}': {result['error']}",
        {"bucket": bucket, "profile": profile, "region": region, "error": result["error"]},
    )
    return jsonify({"success": False, "error": result["error"]}), 200
