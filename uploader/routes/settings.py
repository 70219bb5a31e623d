"""Settings API routes for the multi-file uploader"""

from flask import Blueprint, Response, jsonify, request

from uploader.config import UploaderOptions, get_package_version, get_settings
from uploader.exceptions import ConfigurationError
from uploader.routes.upload import release_staged_files
from uploader.services import s3_service
from uploader.services.log_service import get_log_service
from uploader.services.uploader import reset_uploader

settings_bp = Blueprint("settings", __name__)

ALLOWED_KEYS = {
    "url",
    "method",
    "field_name",
    "transport",
    "concurrency_limit",
    "max_files",
    "auto_start",
    "remove_on_fail",
    "accepted_extensions",
    "accepted_size_range_kib",
    "extra_headers",
    "extra_form_fields",
    "id_prefix",
    "messages",
    "request_timeout",
    "s3_bucket",
    "s3_prefix",
    "aws_profile",
    "aws_region",
    "log_directory",
}


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings.

    Returns:
        JSON response with all settings
    """
    settings = get_settings()
    return jsonify(settings.all()), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings and rebuild the uploader with them.

    Request body:
        JSON object with settings to update

    Returns:
        JSON response with updated settings
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    if not data:
        return jsonify({"error": "Empty body"}), 400

    filtered_data = {k: v for k, v in data.items() if k in ALLOWED_KEYS}

    if not filtered_data:
        return jsonify({"error": "No valid settings provided"}), 400

    settings = get_settings()

    # Reject the change before saving if it would produce invalid options
    candidate = settings.all()
    candidate.update(filtered_data)
    try:
        UploaderOptions.from_mapping(candidate)
    except ConfigurationError as e:
        return jsonify({"error": str(e)}), 400

    settings.update(filtered_data)
    reset_uploader()
    release_staged_files()

    log = get_log_service()
    log.info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200


@settings_bp.route("/profiles", methods=["GET"])
def get_profiles() -> tuple[Response, int]:
    """Get list of available AWS profiles.

    Returns:
        JSON response with list of profile names
    """
    profiles = s3_service.get_available_profiles()
    return jsonify({"profiles": profiles}), 200


@settings_bp.route("/validate", methods=["POST"])
def validate_connection() -> tuple[Response, int]:
    """Validate S3 connection with current or provided settings.

    Request body (optional):
        aws_profile: AWS profile to test
        aws_region: AWS region to test
        s3_bucket: S3 bucket to test

    Returns:
        JSON response with validation result
    """
    settings = get_settings()

    data = (request.get_json(silent=True) or {}) if request.is_json else {}
    profile = data.get("aws_profile", settings.aws_profile)
    region = data.get("aws_region", settings.aws_region)
    bucket = data.get("s3_bucket", settings.s3_bucket)

    if not bucket:
        return jsonify({"error": "S3 bucket not specified"}), 400

    log = get_log_service()
    try:
        client = s3_service.create_s3_client(profile, region)
        result = s3_service.validate_bucket_access(client, bucket)
    except Exception as e:
        log.error(
            "settings",
            "connection_test",
            f"Connection test error for bucket '{bucket}': {e}",
            {"bucket": bucket, "profile": profile, "region": region, "error": str(e)},
        )
        return jsonify({"success": False, "error": str(e)}), 200

    if result["success"]:
        log.info(
            "settings",
            "connection_test",
            f"Connection test succeeded for bucket '{bucket}'",
            {"bucket": bucket, "profile": profile, "region": region, "success": True},
        )
        return jsonify(
            {
                "success": True,
                "message": f"Successfully connected to bucket '{bucket}'",
            }
        ), 200

    log.warning(
        "settings",
        "connection_test",
        f"Connection test failed for bucket '{bucket}': {result['error']}",
        {"bucket": bucket, "profile": profile, "region": region, "error": result["error"]},
    )
    return jsonify({"success": False, "error": result["error"]}), 200


@settings_bp.route("/version", methods=["GET"])
def get_version() -> tuple[Response, int]:
    """Get current application version."""
    return jsonify({"version": get_package_version()}), 200

