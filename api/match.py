"""
Face Match API - verify a selfie against reference images.

POST /api/match
    multipart: image=<file>, candidates=<ref> (repeatable), tolerance=<float>
    json:      {"probe": "<url|storage path|data url>", "candidates": [...], "tolerance": 0.6}

Without candidates the authenticated user's stored reference images are used.
Storage paths and URLs must point inside the user's own reference folder.
"""
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging

from services.face_service import NoReferenceImages, ReferenceNotAllowed
from services.image_source import ImageBytes
from services.storage_service import StorageError

match_bp = Blueprint('match', __name__)
logger = logging.getLogger(__name__)


def _read_match_request():
    """Return (probe, candidates, tolerance) from a multipart or JSON body."""
    if request.files:
        upload = request.files.get('image')
        if upload is None or upload.filename == '':
            raise ValueError("No image file provided")
        probe = ImageBytes(upload.read(), name=upload.filename)
        candidates = request.form.getlist('candidates')
        tolerance = request.form.get('tolerance')
    else:
        data = request.get_json(silent=True) or {}
        probe = data.get('probe')
        if not probe:
            raise ValueError("probe is required")
        candidates = data.get('candidates') or []
        if not isinstance(candidates, list):
            raise ValueError("candidates must be a list")
        tolerance = data.get('tolerance')

    if tolerance is not None and tolerance != '':
        try:
            tolerance = float(tolerance)
        except (TypeError, ValueError):
            raise ValueError("tolerance must be a number")
        if not 0 < tolerance <= 1:
            raise ValueError("tolerance must be in (0, 1]")
    else:
        tolerance = None

    return probe, candidates, tolerance


@match_bp.route('', methods=['POST'])
@jwt_required()
def match_face():
    """Find the best matching reference image for the submitted selfie."""
    try:
        probe, candidates, tolerance = _read_match_request()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    face_service = current_app.face_service
    user_id = get_jwt_identity()
    try:
        face_service.ensure_owned(user_id, [probe, *candidates])
        if candidates:
            outcome = face_service.verify(probe, candidates, tolerance)
        else:
            outcome = face_service.verify_user(probe, user_id, tolerance)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except ReferenceNotAllowed as e:
        return jsonify({"error": str(e)}), 403
    except NoReferenceImages as e:
        return jsonify({"error": str(e)}), 404
    except StorageError as e:
        logger.error(f"Reference lookup failed: {e}")
        return jsonify({"error": "Could not load reference images"}), 502
    except Exception as e:
        logger.error(f"Face match failed: {e}", exc_info=True)
        return jsonify({"error": str(e)}), 500

    # Match failures are reported in the payload status, not the HTTP code
    return jsonify(outcome.to_dict())
