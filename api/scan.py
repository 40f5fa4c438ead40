"""
Document Scan API - classify an image as selfie, licence plate, national ID or unknown
"""
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from werkzeug.utils import secure_filename
import logging
import os
import uuid

from services.storage_service import StorageError

scan_bp = Blueprint('scan', __name__)
logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def _upload_document(file):
    """Store an uploaded document under a random name and return its public URL."""
    ext = os.path.splitext(secure_filename(file.filename))[1].lower()
    key = f"{uuid.uuid4().hex}{ext}"
    bucket = current_app.config['DOCUMENT_BUCKET']
    storage = current_app.storage
    path = storage.upload(bucket, key, file.read(),
                          content_type=file.mimetype or 'image/jpeg', upsert=False)
    return path, storage.public_url(bucket, key)


@scan_bp.route('', methods=['POST'])
@jwt_required()
def scan_document():
    """
    Classify a document image.

    Accepts either a multipart 'image' file (stored in the documents bucket
    first) or JSON {"image_url": "..."}.
    """
    path = None
    if 'image' in request.files:
        file = request.files['image']
        if file.filename == '':
            return jsonify({"error": "No file selected"}), 400
        if not allowed_file(file.filename):
            return jsonify({"error": f"Unsupported format. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}"}), 400
        try:
            path, image_url = _upload_document(file)
        except StorageError as e:
            logger.error(f"Document upload failed: {e}")
            return jsonify({"error": "Error uploading image"}), 502
    else:
        data = request.get_json(silent=True) or {}
        image_url = data.get('image_url')
        if not image_url:
            return jsonify({"error": "image or image_url is required"}), 400

    result = current_app.document_scanner.classify(image_url)
    return jsonify({
        **result.to_dict(),
        "image_url": image_url,
        "path": path,
    })
