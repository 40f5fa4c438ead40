"""
Reference Images API - the authenticated user's stored selfies
"""
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from werkzeug.utils import secure_filename
import logging

from services.storage_service import StorageError

images_bp = Blueprint('images', __name__)
logger = logging.getLogger(__name__)


@images_bp.route('', methods=['GET'])
@jwt_required()
def list_images():
    user_id = get_jwt_identity()
    try:
        images = current_app.face_service.user_images.list_images(user_id)
    except StorageError as e:
        logger.error(f"Listing images for {user_id} failed: {e}")
        return jsonify({"error": "Error getting images"}), 502
    return jsonify({"images": images, "count": len(images)})


@images_bp.route('', methods=['POST'])
@jwt_required()
def upload_image():
    """Upload a reference image. Optional form field 'name' renames it (extension kept)."""
    if 'image' not in request.files:
        return jsonify({"error": "No image file provided"}), 400

    file = request.files['image']
    filename = secure_filename(file.filename or '')
    if not filename:
        return jsonify({"error": "No file selected"}), 400

    name = request.form.get('name')
    user_id = get_jwt_identity()
    try:
        stored = current_app.face_service.user_images.upload_image(
            user_id, file.read(), filename,
            name=secure_filename(name) if name else None,
            content_type=file.mimetype or 'image/jpeg',
        )
    except StorageError as e:
        logger.error(f"Uploading image for {user_id} failed: {e}")
        return jsonify({"error": "Error uploading image"}), 502
    return jsonify(stored), 201


@images_bp.route('/<image_name>', methods=['GET'])
@jwt_required()
def get_image(image_name):
    url = current_app.face_service.user_images.get_image_url(get_jwt_identity(), image_name)
    return jsonify({"url": url})


@images_bp.route('/<image_name>', methods=['DELETE'])
@jwt_required()
def delete_image(image_name):
    user_id = get_jwt_identity()
    try:
        current_app.face_service.user_images.delete_image(user_id, image_name)
    except StorageError as e:
        logger.error(f"Deleting {image_name} for {user_id} failed: {e}")
        return jsonify({"error": "Error deleting image"}), 502
    return jsonify({"message": "Image deleted"})
