"""
SelfieScan Backend - Main Application
Document scanning and selfie verification against stored reference images
"""

import os
import logging
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from config import Config
from services.storage_service import StorageClient
from services.face_service import init_face_service
from services.document_scanner import DocumentScanner

logger = logging.getLogger(__name__)


def configure_logging(config):
    """Configure root logging: stream handler plus optional log file."""
    handlers = [logging.StreamHandler()]
    log_file = config.get('LOG_FILE')
    if log_file:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.url_map.strict_slashes = False

    configure_logging(app.config)

    # Initialize extensions
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    JWTManager(app)

    # Collaborators - available to blueprints via current_app
    app.storage = StorageClient(
        app.config['SUPABASE_URL'],
        app.config['SUPABASE_ANON_KEY'],
        timeout=app.config['STORAGE_TIMEOUT'],
    )
    app.face_service = init_face_service(app.config, app.storage)
    app.document_scanner = DocumentScanner(
        api_url=app.config['VISION_API_URL'],
        api_key=app.config['VISION_API_KEY'],
        model=app.config['VISION_MODEL'],
        timeout=app.config['VISION_TIMEOUT'],
    )

    # Register blueprints
    from api.match import match_bp
    from api.scan import scan_bp
    from api.images import images_bp

    app.register_blueprint(match_bp, url_prefix='/api/match')
    app.register_blueprint(scan_bp, url_prefix='/api/scan')
    app.register_blueprint(images_bp, url_prefix='/api/images')

    # API root
    @app.route('/api')
    def api_info():
        return jsonify({
            "message": "SelfieScan Backend API",
            "version": "1.0.0",
            "status": "online"
        })

    # Health check
    @app.route('/health')
    def health():
        return jsonify({
            "status": "healthy",
            "face": app.face_service.get_stats(),
        })

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "Uploaded file is too large"}), 413

    logger.info("SelfieScan backend initialized")
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host=Config.HOST, port=Config.PORT)
