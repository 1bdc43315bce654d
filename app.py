"""
EventLens Backend - Main Application
Event photo sharing with selfie-based face search
"""

import os
import logging
from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from config import Config

logger = logging.getLogger(__name__)


def configure_logging(config):
    """Root logging: console plus an optional log file"""
    handlers = [logging.StreamHandler()]
    log_file = config.get('LOG_FILE')
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def create_storage(config):
    """Pick the repository backend from STORAGE_BACKEND"""
    backend = config.get('STORAGE_BACKEND', 'postgres')
    if backend == 'memory':
        from services.memory_store import MemoryStore
        return MemoryStore()
    if backend == 'postgres':
        from services.db_manager import DBManager
        return DBManager(config['DATABASE_URL'])
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def seed_admin(db, config):
    """Create the organizer account from ADMIN_EMAIL / ADMIN_PASSWORD if missing"""
    email = config.get('ADMIN_EMAIL')
    password = config.get('ADMIN_PASSWORD')
    if not email or not password or db.get_user_by_email(email):
        return None

    from api.auth import hash_password
    admin = db.create_user(
        username=email.split('@')[0],
        email=email,
        password_hash=hash_password(password, rounds=config['BCRYPT_ROUNDS']),
        name='Administrator',
        is_admin=True,
    )
    logger.info(f"Seeded admin account {email}")
    return admin


def create_app(config_class=Config, db=None, extractor=None):
    """
    Application factory.

    Args:
        config_class: Config or a subclass (TestingConfig in tests)
        db: repository to use instead of the configured backend
        extractor: descriptor extractor to use instead of InsightFace
    """
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.url_map.strict_slashes = False
    config_class.init_app(app)

    configure_logging(app.config)

    # Initialize extensions
    CORS(app, resources={r"/*": {"origins": "*"}})
    JWTManager(app)

    # Initialize storage and make it available to blueprints
    app.db = db if db is not None else create_storage(app.config)
    seed_admin(app.db, app.config)

    # Face matching pipeline; the model itself loads on first use
    from engines.face_matching import DescriptorExtractor, FaceMatcher, build_model_loader
    from services.recognition_service import RecognitionService

    if extractor is None:
        extractor = DescriptorExtractor(
            loader=build_model_loader(app.config),
            embedding_dim=app.config['EMBEDDING_DIM'],
        )
    app.extractor = extractor
    app.recognition_service = RecognitionService(
        repository=app.db,
        extractor=extractor,
        matcher=FaceMatcher(threshold=app.config['FACE_MATCH_THRESHOLD']),
        max_workers=app.config['MAX_WORKERS'],
        history_workers=app.config['HISTORY_WORKERS'],
        multi_face_policy=app.config['MULTI_FACE_POLICY'],
    )

    # Register blueprints
    from api.auth import auth_bp
    from api.events import events_bp
    from api.photos import photos_bp
    from api.recognition import recognition_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(events_bp, url_prefix='/api/events')
    app.register_blueprint(photos_bp, url_prefix='/api')
    app.register_blueprint(recognition_bp, url_prefix='/api')

    # Serve uploaded event photos
    @app.route('/uploads/<path:filename>')
    def serve_uploads(filename):
        return send_from_directory(app.config['UPLOAD_DIR'], filename)

    # API root
    @app.route('/api')
    def api_info():
        return jsonify({
            "message": "EventLens Backend API",
            "version": "1.0.0",
            "status": "online"
        })

    # Health check
    @app.route('/health')
    def health():
        try:
            stats = app.db.get_dashboard_stats()
            return jsonify({
                "status": "healthy",
                "database": "connected",
                "face_model": "loaded" if app.extractor.available else "not loaded",
                "stats": stats
            })
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return jsonify({
                "status": "unhealthy",
                "error": str(e)
            }), 500

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    def too_large(error):
        return jsonify({"error": "Upload exceeds the size limit"}), 413

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    logger.info(f"EventLens app created (storage={app.config['STORAGE_BACKEND']})")
    return app


if __name__ == '__main__':
    app = create_app()
    logger.info("Starting EventLens Backend...")
    logger.info(f"Server running on {Config.HOST}:{Config.PORT}")

    # Warm the face model so the first request does not pay for loading
    try:
        app.extractor.loader.get()
        logger.info(f"Face model ready: {app.extractor.get_stats()}")
    except Exception as e:
        logger.warning(f"Face model not loaded yet: {e}")

    app.run(
        host=Config.HOST,
        port=Config.PORT,
        debug=(Config.FLASK_ENV == 'development'),
        threaded=True
    )
