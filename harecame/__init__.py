"""
Harecame - Flask Application Factory
"""
import atexit
import os
import time
import traceback

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .config import Config
from .security import (
    add_security_headers,
    configure_session_security,
    generate_secret_key
)


def create_app(config_class=Config):
    """Application factory pattern for Flask app creation"""
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config_class)
    app.config['STARTED_AT'] = time.time()

    # Configure database
    database_uri = config_class.database_uri()
    if database_uri.startswith('sqlite:///'):
        db_path = database_uri[len('sqlite:///'):]
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
    app.config['SQLALCHEMY_DATABASE_URI'] = database_uri
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    # Generate proper secret key if not set
    if not app.config.get('SECRET_KEY'):
        app.config['SECRET_KEY'] = generate_secret_key()

    # Configure session security
    configure_session_security(app)

    # Add security headers to all responses
    app.after_request(add_security_headers)

    # Cross-origin access for the web front-ends
    origins = app.config.get('ALLOWED_ORIGINS') or []
    if origins:
        CORS(app, resources={r'/api/*': {'origins': origins}}, supports_credentials=True)
        print(f"[Security] CORS enabled for {', '.join(origins)}")

    # Initialize database
    from .models.database import db, init_db
    init_db(app)

    # Initialize authentication
    from .auth import init_auth
    init_auth(app)

    # Register blueprints
    from .routes import api_bp, auth_bp, analytics_bp, docs_bp
    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(auth_bp, url_prefix='/api')
    app.register_blueprint(analytics_bp, url_prefix='/api')
    app.register_blueprint(docs_bp, url_prefix='/api')

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'success': False, 'error': e.name, 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        if isinstance(e, HTTPException):
            return handle_http_exception(e)

        db.session.rollback()
        print(f"[API] Unhandled error: {e}")
        traceback.print_exc()

        body = {'success': False, 'error': 'Internal server error'}
        if app.debug:
            body['message'] = str(e)
        return jsonify(body), 500

    # Register cleanup handlers
    from .services import mqtt

    def cleanup():
        """Graceful shutdown - stop all services"""
        print("\n[System] Shutting down...")
        mqtt.stop()
        print("[System] Shutdown complete")

    atexit.register(cleanup)

    return app
