import logging
import os
import sys
from flask import Flask, jsonify, request
from flask_cors import CORS
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from models import db
from utils.db_conn import db_conn, init_database_with_app
from utils.live import init_live, socketio
from utils.notifications import mail

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_list(name):
    return [o.strip() for o in os.getenv(name, "").split(",") if o.strip()]


def load_config(app: Flask):
    """Populate app.config from the environment (.env is loaded first)."""
    load_dotenv()

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")

    # Identity provider
    app.config["SUPABASE_URL"] = os.getenv("SUPABASE_URL")
    app.config["SUPABASE_SERVICE_KEY"] = os.getenv("SUPABASE_SERVICE_KEY")
    app.config["SUPABASE_JWT_SECRET"] = os.getenv("SUPABASE_JWT_SECRET")
    if not app.config["SUPABASE_SERVICE_KEY"]:
        logger.error("SUPABASE_SERVICE_KEY is missing; teacher provisioning will fail")

    # OCR job queue
    app.config["REDIS_URL"] = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    app.config["OCR_QUEUE_NAME"] = os.getenv("OCR_QUEUE_NAME", "ocr")
    app.config["OCR_ENQUEUE_TIMEOUT"] = float(os.getenv("OCR_ENQUEUE_TIMEOUT", 3))

    # Live updates fan out over Redis so the OCR worker's emits reach API clients;
    # set SOCKETIO_MESSAGE_QUEUE to an empty string for a single-process setup
    app.config["SOCKETIO_MESSAGE_QUEUE"] = (
        os.getenv("SOCKETIO_MESSAGE_QUEUE", app.config["REDIS_URL"]) or None
    )

    # Uploads
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(BASE_DIR, "uploads")
    )
    app.config["MAX_ANSWER_SHEETS"] = int(os.getenv("MAX_ANSWER_SHEETS", 5))
    app.config["MAX_CONTENT_LENGTH"] = 50 * 1024 * 1024  # 50MB per request

    # SPA origins (Vite dev server plus any configured)
    app.config["CORS_ORIGINS"] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        *_env_list("CORS_ORIGINS"),
    ]

    # Configure mail settings (can be overridden by environment variables)
    app.config["MAIL_SERVER"] = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    app.config["MAIL_PORT"] = int(os.getenv("MAIL_PORT", 587))
    app.config["MAIL_USE_TLS"] = os.getenv("MAIL_USE_TLS", "True").lower() == "true"
    app.config["MAIL_USE_SSL"] = os.getenv("MAIL_USE_SSL", "False").lower() == "true"
    app.config["MAIL_USERNAME"] = os.getenv("MAIL_USERNAME")
    app.config["MAIL_PASSWORD"] = os.getenv("MAIL_PASSWORD")
    app.config["MAIL_DEFAULT_SENDER"] = os.getenv(
        "MAIL_DEFAULT_SENDER", app.config["MAIL_USERNAME"]
    )


def register_error_handlers(app: Flask):
    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        db.session.rollback()
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        return jsonify({"error": "Internal Server Error"}), 500


def create_app(test_config=None) -> Flask:
    app = Flask(__name__)
    load_config(app)
    if test_config:
        app.config.update(test_config)

    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})
    db_conn.init_app(app)
    mail.init_app(app)
    init_live(app)

    from blueprints.admin_routes import admin_bp
    from blueprints.student_routes import student_bp
    from blueprints.teacher_routes import teacher_bp
    from blueprints.upload_routes import upload_bp

    app.register_blueprint(admin_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(teacher_bp)
    app.register_blueprint(upload_bp)

    register_error_handlers(app)

    # API: GET "/welcome"
    # Purpose: Health-check for load balancers and quick connectivity tests.
    @app.route("/welcome", methods=["GET"])
    def welcome():
        return jsonify({"message": "Welcome to the Exam Revaluation API!"})

    @app.cli.command("init-db")
    def init_db_command():
        """Create database tables."""
        if not init_database_with_app(app):
            sys.exit(1)

    return app


app = create_app()


if __name__ == "__main__":
    logger.info("Application startup initiated")
    if not init_database_with_app(app):
        logger.error("Startup checks failed. Aborting launch.")
        sys.exit(1)

    socketio.run(
        app,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", 5000)),
        debug=os.getenv("FLASK_DEBUG", "0") == "1",
        allow_unsafe_werkzeug=True,
    )
