from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_caching import Cache
from flask_mail import Mail
from dotenv import load_dotenv
import logging
import os

load_dotenv()

db = SQLAlchemy()
cache = Cache()
mail = Mail()


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)

    # BASIC CONFIG
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "CHANGE_THIS_SECRET_KEY")
    app.config["JWT_EXPIRES_HOURS"] = int(os.getenv("JWT_EXPIRES_HOURS", 24))
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")

    # DATABASE CONFIG
    db_path = os.path.join(app.instance_path, "smartpark.db")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL", f"sqlite:///{db_path}")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # SEEDING
    app.config["SEED_ADMIN"] = _env_flag("SEED_ADMIN", True)
    app.config["ADMIN_USERNAME"] = os.getenv("ADMIN_USERNAME", "admin")
    app.config["ADMIN_PASSWORD"] = os.getenv("ADMIN_PASSWORD", "admin123")

    # EMAIL CONFIG
    app.config["MAIL_SERVER"] = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    app.config["MAIL_PORT"] = int(os.getenv("MAIL_PORT", 587))
    app.config["MAIL_USE_TLS"] = _env_flag("MAIL_USE_TLS", True)
    app.config["MAIL_USERNAME"] = os.getenv("MAIL_USERNAME")
    app.config["MAIL_PASSWORD"] = os.getenv("MAIL_PASSWORD")
    app.config["MAIL_DEFAULT_SENDER"] = os.getenv("MAIL_DEFAULT_SENDER", app.config["MAIL_USERNAME"])
    app.config["REPORT_RECIPIENT"] = os.getenv("REPORT_RECIPIENT")

    # CACHE CONFIG
    app.config["CACHE_TYPE"] = os.getenv("CACHE_TYPE", "RedisCache")
    app.config["CACHE_REDIS_URL"] = os.getenv("CACHE_REDIS_URL", "redis://localhost:6379/0")
    app.config["CACHE_DEFAULT_TIMEOUT"] = int(os.getenv("CACHE_DEFAULT_TIMEOUT", 30))

    # CELERY CONFIG
    app.config["CELERY_BROKER_URL"] = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    app.config["CELERY_RESULT_BACKEND"] = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
    app.config["EXPORT_FOLDER"] = os.getenv("EXPORT_FOLDER", os.path.join(app.instance_path, "exports"))

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    os.makedirs(app.instance_path, exist_ok=True)

    # Init extensions
    db.init_app(app)
    cache.init_app(app)
    mail.init_app(app)

    from smartpark.errors import register_error_handlers
    register_error_handlers(app)

    # Blueprint
    from smartpark.routes import bp
    app.register_blueprint(bp)

    from smartpark.commands import register_commands
    register_commands(app)

    @app.errorhandler(404)
    def route_not_found(e):
        return jsonify({"error": "Route not found"}), 404

    return app
