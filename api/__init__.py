import logging

from flask import Flask
from flasgger import Swagger
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .config import get_config
from .errors import register_error_handlers
from models import storage
from utils.payment_gateway import PaymentGateway
from utils.security import LockoutPolicy, TokenService

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Streamflix API",
        "version": "1.0.0",
        "description": "REST API for a video-subscription service: authentication, catalog, subscriptions and payments.",
    },
    "basePath": "/",  # blueprints are mounted under /api
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the access token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}

# Shared limiter; per-route limits are declared on the auth blueprint
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name: str | None = None, **overrides) -> Flask:
    """
    Application factory: creates and configures the Flask app.

    `overrides` are applied on top of the selected config class, which is how
    tests point the app at a throwaway database.
    """
    app = Flask(__name__)

    app.config.from_object(get_config(config_name))
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )

    # Services are built once from config and looked up via app.extensions
    app.extensions["token_service"] = TokenService.from_config(app.config)
    app.extensions["lockout_policy"] = LockoutPolicy.from_config(app.config)
    app.extensions["payment_gateway"] = PaymentGateway.from_config(app.config)

    storage.reload(app.config["DATABASE_URL"])

    CORS(
        app,
        resources={r"/api/*": {"origins": app.config.get("FRONTEND_URL", "*")}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )

    limiter.init_app(app)

    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    register_error_handlers(app)

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .videos import bp as videos_bp
    from .subscriptions import bp as subscriptions_bp
    from .payments import bp as payments_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(videos_bp, url_prefix="/api/videos")
    app.register_blueprint(subscriptions_bp, url_prefix="/api/subscriptions")
    app.register_blueprint(payments_bp, url_prefix="/api/payments")

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Welcome to Streamflix API",
            "docs": "/apidocs/",
            "health": "/api/health",
        }, 200

    return app
