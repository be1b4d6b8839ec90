"""Flask website API for lead capture, chat and CRM webhooks."""

from flask import Flask, jsonify, request

from leadkit.config import Settings, getSettings
from leadkit.logging import configureLogging
from leadSite.config import config
from leadSite.services.state import SiteState

NO_STORE = "private, no-cache, no-store, must-revalidate"


def create_app(config_name: str = "development", settings: Settings | None = None) -> Flask:
    """Application factory.

    Args:
        config_name: Configuration to use (development, testing, production).
        settings: leadkit settings (loaded from the environment when omitted).

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config["default"]))

    settings = settings or getSettings()
    configureLogging(settings.logLevel, useColors=not app.config["TESTING"])

    # Limiter windows, caches and the cost log outlive requests
    app.extensions["leadkit"] = SiteState.from_settings(settings)

    # Register blueprints
    from leadSite.routes.chat import chat_bp
    from leadSite.routes.leads import leads_bp
    from leadSite.routes.webhooks import webhooks_bp

    app.register_blueprint(leads_bp, url_prefix="/api/leads")
    app.register_blueprint(chat_bp, url_prefix="/api/claude")
    app.register_blueprint(webhooks_bp, url_prefix="/api/webhooks")

    @app.after_request
    def no_store_api(response):
        if request.path.startswith("/api/"):
            response.headers["Cache-Control"] = NO_STORE
            response.headers["CDN-Cache-Control"] = "private, no-cache"
        return response

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    return app
