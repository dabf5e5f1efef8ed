"""
Web server — Flask app factory.

Creates the Flask application serving the deployment API, the
per-deployment event stream and the published sites.
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

from sitedeploy.core.config.loader import load_config
from sitedeploy.core.config.settings import ServiceConfig
from sitedeploy.core.services.auth import AuthError
from sitedeploy.core.services.deploy_service import DeployService, build_services
from sitedeploy.core.services.intake import IntakeError
from sitedeploy.ui.web.helpers import error_body

logger = logging.getLogger(__name__)

# Allowance for multipart framing and form fields on top of the file caps
_FORM_OVERHEAD = 1024 * 1024


def create_app(
    config: ServiceConfig | None = None,
    config_path: Path | None = None,
    service: DeployService | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Service configuration (loaded from ``config_path`` or
            by searching for sitedeploy.yml when None).
        config_path: Path to sitedeploy.yml.
        service: Pre-built DeployService (tests inject their own).

    Returns:
        Configured Flask application.
    """
    if service is not None:
        config = service.config
    elif config is None:
        config = load_config(config_path)

    app = Flask(__name__)

    app.config["CONFIG_PATH"] = str(config_path) if config_path else None
    app.config["MAX_CONTENT_LENGTH"] = (
        config.limits.max_files * config.limits.max_file_size + _FORM_OVERHEAD
    )
    app.config["SSE_HEARTBEAT"] = 15.0

    app.extensions["sitedeploy"] = service or build_services(config)

    # Register blueprints
    from sitedeploy.ui.web.routes_api import api_bp
    from sitedeploy.ui.web.routes_events import events_bp
    from sitedeploy.ui.web.routes_sites import sites_bp

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")
    app.register_blueprint(sites_bp)

    _register_error_handlers(app)

    logger.info(
        "Web app created (registry=%s, publish=%s)",
        config.registry.backend, config.publish_root,
    )
    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(IntakeError)
    def _intake_error(e: IntakeError):  # type: ignore[no-untyped-def]
        return jsonify(error_body(str(e), e.code)), e.http_status

    @app.errorhandler(RequestEntityTooLarge)
    def _too_large(e: RequestEntityTooLarge):  # type: ignore[no-untyped-def]
        return jsonify(error_body("Upload exceeds the size limit", "payload_too_large")), 413

    @app.errorhandler(AuthError)
    def _auth_error(e: AuthError):  # type: ignore[no-untyped-def]
        return jsonify(error_body(str(e), "unauthorized")), e.http_status


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8000,
    debug: bool = False,
) -> None:
    """Run the Flask development server (threaded for SSE clients)."""
    logger.info("Starting sitedeploy on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)
