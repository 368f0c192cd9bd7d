"""
Receipt Bridge package

This module provides the application factory:
- Configures logging via receipt_bridge.core.logging
- Creates a Flask app exposing the JSON API and health blueprints
- Tags each request with an id for log correlation
- Optionally ensures the background print worker is started
"""

from __future__ import annotations

import os
import uuid
from typing import Optional

from flask import Flask, g

from receipt_bridge.core.logging import configure_logging


def create_app(
    config_overrides: Optional[dict] = None,
    register_worker: bool = True,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - register_worker: if True, starts the background queue worker (resuming
      any jobs a previous run left pending)

    Returns:
    - Flask app instance
    """
    configure_logging()

    app = Flask("receipt_bridge")
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("RECEIPTBRIDGE_MAX_CONTENT_LENGTH", 256 * 1024))
    app.url_map.strict_slashes = False

    @app.before_request
    def _set_request_id():
        g.request_id = getattr(g, "request_id", uuid.uuid4().hex)

    from receipt_bridge.web import api_bp, health_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(health_bp)

    if register_worker:
        from receipt_bridge.printing.worker import ensure_worker

        ensure_worker()
        app.logger.info("Background worker ensured")

    if config_overrides:
        app.config.update(config_overrides)

    app.logger.info("Receipt Bridge app created")
    return app


__all__ = ["create_app"]
