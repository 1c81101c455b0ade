from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask

from mapeditor.config import resolve_config
from mapeditor.extensions import init_extensions
from mapeditor.app.container import register_services


def create_app(config_name: str | None = None, overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Application factory."""
    project_root = Path(__file__).resolve().parents[2]
    app = Flask(
        __name__,
        instance_relative_config=True,
        instance_path=str(project_root / "instance"),
    )

    config_class = resolve_config(config_name or os.getenv("FLASK_ENV"))
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)
    _configure_logging(app)

    init_extensions(app)
    register_services(app)
    _register_blueprints(app)
    return app


def _register_blueprints(app: Flask) -> None:
    from mapeditor.api.pages.routes import pages_bp
    from mapeditor.api.polygons.routes import polygons_bp
    from mapeditor.api.editor.routes import editor_bp

    app.register_blueprint(pages_bp)
    app.register_blueprint(polygons_bp)
    app.register_blueprint(editor_bp)


def _configure_logging(app: Flask) -> None:
    """Apply LOG_LEVEL to the app logger and the mapeditor package loggers."""
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    app.logger.setLevel(level)
    logging.getLogger("mapeditor").setLevel(level)
