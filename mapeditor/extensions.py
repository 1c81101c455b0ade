from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def init_extensions(app) -> None:
    """Initialize Flask extensions and create the polygon tables."""
    db.init_app(app)
    with app.app_context():
        from mapeditor.storage.sql import PolygonRecord  # noqa: F401

        db.create_all()
