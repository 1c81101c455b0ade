from __future__ import annotations

import os
from typing import Dict, Type


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base application configuration."""

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            "sqlite:///mapeditor.db",
        ),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    GBIF_API_BASE_URL: str = os.getenv("GBIF_API_BASE_URL", "https://api.gbif.org/v1")
    BASE_TILE_URL: str = os.getenv(
        "BASE_TILE_URL",
        "https://tile.gbif.org/3857/omt/{z}/{x}/{y}@2x.png?style=gbif-geyser-en",
    )
    OCCURRENCE_TILE_URL: str = os.getenv(
        "OCCURRENCE_TILE_URL",
        "https://api.gbif.org/v2/map/occurrence/adhoc/{z}/{x}/{y}@2x.png"
        "?srs=EPSG:3857&style=scaled.circles&mode=GEO_CENTROID"
        "&taxonKey={taxon_key}&hasGeospatialIssue=false",
    )
    HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "15"))
    INVESTIGATE_LIMIT: int = int(os.getenv("INVESTIGATE_LIMIT", "20"))
    INVESTIGATE_RADIUS_M: float = float(os.getenv("INVESTIGATE_RADIUS_M", "100000"))
    MERGE_DRAWN_SHAPES: bool = _env_bool("MERGE_DRAWN_SHAPES", True)
    DEFAULT_VIEWPORT_WIDTH: int = int(os.getenv("DEFAULT_VIEWPORT_WIDTH", "800"))
    DEFAULT_VIEWPORT_HEIGHT: int = int(os.getenv("DEFAULT_VIEWPORT_HEIGHT", "600"))
    MAX_EDITOR_SESSIONS: int = int(os.getenv("MAX_EDITOR_SESSIONS", "100"))
    EDITOR_SESSION_IDLE_SECONDS: float = float(os.getenv("EDITOR_SESSION_IDLE_SECONDS", "3600"))


class DevelopmentConfig(Config):
    DEBUG: bool = True
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "DEBUG")


class ProductionConfig(Config):
    DEBUG: bool = False


class TestingConfig(Config):
    TESTING: bool = True
    SQLALCHEMY_DATABASE_URI: str = "sqlite://"
    LOG_LEVEL: str = "DEBUG"


CONFIG_MAP: Dict[str, Type[Config]] = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": Config,
}


def resolve_config(config_name: str | None) -> Type[Config]:
    """Return the configuration class for the given name."""
    if not config_name:
        return CONFIG_MAP["default"]
    return CONFIG_MAP.get(config_name, CONFIG_MAP["default"])
