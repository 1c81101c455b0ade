from mapeditor.storage.protocols import PolygonRepository
from mapeditor.storage.sql import PolygonRecord, PolygonStorageError, SqlPolygonRepository

__all__ = ["PolygonRecord", "PolygonRepository", "PolygonStorageError", "SqlPolygonRepository"]
