from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from mapeditor.domain.polygons import AnnotatedPolygon
from mapeditor.extensions import db
from mapeditor.storage.protocols import PolygonRepository


class PolygonStorageError(Exception):
    """Raised when polygon storage operations fail."""


class PolygonRecord(db.Model):
    """One persisted polygon, stored as its JSON document."""

    __tablename__ = "polygons"

    id = db.Column(db.String(64), primary_key=True)
    payload = db.Column(db.JSON, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )


class SqlPolygonRepository(PolygonRepository):
    """Flask-SQLAlchemy backed polygon storage. Polygons keep their creation order."""

    def list_all(self) -> List[AnnotatedPolygon]:
        records = db.session.execute(
            db.select(PolygonRecord).order_by(PolygonRecord.position)
        ).scalars()
        return [AnnotatedPolygon.from_storage_json(record.payload) for record in records]

    def get(self, polygon_id: str) -> Optional[AnnotatedPolygon]:
        record = db.session.get(PolygonRecord, polygon_id)
        if record is None:
            return None
        return AnnotatedPolygon.from_storage_json(record.payload)

    def save(self, polygon: AnnotatedPolygon) -> AnnotatedPolygon:
        record = db.session.get(PolygonRecord, polygon.id)
        if record is None:
            record = PolygonRecord(id=polygon.id, position=self._next_position())
            db.session.add(record)
        record.payload = polygon.to_storage_json()
        record.updated_at = datetime.now(timezone.utc)
        self._commit(f"Unable to save polygon {polygon.id}")
        return polygon

    def delete(self, polygon_id: str) -> bool:
        record = db.session.get(PolygonRecord, polygon_id)
        if record is None:
            return False
        db.session.delete(record)
        self._commit(f"Unable to delete polygon {polygon_id}")
        return True

    def _next_position(self) -> int:
        highest = db.session.execute(db.select(db.func.max(PolygonRecord.position))).scalar()
        return 0 if highest is None else highest + 1

    @staticmethod
    def _commit(message: str) -> None:
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PolygonStorageError(message) from exc
