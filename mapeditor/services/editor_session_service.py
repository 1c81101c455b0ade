from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from flask import current_app

from mapeditor.domain.geo import Annotation, Coordinates, GeoPoint, Ring
from mapeditor.domain.polygons import AnnotatedPolygon, AnnotationRule, SpeciesRef
from mapeditor.domain.viewport import ViewportSize, ViewportTracker
from mapeditor.services.editor_service import CURRENT_POLYGON_ID, MapEditor
from mapeditor.services.occurrence_service import AreaInvestigator, OccurrenceSearch
from mapeditor.services.polygon_service import PolygonService

DEFAULT_CENTER = GeoPoint(20.0, 0.0)
DEFAULT_ZOOM = 2.0
NAVIGATE_ZOOM = 6.0
DEFAULT_MAX_SESSIONS = 100
DEFAULT_SESSION_IDLE_SECONDS = 3600.0


class EditorSessionError(Exception):
    """Base exception raised for editor session issues."""


class EditorSessionNotFoundError(EditorSessionError):
    """Raised when an editor session is not found."""


class EditorShell:
    """
    Session-side owner of the editor's inputs.

    Saved polygons live in the :class:`PolygonService`; the in-progress
    "current" polygon, the selected species and annotation, and the rule
    overlays are per-session state.
    """

    def __init__(self, polygon_service: PolygonService) -> None:
        self._polygons = polygon_service
        self.current: Optional[Ring] = None
        self.inverted = False
        self.species: Optional[SpeciesRef] = None
        self.annotation = Annotation.SUSPICIOUS
        self.rules: List[AnnotationRule] = []
        self.last_saved_id: Optional[str] = None

    def saved_polygons(self) -> Sequence[AnnotatedPolygon]:
        return self._polygons.list_polygons()

    def current_polygon(self) -> Optional[Ring]:
        return self.current

    def current_inverted(self) -> bool:
        return self.inverted

    def annotation_rules(self) -> Sequence[AnnotationRule]:
        return self.rules

    def selected_species(self) -> Optional[SpeciesRef]:
        return self.species

    def current_annotation(self) -> Annotation:
        return self.annotation

    def on_polygon_change(self, coordinates: Optional[Ring]) -> None:
        self.current = list(coordinates) if coordinates else None

    def on_auto_save(self, coordinates: Ring) -> Optional[str]:
        polygon = self._polygons.auto_save(coordinates, self.species, self.annotation, self.inverted)
        self.current = None
        self.inverted = False
        self.last_saved_id = polygon.id
        return polygon.id

    def on_update_polygon(self, polygon_id: str, coordinates: Coordinates) -> None:
        self._polygons.update_coordinates(polygon_id, coordinates)

    def on_toggle_invert(self, polygon_id: str) -> None:
        if polygon_id == CURRENT_POLYGON_ID:
            self.inverted = not self.inverted
        else:
            self._polygons.toggle_invert(polygon_id)

    def on_delete_polygon(self, polygon_id: str) -> None:
        if polygon_id == CURRENT_POLYGON_ID:
            self.current = None
            self.inverted = False
        else:
            self._polygons.delete_polygon(polygon_id)


@dataclass
class EditorSession:
    id: str
    editor: MapEditor
    shell: EditorShell
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    last_used: float = field(default_factory=time.monotonic)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def save_current(self) -> Optional[str]:
        """Save the current polygon and open it for editing."""
        if not self.shell.current:
            return None
        self.editor.stop_editing()
        polygon_id = self.shell.on_auto_save(self.shell.current)
        if polygon_id is not None:
            self.editor.begin_editing(polygon_id)
        return polygon_id

    def navigate_to_polygon(self, polygon: AnnotatedPolygon) -> None:
        """Center the map on the first vertex of a polygon."""
        lat, lng = polygon.parts[0][0]
        self.editor.navigate_to(lat, lng, NAVIGATE_ZOOM)

    def to_json(self) -> Dict:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "editor": self.editor.to_json(),
            "currentPolygon": [list(p) for p in self.shell.current] if self.shell.current else None,
            "currentInverted": self.shell.inverted,
            "species": self.shell.species.to_json() if self.shell.species else None,
            "annotation": self.shell.annotation.value,
            "notices": [notice.to_json() for notice in self.editor.drain_notices()],
        }


class EditorSessionService:
    """
    Keep the live editor sessions of this process in memory.

    Sessions idle for longer than ``idle_timeout`` seconds are dropped, and
    once ``max_sessions`` are open the least recently used one is evicted to
    make room for a new one.
    """

    def __init__(
        self,
        polygon_service: PolygonService,
        occurrence_client: Optional[OccurrenceSearch] = None,
        investigate_limit: int = 20,
        occurrence_tile_url: Optional[str] = None,
        default_size: ViewportSize = ViewportSize(800, 600),
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        idle_timeout: float = DEFAULT_SESSION_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_sessions < 1:
            raise EditorSessionError(f"max_sessions must be at least 1, got {max_sessions}")
        self._polygon_service = polygon_service
        self._occurrence_client = occurrence_client
        self._investigate_limit = investigate_limit
        self._occurrence_tile_url = occurrence_tile_url
        self._default_size = default_size
        self._max_sessions = max_sessions
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, EditorSession] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_app_config(
        cls,
        polygon_service: PolygonService,
        occurrence_client: Optional[OccurrenceSearch] = None,
    ) -> "EditorSessionService":
        """Create EditorSessionService from Flask app configuration."""
        config = current_app.config
        return cls(
            polygon_service=polygon_service,
            occurrence_client=occurrence_client,
            investigate_limit=int(config.get("INVESTIGATE_LIMIT", 20)),
            occurrence_tile_url=config.get("OCCURRENCE_TILE_URL"),
            default_size=ViewportSize(
                int(config.get("DEFAULT_VIEWPORT_WIDTH", 800)),
                int(config.get("DEFAULT_VIEWPORT_HEIGHT", 600)),
            ),
            max_sessions=int(config.get("MAX_EDITOR_SESSIONS", DEFAULT_MAX_SESSIONS)),
            idle_timeout=float(config.get("EDITOR_SESSION_IDLE_SECONDS", DEFAULT_SESSION_IDLE_SECONDS)),
        )

    def create_session(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        center: Optional[GeoPoint] = None,
        zoom: Optional[float] = None,
    ) -> EditorSession:
        """Create a new editor session with its own viewport."""
        size = ViewportSize(width or self._default_size.width, height or self._default_size.height)
        if size.width <= 0 or size.height <= 0:
            raise EditorSessionError(f"Viewport size must be positive, got {size.width}x{size.height}")

        tracker = ViewportTracker(center or DEFAULT_CENTER, DEFAULT_ZOOM if zoom is None else zoom, size)
        shell = EditorShell(self._polygon_service)
        investigator = (
            AreaInvestigator(self._occurrence_client, self._investigate_limit)
            if self._occurrence_client is not None
            else None
        )
        editor = MapEditor(
            shell,
            tracker,
            investigator=investigator,
            occurrence_tile_url=self._occurrence_tile_url,
        )
        session = EditorSession(id=uuid.uuid4().hex, editor=editor, shell=shell, last_used=self._clock())

        with self._registry_lock:
            evicted = self._expire_idle()
            while len(self._sessions) >= self._max_sessions:
                oldest = min(self._sessions.values(), key=lambda s: s.last_used)
                evicted.append(self._sessions.pop(oldest.id))
            self._sessions[session.id] = session

        self._discard(evicted)
        current_app.logger.info(f"Created editor session {session.id}")
        return session

    def get_session(self, session_id: str) -> EditorSession:
        """Return a live session and mark it as used."""
        with self._registry_lock:
            evicted = self._expire_idle()
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_used = self._clock()
        self._discard(evicted)
        if session is None:
            raise EditorSessionNotFoundError(f"Editor session with id {session_id} not found.")
        return session

    def close_session(self, session_id: str) -> None:
        with self._registry_lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise EditorSessionNotFoundError(f"Editor session with id {session_id} not found.")
        with session.lock:
            session.editor.cancel()
        current_app.logger.info(f"Closed editor session {session_id}")

    def list_sessions(self) -> List[EditorSession]:
        with self._registry_lock:
            return list(self._sessions.values())

    def _expire_idle(self) -> List[EditorSession]:
        """Pop sessions idle past the timeout; the caller holds the registry lock."""
        cutoff = self._clock() - self._idle_timeout
        expired = [session for session in self._sessions.values() if session.last_used < cutoff]
        for session in expired:
            del self._sessions[session.id]
        return expired

    @staticmethod
    def _discard(sessions: List[EditorSession]) -> None:
        for session in sessions:
            with session.lock:
                session.editor.cancel()
            current_app.logger.info(f"Evicted editor session {session.id}")
