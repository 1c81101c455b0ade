from __future__ import annotations

import threading

import pytest

from mapeditor.app.container import get_polygon_service
from mapeditor.services.editor_service import Drawing, Idle
from mapeditor.services.editor_session_service import (
    EditorSessionError,
    EditorSessionNotFoundError,
    EditorSessionService,
)


class FakeClock:

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_service(clock, max_sessions=3, idle_timeout=60.0) -> EditorSessionService:
    return EditorSessionService(
        get_polygon_service(),
        max_sessions=max_sessions,
        idle_timeout=idle_timeout,
        clock=clock,
    )


class TestSessionRegistry:

    def test_create_and_get(self, app, clock):
        service = make_service(clock)
        session = service.create_session(width=640, height=480)
        assert service.get_session(session.id) is session
        assert [s.id for s in service.list_sessions()] == [session.id]

    def test_close_session(self, app, clock):
        service = make_service(clock)
        session = service.create_session()
        service.close_session(session.id)
        with pytest.raises(EditorSessionNotFoundError):
            service.get_session(session.id)
        with pytest.raises(EditorSessionNotFoundError):
            service.close_session(session.id)

    def test_cap_evicts_least_recently_used(self, app, clock):
        service = make_service(clock, max_sessions=2)
        first = service.create_session()
        clock.advance(1)
        second = service.create_session()
        clock.advance(1)
        service.get_session(first.id)
        clock.advance(1)

        third = service.create_session()
        assert {s.id for s in service.list_sessions()} == {first.id, third.id}
        with pytest.raises(EditorSessionNotFoundError):
            service.get_session(second.id)

    def test_registry_never_exceeds_cap(self, app, clock):
        service = make_service(clock, max_sessions=3)
        for _ in range(10):
            service.create_session()
            clock.advance(1)
        assert len(service.list_sessions()) == 3

    def test_evicted_session_is_cancelled(self, app, clock):
        service = make_service(clock, max_sessions=1)
        first = service.create_session()
        first.editor.start_drawing("polygon")
        assert isinstance(first.editor.state, Drawing)
        clock.advance(1)
        service.create_session()
        assert isinstance(first.editor.state, Idle)

    def test_idle_session_expires(self, app, clock):
        service = make_service(clock, idle_timeout=60.0)
        session = service.create_session()
        clock.advance(61)
        with pytest.raises(EditorSessionNotFoundError):
            service.get_session(session.id)
        assert service.list_sessions() == []

    def test_use_keeps_session_alive(self, app, clock):
        service = make_service(clock, idle_timeout=60.0)
        session = service.create_session()
        for _ in range(5):
            clock.advance(40)
            assert service.get_session(session.id) is session

    def test_max_sessions_must_be_positive(self, app, clock):
        with pytest.raises(EditorSessionError):
            make_service(clock, max_sessions=0)

    def test_limits_come_from_config(self, app):
        app.config["MAX_EDITOR_SESSIONS"] = "1"
        service = EditorSessionService.from_app_config(get_polygon_service())
        first = service.create_session()
        second = service.create_session()
        assert [s.id for s in service.list_sessions()] == [second.id]
        assert first.id != second.id


class TestSessionLocking:

    def test_each_session_has_its_own_lock(self, app, clock):
        service = make_service(clock)
        a = service.create_session()
        b = service.create_session()
        assert a.lock is not b.lock
        with a.lock:
            assert b.lock.acquire(blocking=False)
            b.lock.release()

    def test_concurrent_creation_respects_cap(self, app, clock):
        service = make_service(clock, max_sessions=5)
        errors = []

        def worker():
            with app.app_context():
                try:
                    for _ in range(20):
                        service.create_session()
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(service.list_sessions()) == 5
