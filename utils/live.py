import logging
from datetime import datetime
from typing import Callable
from flask_socketio import emit, join_room, leave_room, SocketIO


_socketio: SocketIO | None = None
_logger = logging.getLogger(__name__)
_observers: list = []


def initialize_live(socketio: SocketIO, logger: logging.Logger | None = None):
    """Provide socketio and optional logger to this module."""
    global _socketio, _logger
    _socketio = socketio
    if logger is not None:
        _logger = logger


def course_room(course_slug: str) -> str:
    return f"course-{course_slug}"


def register_socketio_handlers(socketio: SocketIO):
    """Register Socket.IO event handlers. Call this after SocketIO(app) in app.py."""

    @socketio.on("connect")
    def _on_connect():
        emit("connected", {"message": "connected"})

    @socketio.on("subscribe_grades")
    def _on_subscribe_grades(data):
        course_slug = str((data or {}).get("course_slug") or "").strip()
        if not course_slug:
            emit("error", {"message": "invalid course_slug"})
            return
        join_room(course_room(course_slug))
        emit("subscribed", {"course_slug": course_slug})

    @socketio.on("unsubscribe_grades")
    def _on_unsubscribe_grades(data):
        course_slug = str((data or {}).get("course_slug") or "").strip()
        if course_slug:
            leave_room(course_room(course_slug))


def add_grades_listener(callback: Callable[[dict], None]):
    """Register an in-process observer for "grades updated" (e.g. leaderboard refresh)."""
    _observers.append(callback)
    return callback


def remove_grades_listener(callback):
    try:
        _observers.remove(callback)
    except ValueError:
        pass


def emit_grades_updated(course_slug: str, count: int = 0):
    """Broadcast that a course's scores changed. Fire-and-forget: failures are only logged."""
    payload = {
        "course_slug": course_slug,
        "count": count,
        "at": datetime.now().isoformat(timespec="seconds"),
    }
    for callback in list(_observers):
        try:
            callback(payload)
        except Exception as e:
            _logger.error(f"Grades listener failed for {course_slug}: {str(e)}")
    try:
        if _socketio is not None:
            _socketio.emit("grades_updated", payload, room=course_room(course_slug))
    except Exception as e:
        _logger.error(f"Failed to emit grades update for {course_slug}: {str(e)}")
    return payload
