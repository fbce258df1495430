"""
Control action handlers for the web API.

Thin dispatch layer: each function takes the SessionManager and the
parsed JSON body, validates the fields, calls the manager and returns a
result dict.

All functions return {"ok": True, ...} on success or raise ControlError
on a malformed request. Unknown session ids are not an error for
mutations; the manager ignores them.
"""

from typing import Any, Dict

from .session_manager import SessionManager


class ControlError(Exception):
    """Raised when a control request can't be carried out."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.status = status


def _require_str(body: Dict[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str):
        raise ControlError(f"'{key}' must be a string")
    return value


def _require_int(body: Dict[str, Any], key: str) -> int:
    value = body.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ControlError(f"'{key}' must be a number")
    value = int(value)
    if value <= 0:
        raise ControlError(f"'{key}' must be positive")
    return value


def create_session(manager: SessionManager, body: Dict[str, Any]) -> dict:
    return {"ok": True, "session": manager.create_session()}


def send_input(manager: SessionManager, session_id: str, body: Dict[str, Any]) -> dict:
    """Forward keystrokes; starts the process if the session has none."""
    manager.send_input(session_id, _require_str(body, "data"))
    return {"ok": True}


def archive_session(manager: SessionManager, session_id: str, body: Dict[str, Any]) -> dict:
    manager.archive_session(session_id)
    return {"ok": True}


def unarchive_session(manager: SessionManager, session_id: str, body: Dict[str, Any]) -> dict:
    manager.unarchive_session(session_id)
    return {"ok": True}


def rename_session(manager: SessionManager, session_id: str, body: Dict[str, Any]) -> dict:
    name = _require_str(body, "name").strip()
    if not name:
        raise ControlError("'name' must not be empty")
    manager.rename_session(session_id, name)
    return {"ok": True}


def resize_session(manager: SessionManager, session_id: str, body: Dict[str, Any]) -> dict:
    manager.resize_session(session_id, _require_int(body, "cols"), _require_int(body, "rows"))
    return {"ok": True}


def delete_session(manager: SessionManager, session_id: str, body: Dict[str, Any]) -> dict:
    manager.delete_session(session_id)
    return {"ok": True}
