"""
Web boundary for Agentdeck.

A JSON control API for session management plus a Server-Sent-Events
stream carrying every event the core publishes. Uses Python stdlib
http.server - no additional dependencies required.

Routes:
    GET    /health
    GET    /api/sessions
    GET    /api/sessions/<id>
    GET    /api/sessions/<id>/buffer
    GET    /api/usage
    GET    /events                         (text/event-stream)
    POST   /api/sessions                   create
    POST   /api/sessions/<id>/input        {"data": "..."}
    POST   /api/sessions/<id>/archive
    POST   /api/sessions/<id>/unarchive
    POST   /api/sessions/<id>/resize       {"cols": 120, "rows": 30}
    PUT    /api/sessions/<id>/name         {"name": "..."}
    DELETE /api/sessions/<id>
"""

import json
import logging
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import urlparse

from . import web_control_api as api
from .events import EventBus, SessionsChanged, event_to_dict
from .monitor import TrackerMonitor
from .session_manager import SessionManager
from .settings import LIMITS
from .web_control_api import ControlError

logger = logging.getLogger(__name__)

KEEPALIVE_INTERVAL = 15.0
MAX_PORT_ATTEMPTS = 100


class AgentdeckHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the control API and event stream."""

    # Set by make_server before starting
    manager: SessionManager = None
    bus: EventBus = None
    monitor: Optional[TrackerMonitor] = None
    shutting_down: threading.Event = threading.Event()

    def do_GET(self) -> None:
        path = urlparse(self.path).path.rstrip("/") or "/"
        parts = path.strip("/").split("/")

        if path == "/health":
            self._send_json_response({"ok": True, "sessions": len(self.manager.get_all_sessions())})
        elif path == "/events":
            self._serve_events()
        elif path == "/api/sessions":
            self._send_json_response(self.manager.get_all_sessions())
        elif path == "/api/usage":
            latest = self.monitor.latest_usage if self.monitor else None
            self._send_json_response(event_to_dict(latest) if latest else {})
        elif len(parts) == 3 and parts[:2] == ["api", "sessions"]:
            record = self.manager.get_session(parts[2])
            if record is None:
                self._send_json_error(404, f"Session '{parts[2]}' not found")
            else:
                self._send_json_response(record)
        elif len(parts) == 4 and parts[:2] == ["api", "sessions"] and parts[3] == "buffer":
            buffer = self.manager.get_buffer(parts[2])
            if buffer is None:
                self._send_json_error(404, f"Session '{parts[2]}' not found")
            else:
                self._send_json_response({"data": buffer.decode("utf-8", errors="replace")})
        else:
            self._send_json_error(404, "Not Found")

    # -----------------------------------------------------------------
    # Event stream
    # -----------------------------------------------------------------

    def _serve_events(self) -> None:
        """Stream events as SSE, starting with the current session list."""
        sub = self.bus.subscribe(maxsize=LIMITS.viewer_queue_size)
        try:
            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Cache-Control", "no-cache")
            self.send_header("Access-Control-Allow-Origin", "*")
            self.end_headers()

            self._write_event(event_to_dict(SessionsChanged(self.manager.get_all_sessions())))
            if self.monitor is not None and self.monitor.latest_usage is not None:
                self._write_event(event_to_dict(self.monitor.latest_usage))

            while not self.shutting_down.is_set():
                event = sub.get(timeout=KEEPALIVE_INTERVAL)
                if event is None:
                    self.wfile.write(b": keepalive\n\n")
                    self.wfile.flush()
                    continue
                self._write_event(event_to_dict(event))
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Event stream client disconnected")
        finally:
            sub.close()

    def _write_event(self, data: dict) -> None:
        payload = json.dumps(data, default=str)
        self.wfile.write(f"event: {data['type']}\ndata: {payload}\n\n".encode("utf-8"))
        self.wfile.flush()

    # -----------------------------------------------------------------
    # Control API (POST / PUT / DELETE)
    # -----------------------------------------------------------------

    def _read_json_body(self) -> Optional[dict]:
        """Read and parse JSON body from request. Returns None on error."""
        try:
            content_length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            self._send_json_error(400, "Invalid Content-Length")
            return None
        if content_length == 0:
            return {}
        try:
            body = self.rfile.read(content_length)
            data = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.debug(f"Malformed request body: {e}")
            self._send_json_error(400, f"Invalid JSON body: {e}")
            return None
        if not isinstance(data, dict):
            self._send_json_error(400, "JSON body must be an object")
            return None
        return data

    def _send_json_response(self, data, status: int = 200) -> None:
        """Send a JSON response with the given status code."""
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(body)

    def _send_json_error(self, status: int, message: str) -> None:
        self._send_json_response({"ok": False, "error": message}, status=status)

    def _route_control(self, method: str) -> None:
        path = urlparse(self.path).path.rstrip("/")
        body = self._read_json_body()
        if body is None:
            return  # Error already sent

        try:
            result = self._dispatch_control(method, path, body)
            self._send_json_response(result)
        except ControlError as e:
            self._send_json_error(e.status, str(e))

    def _dispatch_control(self, method: str, path: str, body: dict) -> dict:
        """Dispatch a control request to the appropriate handler."""
        parts = path.strip("/").split("/")
        m = self.manager

        if parts[:2] != ["api", "sessions"]:
            raise ControlError(f"Unknown {method} endpoint: {path}", status=404)

        if method == "POST":
            if len(parts) == 2:
                return api.create_session(m, body)
            if len(parts) == 4:
                session_id, action = parts[2], parts[3]
                handler = {
                    "input": api.send_input,
                    "archive": api.archive_session,
                    "unarchive": api.unarchive_session,
                    "resize": api.resize_session,
                }.get(action)
                if handler is not None:
                    return handler(m, session_id, body)

        elif method == "PUT":
            if len(parts) == 4 and parts[3] == "name":
                return api.rename_session(m, parts[2], body)

        elif method == "DELETE":
            if len(parts) == 3:
                return api.delete_session(m, parts[2], body)

        raise ControlError(f"Unknown {method} endpoint: {path}", status=404)

    def do_OPTIONS(self) -> None:
        """Handle CORS preflight requests."""
        self.send_response(204)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PUT, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Access-Control-Max-Age", "86400")
        self.end_headers()

    def do_POST(self) -> None:
        self._route_control("POST")

    def do_PUT(self) -> None:
        self._route_control("PUT")

    def do_DELETE(self) -> None:
        self._route_control("DELETE")

    def log_message(self, format: str, *args) -> None:
        """Route request logs through logging; successful API calls at debug."""
        if args and len(args) >= 2 and str(args[1]).startswith("2"):
            logger.debug(format % args)
        else:
            logger.info(format % args)


def find_available_port(start_port: int = 3001, host: str = "127.0.0.1",
                        max_attempts: int = MAX_PORT_ATTEMPTS) -> int:
    """Find an available port starting from start_port."""
    for i in range(max_attempts):
        port = start_port + i
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, port))
                return port
        except OSError:
            continue
    raise RuntimeError(
        f"Could not find available port in range {start_port}-{start_port + max_attempts - 1}"
    )


def make_server(
    manager: SessionManager,
    bus: EventBus,
    monitor: Optional[TrackerMonitor] = None,
    host: str = "127.0.0.1",
    port: int = 3001,
) -> ThreadingHTTPServer:
    """Build a server bound to (host, port); port 0 picks a free one."""
    handler = type(
        "BoundAgentdeckHandler",
        (AgentdeckHandler,),
        {"manager": manager, "bus": bus, "monitor": monitor, "shutting_down": threading.Event()},
    )
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    return server


def run_server(
    manager: SessionManager,
    bus: EventBus,
    monitor: Optional[TrackerMonitor] = None,
    host: str = "127.0.0.1",
    port: int = 3001,
) -> None:
    """Serve until interrupted, then stop streams and kill every session."""
    server = make_server(manager, bus, monitor, host, port)
    bound_host, bound_port = server.server_address[:2]
    logger.info(f"Listening on http://{bound_host}:{bound_port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        server.RequestHandlerClass.shutting_down.set()
        server.server_close()
        if monitor is not None:
            monitor.stop(timeout=2.0)
        manager.kill_all()
