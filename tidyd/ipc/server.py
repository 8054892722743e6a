"""
IPC Server
==========

Local HTTP control surface of the daemon.

Read endpoints answer from snapshots on the handler thread. Control
endpoints submit a request to the daemon's command queue and wait for the
scheduling loop to answer it, so requests are applied one at a time in
arrival order and never in the middle of a scan.
"""

import json
import socket
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Any, Optional
from urllib.parse import urlparse, parse_qs

from tidyd.ipc import protocol
from tidyd.ipc.protocol import ControlKind, ControlResult
from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_KEEPALIVE_SECS = 5.0

_CONTROL_ROUTES = {
    protocol.START_PATH: ControlKind.START,
    protocol.STOP_PATH: ControlKind.STOP,
    protocol.RELOAD_PATH: ControlKind.RELOAD,
    protocol.CLEAR_LOG_PATH: ControlKind.CLEAR_LOG,
}


class IPCRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the control API."""

    server_version = "tidyd"

    def log_message(self, format, *args):
        """Route access logging to the debug log."""
        logger.debug("%s - %s", self.address_string(), format % args)

    @property
    def controller(self):
        return self.server.controller

    def do_GET(self):
        """Handle GET requests."""
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/")
        query = parse_qs(parsed.query)

        if path == protocol.STATUS_PATH:
            self._send_json(self.controller.status().to_dict())
        elif path == protocol.RULES_PATH:
            self._send_json([r.to_dict() for r in self.controller.rule_summaries()])
        elif path == protocol.LOG_PATH:
            after = self._after_param(query)
            if after is not None:
                entries = self.controller.event_log.since(after)
                self._send_json([e.to_dict() for e in entries])
        elif path == protocol.LOG_STREAM_PATH:
            after = self._after_param(query)
            if after is not None:
                self._stream_log(after)
        else:
            self._send_error(404, f"Unknown endpoint: {parsed.path}")

    def do_POST(self):
        """Handle POST requests."""
        parsed = urlparse(self.path)
        path = parsed.path.rstrip("/")

        # Bodies carry nothing; drain them so the connection stays sane
        content_length = int(self.headers.get("Content-Length", 0) or 0)
        if content_length > 0:
            self.rfile.read(content_length)

        if path in _CONTROL_ROUTES:
            self._control(_CONTROL_ROUTES[path])
        elif path.startswith(protocol.RULES_PATH + "/") and path.endswith("/toggle"):
            raw_index = path[len(protocol.RULES_PATH) + 1:-len("/toggle")]
            try:
                index = int(raw_index)
            except ValueError:
                self._send_error(400, f"Invalid rule index: {raw_index}")
                return
            self._control(ControlKind.TOGGLE_RULE, index)
        else:
            self._send_error(404, f"Unknown endpoint: {parsed.path}")

    def _after_param(self, query) -> Optional[int]:
        raw = query.get("after", ["0"])[0]
        try:
            after = int(raw)
        except ValueError:
            after = -1
        if after < 0:
            self._send_error(400, f"Invalid 'after' value: {raw}")
            return None
        return after

    def _control(self, kind: ControlKind, payload: Any = None) -> None:
        future = self.controller.submit(kind, payload)
        timeout = self.controller.request_timeout
        try:
            result: ControlResult = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            self._send_json(
                ControlResult(False, f"Daemon did not answer within {timeout:g}s").to_dict(),
                status=504,
            )
            return

        self._send_json(result.to_dict(), status=200 if result.ok else 409)

    def _stream_log(self, after: int) -> None:
        """Send the backfill, then every new entry as newline-delimited JSON."""
        event_log = self.controller.event_log
        keepalive = self.server.keepalive_secs

        self.send_response(200)
        self.send_header("Content-Type", "application/x-ndjson")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()

        entries = event_log.since(after)
        try:
            while True:
                if entries:
                    for entry in entries:
                        self.wfile.write(json.dumps(entry.to_dict()).encode() + b"\n")
                    after = entries[-1].id
                else:
                    self.wfile.write(b"\n")
                self.wfile.flush()

                if self.server.closing.is_set():
                    break
                entries = event_log.wait_for(after, timeout=keepalive)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Log stream client disconnected")

    def _send_json(self, data: Any, status: int = 200):
        """Send JSON response."""
        body = json.dumps(data).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, status: int, message: str):
        self._send_json(ControlResult(False, message).to_dict(), status=status)


class _ControlHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, handler, controller, keepalive_secs: float):
        self.controller = controller
        self.keepalive_secs = keepalive_secs
        self.closing = threading.Event()
        if ":" in address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(address, handler)


class IPCServer:
    """Control server bound to a loopback address."""

    def __init__(
        self,
        controller,
        host: str = "127.0.0.1",
        port: int = 7525,
        keepalive_secs: float = DEFAULT_KEEPALIVE_SECS,
    ):
        """Initialize the IPC server.

        Args:
            controller: Daemon answering status, rules, log and control
                requests.
            host: Loopback host to bind to.
            port: Port to listen on (0 picks a free port).
            keepalive_secs: Interval of blank lines on idle log streams.
        """
        self.controller = controller
        self.host = host
        self.port = port
        self.keepalive_secs = keepalive_secs
        self._server: Optional[_ControlHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Bind and start serving in a background thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        if self._server is not None:
            return

        self._server = _ControlHTTPServer(
            (self.host, self.port),
            IPCRequestHandler,
            self.controller,
            self.keepalive_secs,
        )
        # Port 0 binds an ephemeral port
        self.port = self._server.server_address[1]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.5},
            daemon=True,
            name="IPCServer",
        )
        self._thread.start()

        logger.info(f"IPC server listening at {self.url}")

    def stop(self) -> None:
        """Stop the server and close the socket."""
        if self._server is None:
            return

        self._server.closing.set()
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
        self._server = None
        self._thread = None

        logger.info("IPC server stopped")

    @property
    def url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self.port}"
