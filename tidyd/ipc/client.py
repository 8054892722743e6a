"""HTTP client for the tidyd daemon control API."""

import json
import time
from typing import Any, Dict, Iterator, List, Optional

import httpx

from tidyd.ipc import protocol
from tidyd.ipc.protocol import ControlResult, DaemonStatus, RuleSummary
from tidyd.utils.event_log import LogEntry
from tidyd.utils.exceptions import ErrorCode, IPCError
from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 15.0
STREAM_READ_TIMEOUT = 30.0
MAX_RETRIES = 2
RETRY_DELAY = 1.0


class DaemonClient:
    """Synchronous client for a running daemon.

    Usage::

        with DaemonClient("http://127.0.0.1:7525") as client:
            print(client.status().state)
            for entry in client.tail():
                print(entry.message)
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        self.last_id = 0
        self.missed_entries = 0

    def __enter__(self) -> "DaemonClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            return self._client.request(method, path, params=params)
        except httpx.TimeoutException as e:
            raise IPCError(
                f"Daemon at {self._base_url} timed out",
                endpoint=path,
                error_code=ErrorCode.REQUEST_TIMEOUT,
                cause=e,
            )
        except httpx.TransportError as e:
            raise IPCError(
                f"Daemon not reachable at {self._base_url}",
                endpoint=path,
                error_code=ErrorCode.DAEMON_UNAVAILABLE,
                cause=e,
            )

    def _json(self, response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise IPCError(
                f"Malformed response from daemon (HTTP {response.status_code})",
                endpoint=path,
                error_code=ErrorCode.PROTOCOL_ERROR,
                cause=e,
            )

    def _get(self, path: str, params: Optional[dict] = None) -> Any:
        response = self._request("GET", path, params=params)
        if response.status_code != 200:
            message = self._json(response, path).get("message", response.reason_phrase)
            raise IPCError(message, endpoint=path, error_code=ErrorCode.PROTOCOL_ERROR)
        return self._json(response, path)

    def _control(self, path: str) -> ControlResult:
        """POST a control request.

        Returns:
            The daemon's answer; ``ok`` is False when it was rejected.

        Raises:
            IPCError: If the daemon is unreachable or did not answer in time.
        """
        response = self._request("POST", path)
        data = self._json(response, path)

        if response.status_code == 504:
            raise IPCError(
                data.get("message", "Daemon did not answer in time"),
                endpoint=path,
                error_code=ErrorCode.REQUEST_TIMEOUT,
            )
        if response.status_code not in (200, 409):
            raise IPCError(
                data.get("message", response.reason_phrase),
                endpoint=path,
                error_code=ErrorCode.PROTOCOL_ERROR,
            )
        return ControlResult.from_dict(data)

    # ------------------------------------------------------------------
    # Read endpoints
    # ------------------------------------------------------------------

    def status(self) -> DaemonStatus:
        return DaemonStatus.from_dict(self._get(protocol.STATUS_PATH))

    def rules(self) -> List[RuleSummary]:
        return [RuleSummary.from_dict(r) for r in self._get(protocol.RULES_PATH)]

    def log(self, after: int = 0) -> List[LogEntry]:
        """Retained entries with an id greater than ``after``."""
        data = self._get(protocol.LOG_PATH, params={"after": after})
        return [LogEntry.from_dict(e) for e in data]

    # ------------------------------------------------------------------
    # Control endpoints
    # ------------------------------------------------------------------

    def start(self) -> ControlResult:
        return self._control(protocol.START_PATH)

    def stop(self) -> ControlResult:
        return self._control(protocol.STOP_PATH)

    def reload(self) -> ControlResult:
        return self._control(protocol.RELOAD_PATH)

    def toggle_rule(self, index: int) -> ControlResult:
        return self._control(protocol.toggle_path(index))

    def clear_log(self) -> ControlResult:
        return self._control(protocol.CLEAR_LOG_PATH)

    # ------------------------------------------------------------------
    # Live log
    # ------------------------------------------------------------------

    def tail(self, after: int = 0, reconnect: bool = True) -> Iterator[LogEntry]:
        """Stream log entries: the retained backfill, then new entries.

        Identifiers are tracked in ``last_id``. Entries evicted or cleared
        while not being read show up as jumps in the identifiers and are
        counted in ``missed_entries``.

        Args:
            after: Only entries with a greater id are delivered.
            reconnect: Resume from ``last_id`` after a dropped connection.

        Yields:
            LogEntry values in id order.

        Raises:
            IPCError: If the daemon is or becomes unreachable.
        """
        self.last_id = after
        attempts = 0

        while True:
            try:
                for entry in self._stream(self.last_id):
                    attempts = 0
                    yield entry
                return
            except (httpx.RemoteProtocolError, httpx.ReadError, httpx.ReadTimeout) as e:
                if not reconnect or attempts >= MAX_RETRIES:
                    raise IPCError(
                        f"Lost connection to daemon at {self._base_url}",
                        endpoint=protocol.LOG_STREAM_PATH,
                        error_code=ErrorCode.DAEMON_UNAVAILABLE,
                        cause=e,
                    )
                attempts += 1
                logger.warning(
                    "Log stream dropped (attempt %d/%d), reconnecting...",
                    attempts,
                    MAX_RETRIES,
                )
                time.sleep(RETRY_DELAY)
            except httpx.TransportError as e:
                raise IPCError(
                    f"Daemon not reachable at {self._base_url}",
                    endpoint=protocol.LOG_STREAM_PATH,
                    error_code=ErrorCode.DAEMON_UNAVAILABLE,
                    cause=e,
                )

    def _stream(self, after: int) -> Iterator[LogEntry]:
        timeout = httpx.Timeout(self._timeout, read=STREAM_READ_TIMEOUT)
        params = {"after": after}

        with self._client.stream("GET", protocol.LOG_STREAM_PATH, params=params, timeout=timeout) as response:
            if response.status_code != 200:
                raise IPCError(
                    f"Log stream refused (HTTP {response.status_code})",
                    endpoint=protocol.LOG_STREAM_PATH,
                    error_code=ErrorCode.PROTOCOL_ERROR,
                )
            for line in response.iter_lines():
                if not line.strip():
                    continue
                entry = LogEntry.from_dict(self._parse_line(line))
                self._track(entry)
                yield entry

    def _parse_line(self, line: str) -> Dict[str, Any]:
        try:
            return json.loads(line)
        except ValueError as e:
            raise IPCError(
                "Malformed log stream line",
                endpoint=protocol.LOG_STREAM_PATH,
                error_code=ErrorCode.PROTOCOL_ERROR,
                cause=e,
            )

    def _track(self, entry: LogEntry) -> None:
        if self.last_id and entry.id > self.last_id + 1:
            self.missed_entries += entry.id - self.last_id - 1
        self.last_id = max(self.last_id, entry.id)
