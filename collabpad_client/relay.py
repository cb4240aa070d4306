"""릴레이 TCP 연결 (JSON-lines 송수신)."""

from __future__ import annotations

import json
import logging
import socket
import threading
from typing import Any, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)


class TransportUnavailable(ConnectionError):
    """릴레이 서버에 연결할 수 없음 → 로컬 전용 편집으로 전환."""


class RelayConnection:
    def __init__(
        self,
        on_event: Callable[[Dict[str, Any]], None],
        on_disconnect: Optional[Callable[[], None]] = None,
    ):
        self._on_event = on_event
        self._on_disconnect = on_disconnect
        self._sock: Optional[socket.socket] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._writer_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect_to(self, host: str, port: int, timeout: float = 5.0) -> None:
        with self._state_lock:
            if self._sock is not None:
                return
            try:
                s = socket.create_connection((host, port), timeout=timeout)
                s.settimeout(None)
            except OSError as exc:
                raise TransportUnavailable(f"connect failed: {host}:{port}: {exc}") from exc
            self._sock = s
            self._closing = False
            self._reader_thread = threading.Thread(target=self._reader_loop, args=(s,), daemon=True)
            self._reader_thread.start()
        LOGGER.info("relay connected: %s:%s", host, port)

    def close(self) -> None:
        """사용자 요청에 의한 종료 (disconnect 콜백 호출 안 함)."""
        self._closing = True
        self._teardown(self._sock)

    def _teardown(self, sock: Optional[socket.socket]) -> bool:
        with self._state_lock:
            if sock is None or self._sock is not sock:
                return False
            self._sock = None
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass
        return True

    def _reader_loop(self, sock: socket.socket) -> None:
        buf = b""
        try:
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                buf += chunk
                while b"\n" in buf:
                    line, buf = buf.split(b"\n", 1)
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        msg = json.loads(line.decode("utf-8"))
                    except (UnicodeDecodeError, json.JSONDecodeError) as e:
                        LOGGER.warning("bad json from relay: %s", e)
                        continue
                    if isinstance(msg, dict):
                        self._on_event(msg)
        except OSError as e:
            LOGGER.debug("relay reader stopped: %s", e)
        finally:
            dropped = self._teardown(sock)
            if dropped and not self._closing and self._on_disconnect is not None:
                self._on_disconnect()

    def send_json(self, obj: Dict[str, Any]) -> bool:
        sock = self._sock
        if sock is None:
            return False
        data = (json.dumps(obj, ensure_ascii=False) + "\n").encode("utf-8")
        with self._writer_lock:
            try:
                sock.sendall(data)
            except OSError as e:
                LOGGER.warning("relay send failed: %s", e)
                return False
        return True


__all__ = [
    "RelayConnection",
    "TransportUnavailable",
]
