"""릴레이: 연결 관리 및 세션 단위 이벤트 팬아웃."""

from __future__ import annotations

import logging
import socket
import threading
import time
import uuid
from typing import Dict, Iterable, Optional

from . import protocol as proto
from .lifecycle import NOT_FOUND_MESSAGE, LeaveResult, SessionManager, SessionNotFound
from .protocol import ProtocolError, encode_message, make_event

LOGGER = logging.getLogger(__name__)


class Connection:
    """TCP 연결 상태. 소켓은 전송 계층 소유."""

    def __init__(self, cid: str, sock: socket.socket, addr: tuple[str, int]):
        self.id = cid
        self.socket = sock
        self.addr = addr
        self.alive = True
        self._writer_lock = threading.Lock()
        self.last_seen = time.monotonic()

    def send(self, payload: Dict[str, object]) -> None:
        if not self.alive:
            raise ConnectionError("connection closed")
        data = encode_message(payload)
        with self._writer_lock:
            try:
                self.socket.sendall(data)
            except OSError as exc:
                self.alive = False
                raise ConnectionError("send failed") from exc

    def close(self) -> None:
        if not self.alive:
            return
        self.alive = False
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        finally:
            try:
                self.socket.close()
            except OSError:
                pass

    def touch(self) -> None:
        self.last_seen = time.monotonic()


class RelayHub:
    """연결 → 세션 라우팅과 '발신자 제외' 브로드캐스트를 담당."""

    def __init__(self, manager: SessionManager, *, heartbeat_timeout: int = 120) -> None:
        self.manager = manager
        self.heartbeat_timeout = heartbeat_timeout
        self.connections: Dict[str, Connection] = {}
        self._connections_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._watchdog_thread: Optional[threading.Thread] = None

    def start_watchdog(self) -> None:
        if self._watchdog_thread is not None:
            return
        self._watchdog_thread = threading.Thread(target=self._watchdog_loop, daemon=True)
        self._watchdog_thread.start()

    # ---------- 연결 관리 ----------
    def new_connection(self, sock: socket.socket, addr: tuple[str, int]) -> Connection:
        cid = f"C-{uuid.uuid4().hex[:8]}"
        conn = Connection(cid, sock, addr)
        with self._connections_lock:
            self.connections[cid] = conn
        LOGGER.info("connection opened: %s %s", cid, addr)
        self._safe_send(conn, make_event(proto.EV_WELCOME, connectionId=cid))
        return conn

    def unregister_connection(self, conn: Connection) -> None:
        with self._connections_lock:
            known = self.connections.pop(conn.id, None) is not None
        conn.close()
        # 다른 스레드가 먼저 해제했더라도 그 사이 들어온 join을 정리
        for result in self.manager.disconnect(conn.id):
            self._announce_leave(result)
        if known:
            LOGGER.info("connection closed: %s", conn.id)

    # ---------- 라우팅 ----------
    def route_message(self, conn: Connection, message: Dict[str, object]) -> None:
        conn.touch()
        op = str(message.get("op", "")).lower()
        if not op:
            self.send_error(conn, "INVALID_OP", "missing op")
            return

        if op == proto.OP_JOIN:
            self._handle_join(conn, message)
        elif op == proto.OP_LEAVE:
            self._handle_leave(conn, message)
        elif op == proto.OP_CONTENT:
            self._handle_content(conn, message)
        elif op == proto.OP_TITLE:
            self._handle_title(conn, message)
        elif op == proto.OP_CURSOR:
            self._handle_cursor(conn, message)
        elif op == proto.OP_PING:
            self._safe_send(conn, make_event(proto.EV_PONG))
        else:
            self.send_error(conn, "UNKNOWN_OP", op)

    def _handle_join(self, conn: Connection, message: Dict[str, object]) -> None:
        session_id = _session_id(message)
        if not conn.alive or self._get_connection(conn.id) is not conn:
            LOGGER.debug("join ignored: %s already unregistered", conn.id)
            return
        try:
            result = self.manager.join(session_id, conn.id)
        except SessionNotFound:
            LOGGER.info("join rejected: %s -> %s (not found)", conn.id, session_id)
            self.send_error(conn, "SESSION_NOT_FOUND", NOT_FOUND_MESSAGE, sessionId=session_id)
            return
        self._safe_send(
            conn,
            make_event(
                proto.EV_LOAD,
                sessionId=result.session_id,
                title=result.title,
                content=result.content,
                activeUsers=result.active_users,
            ),
        )
        if result.added:
            self._broadcast(
                result.others,
                make_event(
                    proto.EV_JOINED,
                    sessionId=result.session_id,
                    userId=conn.id,
                    activeUsers=result.active_users,
                ),
            )

    def _handle_leave(self, conn: Connection, message: Dict[str, object]) -> None:
        result = self.manager.leave(_session_id(message), conn.id)
        if result is not None:
            self._announce_leave(result)

    def _handle_content(self, conn: Connection, message: Dict[str, object]) -> None:
        session_id = _session_id(message)
        content = message.get("content")
        if not isinstance(content, str):
            self.send_error(conn, "INVALID_PAYLOAD", "content must be a string")
            return
        targets = self.manager.update_content(session_id, conn.id, content)
        if targets is None:
            LOGGER.debug("content-change dropped: %s not in %s", conn.id, session_id)
            return
        self._broadcast(
            targets,
            make_event(
                proto.EV_CONTENT,
                sessionId=session_id,
                content=content,
                cursorPosition=message.get("cursorPosition"),
                userId=conn.id,
            ),
        )

    def _handle_title(self, conn: Connection, message: Dict[str, object]) -> None:
        session_id = _session_id(message)
        title = message.get("title")
        if not isinstance(title, str):
            self.send_error(conn, "INVALID_PAYLOAD", "title must be a string")
            return
        targets = self.manager.update_title(session_id, conn.id, title)
        if targets is None:
            LOGGER.debug("title-change dropped: %s not in %s", conn.id, session_id)
            return
        self._broadcast(
            targets,
            make_event(proto.EV_TITLE, sessionId=session_id, title=title, userId=conn.id),
        )

    def _handle_cursor(self, conn: Connection, message: Dict[str, object]) -> None:
        session_id = _session_id(message)
        targets = self.manager.peers(session_id, conn.id)
        if targets is None:
            LOGGER.debug("cursor-move dropped: %s not in %s", conn.id, session_id)
            return
        self._broadcast(
            targets,
            make_event(
                proto.EV_CURSOR,
                sessionId=session_id,
                userId=conn.id,
                position=message.get("position"),
            ),
        )

    # ---------- 헬퍼 ----------
    def _announce_leave(self, result: LeaveResult) -> None:
        self._broadcast(
            result.remaining,
            make_event(
                proto.EV_LEFT,
                sessionId=result.session_id,
                userId=result.connection_id,
                activeUsers=result.active_users,
            ),
        )

    def _safe_send(self, conn: Connection, payload: Dict[str, object]) -> None:
        if not conn.alive:
            return
        try:
            conn.send(payload)
        except ConnectionError:
            self.unregister_connection(conn)
        except ProtocolError as exc:
            LOGGER.error("protocol encode failed: %s", exc)

    def send_error(self, conn: Connection, code: str, message: str = "", **extra: object) -> None:
        self._safe_send(conn, make_event(proto.EV_ERROR, code=code, message=message, **extra))

    def _broadcast(self, targets: Iterable[str], payload: Dict[str, object]) -> None:
        # targets는 이미 발신자가 제외된 참여자 목록
        for cid in targets:
            conn = self._get_connection(cid)
            if conn is None:
                continue
            self._safe_send(conn, payload)

    def _get_connection(self, cid: str) -> Optional[Connection]:
        with self._connections_lock:
            return self.connections.get(cid)

    # ---------- 워치독 ----------
    def _watchdog_loop(self) -> None:
        while not self._stop_event.wait(10):
            self.reap_stale()

    def reap_stale(self, now: Optional[float] = None) -> None:
        now = time.monotonic() if now is None else now
        stale: list[Connection] = []
        with self._connections_lock:
            for conn in list(self.connections.values()):
                if not conn.alive:
                    stale.append(conn)
                elif self.heartbeat_timeout and now - conn.last_seen > self.heartbeat_timeout:
                    stale.append(conn)
        for conn in stale:
            LOGGER.info("connection timeout: %s", conn.id)
            self.unregister_connection(conn)

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._watchdog_thread is not None:
            self._watchdog_thread.join(timeout=1.0)
        with self._connections_lock:
            connections = list(self.connections.values())
        for conn in connections:
            self.unregister_connection(conn)


def _session_id(message: Dict[str, object]) -> str:
    return str(message.get("sessionId") or "").strip()


__all__ = [
    "Connection",
    "RelayHub",
]
