"""협업 세션 클라이언트: HTTP 조회(1단계) + 릴레이 attach(2단계)."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from .relay import RelayConnection, TransportUnavailable

LOGGER = logging.getLogger(__name__)

SHARE_PATH = re.compile(r"/collaborate/([a-f0-9-]+)")


class SessionNotFound(LookupError):
    """세션이 없거나 만료됨."""


def parse_share_url(url: str) -> Optional[str]:
    match = SHARE_PATH.search(url or "")
    return match.group(1) if match else None


class CollabClient:
    """세션 참여 상태를 들고 있으며 재연결 시 join-session을 다시 보낸다.

    콜백은 릴레이 reader 스레드(또는 재연결 스레드)에서 호출된다.
    """

    def __init__(
        self,
        http: httpx.Client,
        relay_host: str,
        relay_port: int,
        *,
        on_event: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        connect_timeout: float = 5.0,
        heartbeat_interval: float = 30.0,
    ) -> None:
        self.http = http
        self.relay_host = relay_host
        self.relay_port = relay_port
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.connect_timeout = connect_timeout
        self.heartbeat_interval = heartbeat_interval
        self._on_event = on_event
        self._on_status = on_status
        self._relay = RelayConnection(self._handle_event, self._handle_disconnect)
        self._stop_event = threading.Event()
        self._reconnect_thread: Optional[threading.Thread] = None
        self._heartbeat_thread: Optional[threading.Thread] = None

        self.session_id: Optional[str] = None
        self.connection_id: Optional[str] = None
        self.collaborating = False
        self.title = ""
        self.content = ""
        self.active_users = 0

    @property
    def relay_connected(self) -> bool:
        return self._relay.connected

    # ---------- HTTP ----------
    def create_session(self, title: str, content: str) -> Tuple[str, str]:
        resp = self.http.post("/api/collaborate/create", json={"title": title, "content": content})
        resp.raise_for_status()
        data = resp.json()
        return data["sessionId"], data["shareUrl"]

    def fetch_session(self, session_id: str) -> Dict[str, Any]:
        resp = self.http.get(f"/api/collaborate/{session_id}")
        if resp.status_code == 404:
            raise SessionNotFound(resp.json().get("error") or session_id)
        resp.raise_for_status()
        return resp.json()["session"]

    # ---------- 참여 ----------
    def join(self, session_id: str) -> Dict[str, Any]:
        snapshot = self.fetch_session(session_id)
        if self.session_id and self.session_id != session_id:
            # 연결은 한 번에 하나의 세션에만 참여
            self.leave()
        self.session_id = session_id
        self.collaborating = True
        self.title = snapshot["title"]
        self.content = snapshot["content"]
        self.active_users = int(snapshot.get("activeUsers", 0))
        self.attach()
        return snapshot

    def connect(self) -> bool:
        try:
            self._relay.connect_to(self.relay_host, self.relay_port, timeout=self.connect_timeout)
        except TransportUnavailable as exc:
            LOGGER.warning("relay unavailable, local-only editing: %s", exc)
            self._status("Offline (local only)")
            return False
        self._start_heartbeat()
        return True

    def attach(self) -> bool:
        """릴레이 연결(필요 시) 후 join-session 전송. 실패 시 로컬 전용."""
        if not self.session_id:
            return False
        if not self._relay.connected and not self.connect():
            return False
        if not self._relay.send_json({"op": "join-session", "sessionId": self.session_id}):
            self._status("Offline (local only)")
            return False
        self._status("Collaborating")
        return True

    def leave(self) -> None:
        if self.session_id and self._relay.connected:
            self._relay.send_json({"op": "leave-session", "sessionId": self.session_id})
        self.session_id = None
        self.collaborating = False
        self.active_users = 0

    def close(self) -> None:
        self._stop_event.set()
        self._relay.close()
        if self._reconnect_thread is not None:
            self._reconnect_thread.join(timeout=self.reconnect_delay + self.connect_timeout)
        if self._heartbeat_thread is not None:
            self._heartbeat_thread.join(timeout=1.0)

    # ---------- 편집 전송 ----------
    def send_content(self, content: str, cursor_position: Optional[int] = None) -> bool:
        self.content = content
        return self._send(
            {"op": "content-change", "sessionId": self.session_id, "content": content, "cursorPosition": cursor_position}
        )

    def send_title(self, title: str) -> bool:
        self.title = title
        return self._send({"op": "title-change", "sessionId": self.session_id, "title": title})

    def send_cursor(self, position: int) -> bool:
        return self._send({"op": "cursor-move", "sessionId": self.session_id, "position": position})

    def _send(self, message: Dict[str, Any]) -> bool:
        if not self.collaborating or not self.session_id:
            return False
        return self._relay.send_json(message)

    # ---------- 릴레이 콜백 ----------
    def _handle_event(self, event: Dict[str, Any]) -> None:
        et = event.get("ev")
        if et == "welcome":
            self.connection_id = event.get("connectionId")
        elif event.get("sessionId") not in (None, self.session_id):
            # 이전 세션에서 늦게 도착한 이벤트
            return
        elif et == "load-content":
            self.title = event.get("title", "")
            self.content = event.get("content", "")
            self.active_users = int(event.get("activeUsers", self.active_users))
        elif et == "content-update":
            self.content = event.get("content", "")
        elif et == "title-update":
            self.title = event.get("title", "")
        elif et in ("user-joined", "user-left"):
            self.active_users = int(event.get("activeUsers", self.active_users))
        elif et == "error" and event.get("code") == "SESSION_NOT_FOUND":
            self.collaborating = False
            self._status("Session does not exist or has expired")
        if self._on_event is not None:
            self._on_event(event)

    def _handle_disconnect(self) -> None:
        if self._stop_event.is_set():
            return
        self._status("Reconnecting..." if self.collaborating else "Disconnected")
        self._reconnect_thread = threading.Thread(target=self._reconnect_loop, daemon=True)
        self._reconnect_thread.start()

    def _reconnect_loop(self) -> None:
        for attempt in range(1, self.reconnect_attempts + 1):
            if self._stop_event.wait(self.reconnect_delay):
                return
            try:
                self._relay.connect_to(self.relay_host, self.relay_port, timeout=self.connect_timeout)
            except TransportUnavailable as exc:
                LOGGER.info("reconnect attempt %d failed: %s", attempt, exc)
                continue
            # 서버는 새 연결의 이전 세션을 기억하지 않는다
            if self.collaborating and self.session_id:
                self.attach()
            else:
                self._status("Connected")
            return
        self._status("Offline (local only)")

    def _start_heartbeat(self) -> None:
        if self._heartbeat_thread is not None or self.heartbeat_interval <= 0:
            return
        self._heartbeat_thread = threading.Thread(target=self._heartbeat_loop, daemon=True)
        self._heartbeat_thread.start()

    def _heartbeat_loop(self) -> None:
        # 읽기만 하는 참여자도 서버 워치독에 끊기지 않도록 ping
        while not self._stop_event.wait(self.heartbeat_interval):
            if self._relay.connected:
                self._relay.send_json({"op": "ping"})

    def _status(self, text: str) -> None:
        if self._on_status is not None:
            self._on_status(text)


__all__ = [
    "CollabClient",
    "SessionNotFound",
    "parse_share_url",
]
