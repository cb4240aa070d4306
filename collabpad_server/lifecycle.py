"""세션 생성/참여/이탈 및 만료 정책."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from .store import Session, SessionStore

LOGGER = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 3600.0
NOT_FOUND_MESSAGE = "session does not exist or has expired"


class SessionNotFound(LookupError):
    """존재하지 않거나 만료된 세션."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session does not exist or has expired: {session_id}")
        self.session_id = session_id


@dataclass(frozen=True)
class JoinResult:
    session_id: str
    title: str
    content: str
    active_users: int
    added: bool
    others: Tuple[str, ...]


@dataclass(frozen=True)
class LeaveResult:
    session_id: str
    connection_id: str
    active_users: int
    remaining: Tuple[str, ...]


def daemon_timer(interval: float, function: Callable[..., None], args: tuple) -> threading.Timer:
    timer = threading.Timer(interval, function, args=args)
    timer.daemon = True
    return timer


class SessionManager:
    """세션 멤버십과 만료 타이머를 관리.

    잠금 순서는 항상 Session.lock → 인덱스 lock. 저장소 맵 lock은
    조회/삭제 동안만 잡는다.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        *,
        session_ttl: float = SESSION_TTL_SECONDS,
        timer_factory: Callable[..., object] = daemon_timer,
    ) -> None:
        self.store = store if store is not None else SessionStore()
        self.session_ttl = session_ttl
        self._timer_factory = timer_factory
        # connectionId → 참여 중인 sessionId 집합 (역인덱스)
        self._memberships: Dict[str, Set[str]] = {}
        self._index_lock = threading.Lock()

    # ---------- 생성/조회 ----------
    def create_session(self, title: Optional[str] = None, content: Optional[str] = None) -> Session:
        session = self.store.create(title, content)
        with session.lock:
            # 아무도 참여하지 않은 세션도 유예 시간 뒤 정리
            self._arm_expiry(session)
        LOGGER.info("session created: %s", session.id)
        return session

    def snapshot(self, session_id: str) -> Dict[str, object]:
        session = self._require(session_id)
        with session.lock:
            if session.closed:
                raise SessionNotFound(session_id)
            return session.snapshot_payload()

    def sessions_of(self, connection_id: str) -> Set[str]:
        with self._index_lock:
            return set(self._memberships.get(connection_id, ()))

    # ---------- 멤버십 ----------
    def join(self, session_id: str, connection_id: str) -> JoinResult:
        session = self._require(session_id)
        with session.lock:
            if session.closed:
                raise SessionNotFound(session_id)
            added = connection_id not in session.participants
            session.participants.add(connection_id)
            self._cancel_expiry(session)
            with self._index_lock:
                self._memberships.setdefault(connection_id, set()).add(session_id)
            result = JoinResult(
                session_id=session.id,
                title=session.title,
                content=session.content,
                active_users=session.active_users,
                added=added,
                others=_others(session, connection_id),
            )
        if added:
            LOGGER.info("join: %s -> %s (%d users)", connection_id, session_id, result.active_users)
        return result

    def leave(self, session_id: str, connection_id: str) -> Optional[LeaveResult]:
        """참여자가 아니면 None (멱등)."""
        session = self.store.get(session_id)
        if session is None:
            self._forget(connection_id, session_id)
            return None
        with session.lock:
            if connection_id not in session.participants:
                return None
            session.participants.discard(connection_id)
            with self._index_lock:
                self._discard_membership(connection_id, session_id)
            if not session.participants:
                self._arm_expiry(session)
            result = LeaveResult(
                session_id=session.id,
                connection_id=connection_id,
                active_users=session.active_users,
                remaining=tuple(session.participants),
            )
        LOGGER.info("leave: %s <- %s (%d users)", connection_id, session_id, result.active_users)
        return result

    def disconnect(self, connection_id: str) -> List[LeaveResult]:
        """연결 종료 시 참여 중이던 모든 세션에서 암묵적으로 이탈."""
        with self._index_lock:
            session_ids = self._memberships.pop(connection_id, set())
        results: List[LeaveResult] = []
        for session_id in sorted(session_ids):
            result = self.leave(session_id, connection_id)
            if result is not None:
                results.append(result)
        return results

    # ---------- 상태 변경 ----------
    def update_content(self, session_id: str, connection_id: str, content: str) -> Optional[Tuple[str, ...]]:
        """내용을 덮어쓰고(LWW) 팬아웃 대상 반환. 비참여자면 None."""
        session = self.store.get(session_id)
        if session is None:
            return None
        with session.lock:
            if session.closed or connection_id not in session.participants:
                return None
            session.content = content
            return _others(session, connection_id)

    def update_title(self, session_id: str, connection_id: str, title: str) -> Optional[Tuple[str, ...]]:
        session = self.store.get(session_id)
        if session is None:
            return None
        with session.lock:
            if session.closed or connection_id not in session.participants:
                return None
            session.title = title
            return _others(session, connection_id)

    def peers(self, session_id: str, connection_id: str) -> Optional[Tuple[str, ...]]:
        """상태를 바꾸지 않는 이벤트(커서)의 팬아웃 대상."""
        session = self.store.get(session_id)
        if session is None:
            return None
        with session.lock:
            if session.closed or connection_id not in session.participants:
                return None
            return _others(session, connection_id)

    # ---------- 만료 ----------
    def _arm_expiry(self, session: Session) -> None:
        # Session.lock 보유 상태에서 호출
        self._cancel_expiry(session)
        generation = session.expiry_generation
        timer = self._timer_factory(self.session_ttl, self._expire, (session.id, generation))
        session.expiry_timer = timer
        timer.start()

    def _cancel_expiry(self, session: Session) -> None:
        session.expiry_generation += 1
        timer, session.expiry_timer = session.expiry_timer, None
        if timer is not None:
            timer.cancel()

    def _expire(self, session_id: str, generation: int) -> None:
        session = self.store.get(session_id)
        if session is None:
            return
        with session.lock:
            if session.expiry_generation != generation or session.participants:
                # 재참여 후 남은 오래된 타이머
                return
            session.expiry_timer = None
            session.closed = True
            self.store.delete(session_id)
        LOGGER.info("session expired: %s", session_id)

    def shutdown(self) -> None:
        for session_id in self.store.ids():
            session = self.store.get(session_id)
            if session is None:
                continue
            with session.lock:
                self._cancel_expiry(session)
                session.closed = True
            self.store.delete(session_id)
        with self._index_lock:
            self._memberships.clear()

    # ---------- 헬퍼 ----------
    def _require(self, session_id: str) -> Session:
        session = self.store.get(session_id) if session_id else None
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _forget(self, connection_id: str, session_id: str) -> None:
        with self._index_lock:
            self._discard_membership(connection_id, session_id)

    def _discard_membership(self, connection_id: str, session_id: str) -> None:
        # _index_lock 보유 상태에서 호출
        sessions = self._memberships.get(connection_id)
        if sessions is None:
            return
        sessions.discard(session_id)
        if not sessions:
            del self._memberships[connection_id]


def _others(session: Session, connection_id: str) -> Tuple[str, ...]:
    return tuple(pid for pid in session.participants if pid != connection_id)


__all__ = [
    "JoinResult",
    "LeaveResult",
    "NOT_FOUND_MESSAGE",
    "SESSION_TTL_SECONDS",
    "SessionManager",
    "SessionNotFound",
    "daemon_timer",
]
