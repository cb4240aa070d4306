"""협업 세션 상태 및 인메모리 세션 저장소."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Document"
MAX_ID_ATTEMPTS = 5


class IdentifierGenerationFailure(RuntimeError):
    """세션 식별자 생성 실패 (호출자가 재시도 가능)."""


@dataclass
class Session:
    """단일 공유 문서의 제목/내용/참여자 상태."""

    id: str
    title: str = DEFAULT_TITLE
    content: str = ""
    participants: Set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    expiry_timer: Optional[Any] = field(default=None, repr=False)
    expiry_generation: int = field(default=0, repr=False)
    closed: bool = False

    @property
    def active_users(self) -> int:
        return len(self.participants)

    def snapshot_payload(self) -> Dict[str, object]:
        # lock 보유 상태에서 호출
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "activeUsers": self.active_users,
        }


def new_session_id() -> str:
    return str(uuid.uuid4())


class SessionStore:
    """세션 ID → Session 매핑. 맵 자체만 잠그고 세션 필드는 Session.lock이 보호."""

    def __init__(self, *, id_factory: Callable[[], str] = new_session_id) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._id_factory = id_factory

    def create(self, title: Optional[str] = None, content: Optional[str] = None) -> Session:
        for _ in range(MAX_ID_ATTEMPTS):
            try:
                sid = self._id_factory()
            except Exception as exc:
                raise IdentifierGenerationFailure("session id generation failed") from exc
            if not sid:
                continue
            with self._lock:
                if sid in self._sessions:
                    LOGGER.warning("session id collision: %s", sid)
                    continue
                session = Session(sid, title or DEFAULT_TITLE, content or "")
                self._sessions[sid] = session
            return session
        raise IdentifierGenerationFailure(
            f"no unique session id after {MAX_ID_ATTEMPTS} attempts"
        )

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions


__all__ = [
    "DEFAULT_TITLE",
    "IdentifierGenerationFailure",
    "Session",
    "SessionStore",
    "new_session_id",
]
