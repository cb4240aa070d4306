"""
collabpad 클라이언트 패키지.

- relay: 릴레이 TCP 연결 (JSON-lines)
- session: HTTP 세션 조회 + 릴레이 attach, 재연결 시 재참여
- app: PyQt5 데스크톱 편집기
"""

from .relay import RelayConnection, TransportUnavailable
from .session import CollabClient, SessionNotFound, parse_share_url

__all__ = [
    "CollabClient",
    "RelayConnection",
    "SessionNotFound",
    "TransportUnavailable",
    "parse_share_url",
]
