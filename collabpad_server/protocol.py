"""릴레이 채널의 JSON line 프레이밍/직렬화."""

from __future__ import annotations

import json
from typing import Any, Dict, List


MAX_MESSAGE_BYTES = 1_000_000  # 1MB 제한 (문서 전체가 한 줄에 실림)

# 클라이언트 → 서버 op
OP_JOIN = "join-session"
OP_LEAVE = "leave-session"
OP_CONTENT = "content-change"
OP_TITLE = "title-change"
OP_CURSOR = "cursor-move"
OP_PING = "ping"

# 서버 → 클라이언트 ev
EV_WELCOME = "welcome"
EV_LOAD = "load-content"
EV_CONTENT = "content-update"
EV_TITLE = "title-update"
EV_CURSOR = "cursor-update"
EV_JOINED = "user-joined"
EV_LEFT = "user-left"
EV_ERROR = "error"
EV_PONG = "pong"


class ProtocolError(Exception):
    """프레이밍/파싱 중 발생하는 예외."""


class JsonLineFramer:
    """TCP 스트림을 JSON line 단위로 분리하는 헬퍼."""

    def __init__(self, *, max_message_bytes: int = MAX_MESSAGE_BYTES) -> None:
        self._buffer = bytearray()
        self._max_message_bytes = max_message_bytes

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """새로운 바이트 청크를 넣고 완성된 메시지들을 반환."""
        if not chunk:
            return []
        self._buffer.extend(chunk)

        messages: List[Dict[str, Any]] = []
        while True:
            newline_index = self._buffer.find(b"\n")
            if newline_index == -1:
                break
            line = bytes(self._buffer[:newline_index]).strip()
            del self._buffer[: newline_index + 1]
            if not line:
                continue
            messages.append(parse_json_line(line))
        # 남은 버퍼는 아직 줄바꿈이 오지 않은 단일 메시지
        if len(self._buffer) > self._max_message_bytes:
            raise ProtocolError("message exceeds max size")
        return messages

    def flush(self) -> None:
        """버퍼 초기화."""
        self._buffer.clear()


def parse_json_line(line: bytes) -> Dict[str, Any]:
    """단일 JSON line을 dict로 파싱."""
    try:
        return json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"bad json: {exc}") from exc


def encode_message(obj: Dict[str, Any]) -> bytes:
    """dict를 JSON line 바이트로 직렬화."""
    try:
        payload = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"cannot encode message: {exc}") from exc
    return (payload + "\n").encode("utf-8")


def make_event(ev: str, **fields: Any) -> Dict[str, Any]:
    """서버 이벤트 dict 생성."""
    payload: Dict[str, Any] = {"ev": ev}
    payload.update(fields)
    return payload


__all__ = [
    "JsonLineFramer",
    "ProtocolError",
    "encode_message",
    "make_event",
    "parse_json_line",
]
