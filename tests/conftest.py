"""공용 pytest 픽스처: 가짜 소켓/타이머와 서버 구성 요소."""

import json
import time
from typing import Any, Callable, Dict, List

import pytest
from fastapi.testclient import TestClient

from collabpad_server.documents import DocumentStore
from collabpad_server.http_api import create_app
from collabpad_server.hub import Connection, RelayHub
from collabpad_server.lifecycle import SessionManager


class FakeSocket:
    """sendall로 보낸 JSON line을 기록하는 소켓 대용."""

    def __init__(self, fail_send: bool = False):
        self.sent: List[bytes] = []
        self.closed = False
        self.fail_send = fail_send

    def sendall(self, data: bytes) -> None:
        if self.fail_send:
            raise BrokenPipeError("peer gone")
        self.sent.append(data)

    def shutdown(self, how: int) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def events(self, ev: str = None) -> List[Dict[str, Any]]:
        lines = b"".join(self.sent).splitlines()
        decoded = [json.loads(line) for line in lines if line.strip()]
        if ev is None:
            return decoded
        return [m for m in decoded if m.get("ev") == ev]

    def clear(self) -> None:
        self.sent.clear()


class FakeTimer:
    def __init__(self, interval: float, function: Callable[..., None], args: tuple):
        self.interval = interval
        self.function = function
        self.args = args
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """취소 여부와 무관하게 콜백 실행 (이미 실행 중이던 타이머 재현)."""
        self.function(*self.args)


class FakeTimerFactory:
    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, interval, function, args):
        timer = FakeTimer(interval, function, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]

    def fire_pending(self) -> None:
        for timer in self.pending:
            timer.fire()


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def manager(timers):
    mgr = SessionManager(session_ttl=3600, timer_factory=timers)
    yield mgr
    mgr.shutdown()


@pytest.fixture
def hub(manager):
    relay = RelayHub(manager)
    yield relay
    relay.shutdown()


@pytest.fixture
def attach(hub):
    """가짜 소켓으로 연결을 만들고 welcome 이벤트를 비운다."""
    counter = iter(range(40000, 50000))

    def _attach(fail_send: bool = False) -> Connection:
        sock = FakeSocket(fail_send=fail_send)
        conn = hub.new_connection(sock, ("127.0.0.1", next(counter)))
        sock.clear()
        return conn

    return _attach


@pytest.fixture
def documents(tmp_path):
    return DocumentStore(tmp_path / "documents")


@pytest.fixture
def client(manager, documents):
    app = create_app(manager, documents)
    with TestClient(app) as test_client:
        yield test_client


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
