"""collabpad 서버 진입점 (TCP 릴레이 + HTTP API)."""

from __future__ import annotations

import argparse
import logging
import socket
import threading
from pathlib import Path
from typing import Optional

import uvicorn

from .documents import DocumentStore
from .http_api import create_app
from .hub import Connection, RelayHub
from .lifecycle import SESSION_TTL_SECONDS, SessionManager
from .protocol import JsonLineFramer, ProtocolError

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    project_root = Path(__file__).resolve().parent.parent
    parser = argparse.ArgumentParser(description="collabpad - collaborative notepad server")
    parser.add_argument("--host", default="0.0.0.0", help="릴레이 바인드 호스트 (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=5055, help="릴레이 포트 (default: 5055)")
    parser.add_argument("--backlog", type=int, default=128, help="listen backlog 크기")
    parser.add_argument("--http-host", default="0.0.0.0", help="HTTP 바인드 호스트")
    parser.add_argument("--http-port", type=int, default=3000, help="HTTP 포트 (default: 3000)")
    parser.add_argument("--public-url", default=None, help="공유 링크 기준 URL (미지정 시 요청 주소 사용)")
    parser.add_argument("--session-ttl", type=float, default=SESSION_TTL_SECONDS, help="빈 세션 만료 시간(초)")
    parser.add_argument("--heartbeat-timeout", type=int, default=120, help="연결 타임아웃(초)")
    parser.add_argument("--documents-dir", type=Path, default=project_root / "documents", help="문서 저장 경로")
    parser.add_argument("--log-level", default="INFO", help="로그 레벨 (DEBUG/INFO/...)")
    return parser.parse_args(argv)


def client_worker(hub: RelayHub, conn: Connection) -> None:
    framer = JsonLineFramer()
    sock = conn.socket
    try:
        while conn.alive:
            chunk = sock.recv(4096)
            if not chunk:
                break
            try:
                messages = framer.feed(chunk)
            except ProtocolError as exc:
                hub.send_error(conn, "BAD_JSON", str(exc))
                break
            for msg in messages:
                if not isinstance(msg, dict):
                    hub.send_error(conn, "BAD_JSON", "message must be object")
                    continue
                try:
                    hub.route_message(conn, msg)
                except Exception as exc:
                    LOGGER.exception("route_message failed: connection=%s", conn.id)
                    hub.send_error(conn, "SERVER_ERROR", str(exc))
                    break
    except (ConnectionError, OSError):
        pass
    finally:
        hub.unregister_connection(conn)


class RelayListener:
    """릴레이 TCP accept 루프. 연결마다 client_worker 스레드를 띄운다."""

    def __init__(self, hub: RelayHub, host: str, port: int, *, backlog: int = 128) -> None:
        self.hub = hub
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((host, port))
        self._sock.listen(backlog)
        self._sock.settimeout(0.5)
        self.address: tuple[str, int] = self._sock.getsockname()[:2]
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        LOGGER.info("relay listening on %s:%s", *self.address)

    def serve_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            conn.settimeout(None)
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            connection = self.hub.new_connection(conn, addr)
            threading.Thread(target=client_worker, args=(self.hub, connection), daemon=True).start()

    def close(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        try:
            self._sock.close()
        except OSError:
            pass


def run_server(args: argparse.Namespace) -> None:
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    manager = SessionManager(session_ttl=args.session_ttl)
    hub = RelayHub(manager, heartbeat_timeout=args.heartbeat_timeout)
    documents = DocumentStore(args.documents_dir)
    app = create_app(manager, documents, public_url=args.public_url)

    listener = RelayListener(hub, args.host, args.port, backlog=args.backlog)
    listener.start()
    hub.start_watchdog()
    LOGGER.info("documents saved in: %s", documents.root)

    try:
        uvicorn.run(app, host=args.http_host, port=args.http_port, log_level=args.log_level.lower())
    except KeyboardInterrupt:
        LOGGER.info("KeyboardInterrupt → shutting down")
    finally:
        listener.close()
        hub.shutdown()
        manager.shutdown()


def main() -> None:
    args = parse_args()
    run_server(args)


if __name__ == "__main__":
    main()
