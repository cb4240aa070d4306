#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
PyQt5 collabpad - 협업 메모장 클라이언트
------------------------------------------------
기능 요약
- 제목/본문 편집, 공유 링크 생성(Share) 및 링크로 참여(Join)
- HTTP로 세션 조회 → 릴레이 TCP에 join-session (2단계 참여)
- 서버 이벤트(load-content/content-update/title-update/user-joined/user-left) 적용
- 릴레이에 연결할 수 없으면 로컬 전용으로 계속 편집 (상태바에만 표시)
- Save: 서버 문서 저장소에 현재 내용 저장
"""

import argparse
import sys
from typing import Any, Dict, Optional

import httpx
from PyQt5 import QtCore, QtWidgets

from .session import CollabClient, SessionNotFound, parse_share_url


# =====================
# 스레드 → GUI 브리지
# =====================
class ClientBridge(QtCore.QObject):
    """릴레이 스레드의 콜백을 GUI 스레드 시그널로 넘긴다."""

    eventReceived = QtCore.pyqtSignal(dict)
    status = QtCore.pyqtSignal(str)


def doc_name_for(title: str) -> str:
    title = title.strip() or "Untitled Document"
    return "_".join(title.lower().split())


# =====================
# 메인 윈도우
# =====================
class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, api_url: str, relay_host: str, relay_port: int):
        super().__init__()
        self.setWindowTitle("collabpad")
        self.resize(900, 600)

        self.bridge = ClientBridge()
        self.http = httpx.Client(base_url=api_url, timeout=5.0)
        self.client = CollabClient(
            self.http,
            relay_host,
            relay_port,
            on_event=self.bridge.eventReceived.emit,
            on_status=self.bridge.status.emit,
        )
        self.applying_remote = False  # 원격 적용 중에는 textChanged 무시

        self._build_ui()

        self.bridge.eventReceived.connect(self.on_event)
        self.bridge.status.connect(self.set_status)

    # ---------- UI ----------
    def _build_ui(self):
        central = QtWidgets.QWidget()
        layout = QtWidgets.QVBoxLayout(central)

        top = QtWidgets.QHBoxLayout()
        self.ed_title = QtWidgets.QLineEdit("Untitled Document")
        self.ed_link = QtWidgets.QLineEdit()
        self.ed_link.setPlaceholderText("share link or session id")
        self.btn_share = QtWidgets.QPushButton("Share")
        self.btn_join = QtWidgets.QPushButton("Join")
        self.btn_save = QtWidgets.QPushButton("Save")
        self.lbl_users = QtWidgets.QLabel("")

        top.addWidget(QtWidgets.QLabel("Title:"))
        top.addWidget(self.ed_title, 2)
        top.addWidget(self.ed_link, 3)
        top.addWidget(self.btn_join)
        top.addWidget(self.btn_share)
        top.addWidget(self.btn_save)
        top.addWidget(self.lbl_users)

        self.text = QtWidgets.QPlainTextEdit()
        self.text.setPlaceholderText("Start typing ...")

        layout.addLayout(top)
        layout.addWidget(self.text)
        self.setCentralWidget(central)

        # status bar
        self.status = QtWidgets.QStatusBar()
        self.setStatusBar(self.status)

        # event bindings
        self.btn_share.clicked.connect(self.ui_share)
        self.btn_join.clicked.connect(self.ui_join)
        self.btn_save.clicked.connect(self.ui_save)
        self.text.textChanged.connect(self.on_text_changed)
        self.text.cursorPositionChanged.connect(self.on_cursor_moved)
        self.ed_title.textEdited.connect(self.on_title_edited)

    def set_status(self, s: str):
        self.status.showMessage(s, 5000)

    def set_users(self, count: int):
        self.lbl_users.setText(f"{count} {'user' if count == 1 else 'users'}")

    # ---------- 공유/참여 ----------
    @QtCore.pyqtSlot()
    def ui_share(self):
        try:
            session_id, share_url = self.client.create_session(self.ed_title.text(), self.text.toPlainText())
        except httpx.HTTPError as e:
            QtWidgets.QMessageBox.warning(self, "collabpad", f"Failed to create share link: {e}")
            return
        self.ed_link.setText(share_url)
        QtWidgets.QApplication.clipboard().setText(share_url)
        self.set_status("Share link copied to clipboard")
        self.join_session(session_id)

    @QtCore.pyqtSlot()
    def ui_join(self):
        raw = self.ed_link.text().strip()
        session_id = parse_share_url(raw) or raw
        if session_id:
            self.join_session(session_id)

    def join_session(self, session_id: str):
        try:
            snapshot = self.client.join(session_id)
        except SessionNotFound:
            QtWidgets.QMessageBox.warning(
                self, "collabpad", "This collaborative session does not exist or has expired."
            )
            return
        except httpx.HTTPError:
            QtWidgets.QMessageBox.warning(
                self, "collabpad", "Failed to connect to collaborative session. Please check your connection."
            )
            return
        self.apply_remote_snapshot(snapshot["title"], snapshot["content"])
        self.set_users(int(snapshot.get("activeUsers", 0)))

    @QtCore.pyqtSlot()
    def ui_save(self):
        payload = {"filename": doc_name_for(self.ed_title.text()), "content": self.text.toPlainText()}
        try:
            resp = self.http.post("/api/save", json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            self.set_status(f"Save failed: {e}")
            return
        self.set_status(f"Saved {payload['filename']}")

    # ---------- 이벤트 수신 ----------
    @QtCore.pyqtSlot(dict)
    def on_event(self, ev: Dict[str, Any]):
        et = ev.get("ev")
        if et == "load-content":
            self.apply_remote_snapshot(ev.get("title", ""), ev.get("content", ""))
            self.set_users(int(ev.get("activeUsers", 0)))

        elif et == "content-update":
            self.apply_remote_content(ev.get("content", ""))

        elif et == "title-update":
            self.applying_remote = True
            try:
                self.ed_title.setText(ev.get("title", ""))
            finally:
                self.applying_remote = False

        elif et in ("user-joined", "user-left"):
            self.set_users(int(ev.get("activeUsers", 0)))

        elif et == "error":
            self.set_status(f"Server error: {ev.get('message') or ev.get('code')}")

    # ---------- 로컬 편집 → 전송 ----------
    @QtCore.pyqtSlot()
    def on_text_changed(self):
        if self.applying_remote:
            return
        self.client.send_content(self.text.toPlainText(), self.text.textCursor().position())

    @QtCore.pyqtSlot()
    def on_cursor_moved(self):
        if self.applying_remote:
            return
        self.client.send_cursor(self.text.textCursor().position())

    @QtCore.pyqtSlot(str)
    def on_title_edited(self, title: str):
        if self.applying_remote:
            return
        self.client.send_title(title)

    # ---------- 원격 적용 ----------
    def apply_remote_snapshot(self, title: str, content: str):
        self.applying_remote = True
        try:
            self.ed_title.setText(title)
            self.text.blockSignals(True)
            self.text.setPlainText(content)
        finally:
            self.text.blockSignals(False)
            self.applying_remote = False

    def apply_remote_content(self, content: str):
        """전체 내용 교체 (LWW). 로컬 커서 위치는 유지."""
        old_pos = self.text.textCursor().position()
        self.applying_remote = True
        try:
            self.text.blockSignals(True)
            self.text.setPlainText(content)
            cursor = self.text.textCursor()
            cursor.setPosition(max(0, min(len(content), old_pos)))
            self.text.setTextCursor(cursor)
        finally:
            self.text.blockSignals(False)
            self.applying_remote = False

    def closeEvent(self, event):
        self.client.leave()
        self.client.close()
        self.http.close()
        super().closeEvent(event)


# =====================
# 진입점
# =====================
def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="collabpad - desktop client")
    parser.add_argument("link", nargs="?", default="", help="참여할 공유 링크 (선택)")
    parser.add_argument("--api", default="http://127.0.0.1:3000", help="HTTP API 주소")
    parser.add_argument("--relay-host", default="127.0.0.1", help="릴레이 호스트")
    parser.add_argument("--relay-port", type=int, default=5055, help="릴레이 포트")
    return parser.parse_args(argv)


def main():
    args = parse_args()
    app = QtWidgets.QApplication(sys.argv[:1])
    w = MainWindow(args.api, args.relay_host, args.relay_port)
    w.show()
    w.client.connect()
    session_id = parse_share_url(args.link) or args.link
    if session_id:
        w.join_session(session_id)
    sys.exit(app.exec_())


if __name__ == "__main__":
    main()
