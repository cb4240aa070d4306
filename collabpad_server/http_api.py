"""HTTP 엔드포인트: 협업 세션 생성/조회(조인 1단계) 및 문서 저장소."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .documents import DOC_SUFFIX, DocumentNotFound, DocumentStore, sanitize_filename
from .lifecycle import NOT_FOUND_MESSAGE, SessionManager, SessionNotFound
from .store import IdentifierGenerationFailure

LOGGER = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class SaveDocumentRequest(BaseModel):
    filename: Optional[str] = None
    content: str = ""


def share_url_for(base_url: str, session_id: str) -> str:
    return f"{base_url.rstrip('/')}/collaborate/{session_id}"


def create_app(
    manager: SessionManager,
    documents: DocumentStore,
    *,
    public_url: Optional[str] = None,
) -> FastAPI:
    app = FastAPI(title="collabpad")
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.manager = manager
    app.state.documents = documents

    @app.get("/health/live")
    def live() -> dict[str, str]:
        return {"status": "ok"}

    # ---------- 협업 세션 ----------
    @app.post("/api/collaborate/create")
    def create_session(body: CreateSessionRequest, request: Request):
        try:
            session = manager.create_session(body.title, body.content)
        except IdentifierGenerationFailure as exc:
            LOGGER.error("session create failed: %s", exc)
            return JSONResponse(
                status_code=503,
                content={"success": False, "error": "could not allocate session id", "retryable": True},
            )
        base = public_url or str(request.base_url)
        return {
            "success": True,
            "sessionId": session.id,
            "shareUrl": share_url_for(base, session.id),
        }

    @app.get("/api/collaborate/{session_id}")
    def get_session(session_id: str):
        try:
            snapshot = manager.snapshot(session_id)
        except SessionNotFound:
            return JSONResponse(status_code=404, content={"success": False, "error": NOT_FOUND_MESSAGE})
        return {"success": True, "session": snapshot}

    # ---------- 문서 저장소 ----------
    @app.post("/api/save")
    def save_document(body: SaveDocumentRequest):
        if not body.filename:
            return JSONResponse(status_code=400, content={"error": "Filename is required"})
        documents.save(body.filename, body.content)
        return {
            "success": True,
            "message": "Document saved successfully",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/load/{filename}")
    def load_document(filename: str):
        try:
            content = documents.load(filename)
        except DocumentNotFound:
            return JSONResponse(status_code=404, content={"error": "Document not found"})
        return {"success": True, "content": content, "filename": sanitize_filename(filename)}

    @app.get("/api/documents")
    def list_documents():
        names = documents.list()
        return {
            "success": True,
            "documents": [{"name": name, "fullName": f"{name}{DOC_SUFFIX}"} for name in names],
        }

    @app.delete("/api/delete/{filename}")
    def delete_document(filename: str):
        try:
            documents.delete(filename)
        except DocumentNotFound:
            return JSONResponse(status_code=404, content={"error": "Document not found"})
        return {"success": True, "message": "Document deleted successfully"}

    return app


__all__ = [
    "CreateSessionRequest",
    "SaveDocumentRequest",
    "create_app",
    "share_url_for",
]
