"""파일 기반 문서 저장소 (세션과 무관한 저장/불러오기/목록/삭제)."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List

LOGGER = logging.getLogger(__name__)

DOC_SUFFIX = ".txt"
_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]", re.IGNORECASE)


class DocumentNotFound(FileNotFoundError):
    """요청한 문서 파일이 없음."""


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_CHARS.sub("_", filename)


class DocumentStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, filename: str) -> Path:
        return self.root / f"{sanitize_filename(filename)}{DOC_SUFFIX}"

    def save(self, filename: str, content: str) -> str:
        """임시 파일에 쓴 뒤 교체. 정리된 파일 이름 반환."""
        name = sanitize_filename(filename)
        path = self._path(filename)
        tmp_fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="") as fp:
                fp.write(content)
            os.replace(tmp_path, path)
            LOGGER.debug("document saved: %s (%d chars)", name, len(content))
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        return name

    def load(self, filename: str) -> str:
        path = self._path(filename)
        try:
            with path.open("r", encoding="utf-8", newline="") as fp:
                return fp.read()
        except FileNotFoundError as exc:
            raise DocumentNotFound(sanitize_filename(filename)) from exc

    def list(self) -> List[str]:
        return sorted(
            path.name[: -len(DOC_SUFFIX)]
            for path in self.root.iterdir()
            if path.is_file() and path.name.endswith(DOC_SUFFIX)
        )

    def delete(self, filename: str) -> None:
        path = self._path(filename)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise DocumentNotFound(sanitize_filename(filename)) from exc
        LOGGER.info("document deleted: %s", path.name)


__all__ = [
    "DOC_SUFFIX",
    "DocumentNotFound",
    "DocumentStore",
    "sanitize_filename",
]
