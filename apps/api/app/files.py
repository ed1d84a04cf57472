from __future__ import annotations

import re
import uuid
from pathlib import Path

from fastapi import UploadFile

from app.core.config import get_settings

UPLOAD_CHUNK_BYTES = 64 * 1024
_STORED_NAME_RE = re.compile(r"^[\w-]+\.\w+$")


def _base_dir(folder: str) -> Path:
    base = Path(get_settings().upload_dir) / folder
    base.mkdir(parents=True, exist_ok=True)
    return base


async def read_upload(upload: UploadFile, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes so oversized uploads are detected without buffering them whole."""
    chunks: list[bytes] = []
    received = 0
    while received <= limit:
        chunk = await upload.read(min(UPLOAD_CHUNK_BYTES, limit + 1 - received))
        if not chunk:
            break
        chunks.append(chunk)
        received += len(chunk)
    return b"".join(chunks)


def store_bytes(content: bytes, filename: str, *, folder: str) -> tuple[uuid.UUID, str]:
    file_id = uuid.uuid4()
    extension = Path(filename or "file.bin").suffix.lower() or ".bin"
    file_path = _base_dir(folder) / f"{file_id}{extension}"
    file_path.write_bytes(content)
    return file_id, str(file_path)


def stored_path(folder: str, stored_name: str) -> Path | None:
    """Resolve a stored file name inside ``folder``; ``None`` when the name is not a plain stored name."""
    if not _STORED_NAME_RE.match(stored_name):
        return None
    base = _base_dir(folder).resolve()
    candidate = (base / stored_name).resolve()
    if candidate.parent != base:
        return None
    return candidate


def remove_file(path: str | None) -> None:
    if not path:
        return
    Path(path).unlink(missing_ok=True)
