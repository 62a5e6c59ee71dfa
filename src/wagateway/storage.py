from __future__ import annotations

import asyncio
import os
import re
import shutil
from pathlib import Path

from .constants import SESSION_DIR_PREFIX
from .exceptions import InvalidSessionIdError

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_.\-]*$")

_FILE_LOCKS: dict[Path, asyncio.Lock] = {}


def lock_for(path: Path) -> asyncio.Lock:
    lock = _FILE_LOCKS.get(path)
    if lock is None:
        lock = asyncio.Lock()
        _FILE_LOCKS[path] = lock
    return lock


def validate_session_id(session_id: str) -> str:
    if not session_id or len(session_id) > 128 or not _SESSION_ID_RE.match(session_id):
        raise InvalidSessionIdError(session_id)
    return session_id


def session_dir(root: Path, session_id: str) -> Path:
    return root / f"{SESSION_DIR_PREFIX}{validate_session_id(session_id)}"


async def ensure_dir(path: Path) -> None:
    await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)


async def read_text(path: Path) -> str:
    return await asyncio.to_thread(path.read_text, "utf-8")


def _write_atomic(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(data, "utf-8")
    os.replace(tmp, path)


async def write_text_atomic(path: Path, data: str) -> None:
    """Write via a temp file + rename so readers never see a torn file."""

    async with lock_for(path):
        await asyncio.to_thread(_write_atomic, path, data)


async def remove_session_dir(root: Path, session_id: str) -> bool:
    path = session_dir(root, session_id)
    if not path.exists():
        return False
    await asyncio.to_thread(shutil.rmtree, path, True)
    return True


def _scan(root: Path) -> list[str]:
    if not root.is_dir():
        return []
    out: list[str] = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir() or not entry.name.startswith(SESSION_DIR_PREFIX):
            continue
        session_id = entry.name[len(SESSION_DIR_PREFIX) :]
        if session_id and _SESSION_ID_RE.match(session_id):
            out.append(session_id)
    return out


async def list_session_ids(root: Path) -> list[str]:
    """Session ids that have a `session-<id>` directory under `root`."""

    return await asyncio.to_thread(_scan, root)
