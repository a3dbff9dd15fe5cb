"""Concurrency-safe, on-disk storage for remote OAuth records.

The OAuth core itself only needs two records: the *pending authorization*
written right before the user is redirected, and the *server credential*
(token set plus client id) written after a successful exchange or refresh.
This module defines the narrow persistence interface (:class:`AuthStore`) the
service layer depends on and a JSON-file implementation
(:class:`DiskAuthStore`):

* **Atomicity** – writes use *temp-file + os.replace*.
* **Single use** – a pending authorization is consumed by atomic rename.
* **Concurrency** – per-server advisory lock for single-flight refresh.
* **Filename safety** – externally supplied identifiers are hashed before
  hitting the filesystem.

Environment variables
---------------------
MCP_OAUTH_STORAGE_DIR
    Base directory for all persisted data.
    Defaults to ``~/.mcp-remote-auth/auth`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Protocol, runtime_checkable

from mcp_remote_auth.remote_oauth.clock import Clock, default_clock
from mcp_remote_auth.remote_oauth.models import PendingAuthorization, ServerCredential

_LOG = logging.getLogger("mcp-remote-auth.remote_oauth.store")

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 16) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


def _read_json(path: Path) -> dict | None:
    try:
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return None


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.2) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break  # acquired!
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class AuthStore(Protocol):
    """Minimal persistence contract for the remote OAuth service."""

    # ----- pending authorizations ----------------------------------------- #
    def create_pending(self, record: PendingAuthorization) -> None: ...
    def get_pending(self, session_id: str) -> PendingAuthorization | None: ...
    def consume_pending(self, session_id: str) -> PendingAuthorization | None: ...
    def cleanup_expired_pending(self) -> int: ...

    # ----- credentials ----------------------------------------------------- #
    def save_credential(self, credential: ServerCredential) -> None: ...
    def load_credential(self, server_id: str) -> ServerCredential | None: ...
    def delete_credential(self, server_id: str) -> None: ...
    def credential_lock(self, server_id: str) -> AbstractContextManager[None]: ...


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskAuthStore(AuthStore):
    """JSON-file implementation of :class:`AuthStore`."""

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("MCP_OAUTH_STORAGE_DIR")
            or Path.home() / ".mcp-remote-auth" / "auth"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    # ---------------- pending authorizations ----------------------------- #
    def _pending_path(self, session_id: str) -> Path:
        if not _SESSION_ID_RE.match(session_id):
            raise ValueError("invalid session id")
        return self.base_dir / "pending" / f"{session_id}.json"

    def _consumed_path(self, session_id: str) -> Path:
        return self.base_dir / "pending" / "consumed" / f"{session_id}.json"

    def create_pending(self, record: PendingAuthorization) -> None:
        _atomic_write(self._pending_path(record.session_id), asdict(record))

    def get_pending(self, session_id: str) -> PendingAuthorization | None:
        try:
            data = _read_json(self._pending_path(session_id))
        except ValueError:
            return None
        return PendingAuthorization(**data) if data is not None else None

    def consume_pending(self, session_id: str) -> PendingAuthorization | None:
        """Return the record and atomically remove it (single use)."""
        try:
            src = self._pending_path(session_id)
        except ValueError:
            return None
        dst = self._consumed_path(session_id)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(src, dst)  # atomic rename – fails if concurrent consumer won
        except FileNotFoundError:
            return None
        try:
            data = _read_json(dst)
        finally:
            dst.unlink(missing_ok=True)
        return PendingAuthorization(**data) if data is not None else None

    def cleanup_expired_pending(self) -> int:
        pending_dir = self.base_dir / "pending"
        if not pending_dir.exists():
            return 0
        removed = 0
        now = self._clock()
        for p in pending_dir.glob("*.json"):
            try:
                data = _read_json(p)
            except ValueError:
                _LOG.warning("Removing unreadable pending record %s", p.name)
                p.unlink(missing_ok=True)
                removed += 1
                continue
            if data is not None and float(data.get("expires_at", 0)) <= now:
                p.unlink(missing_ok=True)
                removed += 1
        return removed

    # ---------------- credentials ---------------------------------------- #
    def _credential_path(self, server_id: str) -> Path:
        return self.base_dir / "credentials" / f"{_hash(server_id)}.json"

    def _credential_lock_path(self, server_id: str) -> Path:
        return self._credential_path(server_id).with_suffix(".lock")

    def save_credential(self, credential: ServerCredential) -> None:
        _atomic_write(self._credential_path(credential.server_id), credential.to_dict())

    def load_credential(self, server_id: str) -> ServerCredential | None:
        data = _read_json(self._credential_path(server_id))
        if data is None:
            return None
        if data.get("server_id") != server_id:
            _LOG.warning("Credential file server id mismatch for %s", server_id)
            return None
        return ServerCredential.from_dict(data)

    def delete_credential(self, server_id: str) -> None:
        self._credential_path(server_id).unlink(missing_ok=True)

    def credential_lock(self, server_id: str) -> AbstractContextManager[None]:
        """Fail fast (``TimeoutError``) when another refresh holds the lock."""
        return _file_lock(self._credential_lock_path(server_id), retries=0, delay=0)


# --------------------------------------------------------------------------- #
# Convenience – default singleton                                            #
# --------------------------------------------------------------------------- #

_default_store: DiskAuthStore | None = None


def default_store() -> DiskAuthStore:
    """Return a process-wide singleton :class:`DiskAuthStore`."""
    global _default_store  # noqa: PLW0603
    if _default_store is None:
        _default_store = DiskAuthStore()
    return _default_store
