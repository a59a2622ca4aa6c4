"""
In-process registry of download tokens for rendered videos.
Tokens expire after a fixed TTL; nothing is persisted across restarts.
"""
import os
import secrets
import threading
import time
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadToken:
    token: str
    artifact_path: str
    issued_at: float
    expires_at: float


class ArtifactTokenStore:
    def __init__(
        self,
        ttl_seconds: float = 1800,
        *,
        single_use: bool = False,
        owns_files: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.single_use = single_use
        self.owns_files = owns_files
        self._clock = clock
        self._entries: Dict[str, DownloadToken] = {}
        self._lock = threading.Lock()

    def issue(self, path: str) -> str:
        """Register a path under a fresh 256-bit token"""
        now = self._clock()
        token = secrets.token_hex(32)
        entry = DownloadToken(token=token, artifact_path=path, issued_at=now, expires_at=now + self.ttl_seconds)
        with self._lock:
            self._sweep_locked(now)
            self._entries[token] = entry
        logger.info(f"Issued download token {token[:8]}... for {path} (ttl={self.ttl_seconds}s)")
        return token

    def resolve(self, token: str) -> Optional[str]:
        """Return the artifact path for a live token, otherwise None"""
        if not token:
            return None
        with self._lock:
            self._sweep_locked(self._clock())
            if self.single_use:
                entry = self._entries.pop(token, None)
            else:
                entry = self._entries.get(token)
        return entry.artifact_path if entry else None

    def lookup(self, token: str) -> Optional[DownloadToken]:
        with self._lock:
            self._sweep_locked(self._clock())
            return self._entries.get(token)

    def sweep(self) -> int:
        """Evict every expired entry; returns how many were removed"""
        with self._lock:
            return self._sweep_locked(self._clock())

    def release_after_read(self, path: str) -> None:
        """Delete a streamed artifact in single-use mode once nothing else points at it"""
        if not (self.single_use and self.owns_files):
            return
        with self._lock:
            if self._is_referenced_locked(path):
                return
        _remove_quietly(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep_locked(self, now: float) -> int:
        expired = [t for t, e in self._entries.items() if now > e.expires_at]
        if not expired:
            return 0
        paths = {self._entries.pop(t).artifact_path for t in expired}
        logger.info(f"Evicted {len(expired)} expired download token(s)")
        if self.owns_files:
            for path in paths:
                if not self._is_referenced_locked(path):
                    _remove_quietly(path)
        return len(expired)

    def _is_referenced_locked(self, path: str) -> bool:
        return any(e.artifact_path == path for e in self._entries.values())


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
        logger.info(f"Removed artifact {path}")
    except OSError:
        pass
