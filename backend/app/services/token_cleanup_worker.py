"""Background worker that deletes dead refresh and one-time tokens."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.database import SessionLocal
from app.services.one_time_token_service import one_time_token_service
from app.services.token_service import token_service

logger = logging.getLogger(__name__)


class TokenCleanupWorker:
    """Periodic sweep of revoked or expired token rows."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._removed_count: int = 0
        self._lock = threading.Lock()

    @property
    def interval(self) -> float:
        if self._interval is not None:
            return self._interval
        return settings.TOKEN_CLEANUP_INTERVAL_SECONDS

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="token-cleanup-worker", daemon=True)
        self._thread.start()
        logger.info("Token cleanup worker started (interval %.0fs)", self.interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Token cleanup worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "removed_count": self._removed_count,
        }

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Token cleanup sweep failed")
            self._heartbeat = time.time()
            self._stop_event.wait(max(1.0, self.interval))

    def run_once(self) -> Dict[str, int]:
        """Run both sweeps in a fresh session"""
        db = self._session_factory()
        try:
            return self.sweep(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def sweep(self, db: Session) -> Dict[str, int]:
        """
        Delete revoked or expired refresh tokens and expired one-time tokens

        Returns:
            Number of deleted rows per table
        """
        removed = {
            "refresh_tokens": token_service.cleanup_expired(db),
            "one_time_tokens": one_time_token_service.cleanup_expired(db),
        }
        with self._lock:
            self._removed_count += sum(removed.values())
        if any(removed.values()):
            logger.info(
                "Token cleanup removed %s refresh and %s one-time tokens",
                removed["refresh_tokens"],
                removed["one_time_tokens"],
            )
        return removed


token_cleanup_worker = TokenCleanupWorker()
