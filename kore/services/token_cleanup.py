"""Background collection of expired refresh tokens."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session

from kore.config import Settings, settings
from kore.core.database import SessionLocal
from kore.services.token_ledger import RefreshTokenLedger, token_ledger

logger = logging.getLogger(__name__)


class TokenCleanupWorker:
    """Periodically deletes ledger entries whose expiry has passed."""

    def __init__(
        self,
        config: Settings,
        ledger: RefreshTokenLedger,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._session_factory = session_factory
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._purged_count: int = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="token-cleanup", daemon=True)
        self._thread.start()
        logger.info("Token cleanup worker started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Token cleanup worker stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "purged_count": self._purged_count,
        }

    def run_once(self) -> int:
        db = self._session_factory()
        try:
            purged = self._ledger.purge_expired(db)
        finally:
            db.close()
        self._purged_count += purged
        self._heartbeat = time.time()
        return purged

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as exc:
                logger.exception("Expired token cleanup failed: %s", exc)
            self._stop_event.wait(max(1.0, self._config.TOKEN_CLEANUP_INTERVAL_SECONDS))


token_cleanup_worker = TokenCleanupWorker(settings, token_ledger)
