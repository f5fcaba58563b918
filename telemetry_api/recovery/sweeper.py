"""Sweep periódico de recuperación en un thread daemon."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .processor import RecoveryProcessor

logger = logging.getLogger(__name__)


class RecoverySweeper:
    """Llama a ``recover()`` cada ``interval_seconds``. Intervalo 0 = desactivado."""

    def __init__(self, processor: RecoveryProcessor, interval_seconds: float = 30.0):
        self._processor = processor
        self._interval = float(interval_seconds)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if not self.enabled:
            logger.info("[RECOVERY] Periodic sweep disabled (interval=0)")
            return
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="recovery-sweeper")
        self._thread.start()
        logger.info("[RECOVERY] Periodic sweep every %.1fs", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._processor.recover(cancel_event=self._stop_event)
            except Exception:
                logger.exception("[RECOVERY] Sweep failed, will retry next interval")
