"""Dispatcher: desacopla el callback del transporte de la escritura en DB.

El callback de paho solo encola (~0.01ms) y vuelve al network loop; los
workers llaman a ``IngestionService.ingest``. Cada worker tiene su propia
cola acotada y el topic se asigna por CRC32, así los mensajes de un mismo
topic se procesan en orden de llegada.
"""

from __future__ import annotations

import logging
import queue
import threading
import zlib
from typing import List, Optional, Tuple

from ..core.domain.models import TransportMeta
from .normalizer import RawPayload
from .service import IngestionService

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_NUM_WORKERS = 4

_Item = Tuple[str, RawPayload, Optional[TransportMeta]]


class IngestionDispatcher:
    """Colas acotadas + pool de threads delante del servicio de ingesta.

    - callback → submit() no bloquea; con la cola llena el mensaje se registra
      en el log crudo (processed=false) y lo procesa la recuperación
    - workers → ingest() en paralelo entre topics, en orden dentro de un topic
    """

    def __init__(
        self,
        service: IngestionService,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        num_workers: int = DEFAULT_NUM_WORKERS,
    ):
        self._service = service
        self._num_workers = max(1, num_workers)
        per_worker = max(1, max_queue_size // self._num_workers)
        self._queues: List[queue.Queue] = [queue.Queue(maxsize=per_worker) for _ in range(self._num_workers)]
        self._stop_event = threading.Event()

        # Metrics
        self._enqueued = 0
        self._dropped = 0
        self._deferred = 0
        self._processed = 0
        self._retries = 0
        self._errors = 0
        self._lock = threading.Lock()

        self._workers: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._stop_event.is_set()

    def start(self) -> None:
        if self._workers:
            return
        self._stop_event.clear()
        for i in range(self._num_workers):
            t = threading.Thread(
                target=self._worker_loop,
                args=(i,),
                daemon=True,
                name=f"ingest-worker-{i}",
            )
            t.start()
            self._workers.append(t)
        logger.info(
            "[DISPATCH] Started workers=%d queue_max_per_worker=%d",
            self._num_workers,
            self._queues[0].maxsize,
        )

    def stop(self, drain: bool = True) -> None:
        """Detiene los workers. Con drain=True procesa antes lo encolado."""
        if drain and self._workers:
            for q in self._queues:
                q.join()
        self._stop_event.set()
        for t in self._workers:
            t.join(timeout=5.0)
        self._workers.clear()
        logger.info("[DISPATCH] Stopped. %s", self.metrics)

    def submit(self, topic: str, raw_payload: RawPayload, meta: Optional[TransportMeta] = None) -> bool:
        """Encola un mensaje.

        Returns:
            False solo si la cola está llena y tampoco se pudo registrar en el log
        """
        q = self._queues[self._route(topic)]
        try:
            q.put_nowait((topic, raw_payload, meta))
        except queue.Full:
            return self._defer(topic, raw_payload, meta)
        with self._lock:
            self._enqueued += 1
        return True

    def _defer(self, topic: str, raw_payload: RawPayload, meta: Optional[TransportMeta]) -> bool:
        entry = self._service.log_pending(topic, raw_payload, meta)
        if entry is None:
            with self._lock:
                self._dropped += 1
            logger.error("[DISPATCH] Queue full and raw log unavailable, dropped topic=%s", topic)
            return False
        with self._lock:
            self._deferred += 1
        logger.warning("[DISPATCH] Queue full, topic=%s left pending for recovery entry=%s", topic, entry.id)
        return True

    def _route(self, topic: str) -> int:
        return zlib.crc32(topic.encode("utf-8")) % self._num_workers

    def _worker_loop(self, worker_id: int) -> None:
        q = self._queues[worker_id]
        while not self._stop_event.is_set():
            try:
                topic, raw_payload, meta = q.get(timeout=0.5)
            except queue.Empty:
                continue

            try:
                outcome = self._service.ingest(topic, raw_payload, meta)
                with self._lock:
                    self._processed += 1
                    if outcome.retryable:
                        self._retries += 1
            except Exception:
                with self._lock:
                    self._errors += 1
                logger.exception("[DISPATCH] Worker %d error topic=%s", worker_id, topic)
            finally:
                q.task_done()

    @property
    def metrics(self) -> dict:
        with self._lock:
            return {
                "queue_depth": sum(q.qsize() for q in self._queues),
                "queue_max": sum(q.maxsize for q in self._queues),
                "workers": self._num_workers,
                "enqueued": self._enqueued,
                "dropped": self._dropped,
                "deferred": self._deferred,
                "processed": self._processed,
                "retries": self._retries,
                "errors": self._errors,
            }
