"""Tests del dispatcher (colas acotadas + workers).

Ejecutar:
    pytest tests/test_dispatcher.py -v
"""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

from telemetry_api.core.domain.models import TransportMeta
from telemetry_api.ingestion.dispatcher import IngestionDispatcher
from telemetry_api.ingestion.service import IngestOutcome, IngestStatus

from conftest import T0


def _wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestIngestionDispatcher:
    def test_submitted_messages_reach_service(self, service, reading_count, retained_meta):
        dispatcher = IngestionDispatcher(service, max_queue_size=10, num_workers=2)
        dispatcher.start()
        try:
            assert dispatcher.submit("sensor/a/data", b'{"temp":20,"hum":40}', retained_meta()) is True
            assert dispatcher.submit("sensor/b/data", b'{"temp":21,"hum":41}', retained_meta()) is True
        finally:
            dispatcher.stop(drain=True)

        assert reading_count() == 2
        metrics = dispatcher.metrics
        assert metrics["enqueued"] == 2
        assert metrics["processed"] == 2
        assert metrics["dropped"] == 0

    def test_per_topic_order_is_preserved(self):
        seen = []
        lock = threading.Lock()
        service = MagicMock()

        def ingest(topic, payload, meta):
            with lock:
                seen.append((topic, payload))
            return IngestOutcome(IngestStatus.ACCEPTED)

        service.ingest.side_effect = ingest
        dispatcher = IngestionDispatcher(service, max_queue_size=1000, num_workers=4)
        dispatcher.start()
        for i in range(50):
            for topic in ("t/1/data", "t/2/data", "t/3/data"):
                dispatcher.submit(topic, i, TransportMeta())
        dispatcher.stop(drain=True)

        for topic in ("t/1/data", "t/2/data", "t/3/data"):
            assert [p for t, p in seen if t == topic] == list(range(50))

    def test_full_queue_leaves_message_in_raw_log(self):
        release = threading.Event()
        service = MagicMock()
        service.ingest.side_effect = lambda *a: release.wait(5) and IngestOutcome(IngestStatus.ACCEPTED)

        dispatcher = IngestionDispatcher(service, max_queue_size=1, num_workers=1)
        dispatcher.start()
        try:
            dispatcher.submit("t/data", 1, None)
            assert _wait_for(lambda: service.ingest.call_count == 1)
            assert dispatcher.submit("t/data", 2, None) is True
            assert dispatcher.submit("t/data", 3, None) is True
            service.log_pending.assert_called_once_with("t/data", 3, None)
            assert dispatcher.metrics["deferred"] == 1
            assert dispatcher.metrics["dropped"] == 0
        finally:
            release.set()
            dispatcher.stop(drain=True)

    def test_full_queue_and_store_down_drops(self):
        service = MagicMock()
        service.log_pending.return_value = None

        dispatcher = IngestionDispatcher(service, max_queue_size=1, num_workers=1)
        assert dispatcher.submit("t/data", 1, None) is True
        assert dispatcher.submit("t/data", 2, None) is False
        assert dispatcher.metrics["dropped"] == 1

    def test_overflow_is_picked_up_by_recovery(self, service, store, recovery, reading_count, retained_meta):
        # Sin workers: la primera ocupa la cola, la segunda desborda.
        dispatcher = IngestionDispatcher(service, max_queue_size=1, num_workers=1)
        dispatcher.submit("sensor/a/data", b'{"temp":20,"hum":40}', retained_meta())

        later = retained_meta(received_at=T0 + timedelta(seconds=1))
        assert dispatcher.submit("sensor/a/data", b'{"temp":21,"hum":41}', later) is True

        (pending,) = store.query_unprocessed(10)
        assert pending.payload == '{"temp":21,"hum":41}'
        assert pending.processed is False

        assert recovery.recover().processed == 1
        assert reading_count() == 1

    def test_worker_survives_service_exception(self):
        service = MagicMock()
        service.ingest.side_effect = [RuntimeError("boom"), IngestOutcome(IngestStatus.ACCEPTED)]

        dispatcher = IngestionDispatcher(service, max_queue_size=10, num_workers=1)
        dispatcher.start()
        dispatcher.submit("t/data", 1, None)
        dispatcher.submit("t/data", 2, None)
        dispatcher.stop(drain=True)

        assert dispatcher.metrics["errors"] == 1
        assert dispatcher.metrics["processed"] == 1

    def test_retry_outcomes_are_counted(self):
        service = MagicMock()
        service.ingest.return_value = IngestOutcome(IngestStatus.RETRY, reason="store unavailable, retry later")

        dispatcher = IngestionDispatcher(service, max_queue_size=10, num_workers=1)
        dispatcher.start()
        dispatcher.submit("t/data", 1, None)
        dispatcher.stop(drain=True)

        assert dispatcher.metrics["retries"] == 1
