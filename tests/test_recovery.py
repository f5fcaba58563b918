"""Tests del recovery processor (arranque en frío / reproceso del log).

Ejecutar:
    pytest tests/test_recovery.py -v
"""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock, patch

from telemetry_api.core.domain.models import MessageType, RawMessageLogEntry, RetainedMessage
from telemetry_api.core.errors import StoreUnavailable
from telemetry_api.ingestion.normalizer import message_fingerprint
from telemetry_api.recovery.processor import RecoveryProcessor
from telemetry_api.recovery.sweeper import RecoverySweeper
from telemetry_api.state.retained_cache import RetainedStateCache

from conftest import T0


def _seed_retained(store, topic, payload, minutes):
    ts = T0 + timedelta(minutes=minutes)
    store.upsert_retained_message(
        RetainedMessage(topic=topic, payload=payload, qos=1, timestamp=ts, device_id=None, updated_at=ts)
    )


def _seed_log(store, topic, payload, seconds, retain=False, message_type=MessageType.SENSOR_DATA):
    ts = T0 + timedelta(seconds=seconds)
    entry = RawMessageLogEntry(
        fingerprint=f"seed-{topic}-{seconds}",
        topic=topic,
        payload=payload,
        qos=1,
        retain=retain,
        timestamp=ts,
        received_at=ts,
        device_id=None,
        message_type=message_type,
    )
    return store.append_raw_log(entry)


# =============================================================================
# RESTART SIMULATION
# =============================================================================

class TestColdStartRecovery:
    def test_three_retained_and_two_pending_entries(self, recovery, store, cache, reading_count):
        _seed_retained(store, "sht20/data", '{"temp":21,"hum":41}', 1)
        _seed_retained(store, "sensor/esp1/data", '{"temp":22,"hum":42}', 2)
        _seed_retained(store, "sht20/status", '{"online":true}', 3)
        first = _seed_log(store, "sensor/esp2/data", '{"temp":23,"hum":43}', 10)
        second = _seed_log(store, "sensor/esp3/data", '{"temp":24,"hum":44}', 20)

        report = recovery.recover()

        assert report.completed is True
        assert len(cache) == 3
        assert report.retained_loaded == 3
        assert store.get_raw_log(first.id).processed is True
        assert store.get_raw_log(second.id).processed is True
        assert store.find_reading_for_entry(first.id).temperature == 23.0
        assert store.find_reading_for_entry(second.id).temperature == 24.0
        # dos backfills desde retained (data) + dos entradas del log
        assert report.backfilled == 2
        assert report.processed == 2
        assert reading_count() == 4

    def test_second_run_is_a_no_op(self, recovery, store, reading_count):
        _seed_retained(store, "sht20/data", '{"temp":21,"hum":41}', 1)
        _seed_log(store, "sensor/esp2/data", '{"temp":23,"hum":43}', 10)

        recovery.recover()
        before = reading_count()
        report = recovery.recover()

        assert reading_count() == before
        assert report.cache_updates == 0
        assert report.backfilled == 0
        assert report.processed == 0

    def test_retained_replay_skips_existing_reading(self, service, recovery, store, cache, reading_count, retained_meta):
        service.ingest("sht20/data", '{"temp":25.5,"hum":60.2}', retained_meta())
        cache.clear()

        report = recovery.recover()

        assert report.backfilled == 0
        assert reading_count() == 1
        assert cache.get("sht20/data").payload == '{"temp":25.5,"hum":60.2}'

    def test_cache_rebuilt_in_updated_at_order(self, recovery, store, cache):
        _seed_retained(store, "sht20/data", '{"temp":30,"hum":30}', 5)

        recovery.recover()

        assert cache.get("sht20/data").payload == '{"temp":30,"hum":30}'

    def test_stale_store_row_does_not_regress_cache(self, recovery, store, cache):
        _seed_retained(store, "sht20/data", '{"temp":10,"hum":10}', 0)
        newer = RetainedMessage(
            topic="sht20/data",
            payload='{"temp":40,"hum":40}',
            qos=1,
            timestamp=T0 + timedelta(hours=1),
            device_id=None,
            updated_at=T0 + timedelta(hours=1),
        )
        cache.put("sht20/data", newer)

        recovery.recover()

        assert cache.get("sht20/data") == newer


# =============================================================================
# POISON ENTRIES / FAILURES
# =============================================================================

class TestRecoveryFailures:
    def test_malformed_entry_does_not_block_batch(self, recovery, store, reading_count):
        poison = _seed_log(store, "sensor/x/data", "{{{ not json", 1, message_type=MessageType.UNKNOWN)
        good = _seed_log(store, "sensor/y/data", '{"temp":20,"hum":20}', 2)

        report = recovery.recover()

        assert report.rejected == 1
        assert report.processed == 1
        assert store.get_raw_log(poison.id).processed is True
        assert store.get_raw_log(good.id).processed is True
        assert reading_count() == 1

    def test_unexpected_error_marks_entry_rejected(self, recovery, service, store):
        entry = _seed_log(store, "sensor/y/data", '{"temp":20,"hum":20}', 2)

        with patch.object(service, "process_entry", side_effect=RuntimeError("boom")):
            report = recovery.recover()

        assert report.rejected == 1
        assert store.get_raw_log(entry.id).processed is True

    def test_store_failure_leaves_entry_for_next_run(self, recovery, store, reading_count):
        entry = _seed_log(store, "sensor/y/data", '{"temp":20,"hum":20}', 2)

        with patch.object(store, "insert_reading", side_effect=StoreUnavailable("insert_reading")):
            report = recovery.recover()

        assert report.failed == 1
        assert store.get_raw_log(entry.id).processed is False

        report = recovery.recover()
        assert report.processed == 1
        assert reading_count() == 1

    def test_unreachable_store_marks_report_incomplete(self, recovery, store):
        with patch.object(store, "query_retained_messages", side_effect=StoreUnavailable("query_retained_messages")):
            report = recovery.recover()

        assert report.completed is False
        assert report.errors

    def test_batch_size_bounds_one_run(self, store, cache, service, normalizer):
        for i in range(5):
            _seed_log(store, f"sensor/d{i}/data", '{"temp":20,"hum":20}', i)
        processor = RecoveryProcessor(store, cache, service, normalizer, batch_size=2)

        assert processor.recover().processed == 2
        assert len(store.query_unprocessed(10)) == 3


# =============================================================================
# CANCELLATION / CONCURRENCY
# =============================================================================

class TestRecoveryConcurrency:
    def test_cancel_before_start_touches_nothing(self, recovery, store, cache):
        _seed_retained(store, "sht20/data", '{"temp":21,"hum":41}', 1)
        entry = _seed_log(store, "sensor/y/data", '{"temp":20,"hum":20}', 2)
        cancel = threading.Event()
        cancel.set()

        report = recovery.recover(cancel_event=cancel)

        assert report.cancelled is True
        assert report.completed is False
        assert len(cache) == 0
        assert store.get_raw_log(entry.id).processed is False

    def test_live_and_recovery_race_yield_one_reading(self, service, recovery, store, reading_count, retained_meta):
        # Entrada logueada por el camino vivo que "crasheó" antes de persistir.
        meta = retained_meta()
        payload = '{"temp":23,"hum":43}'
        entry = RawMessageLogEntry(
            fingerprint=message_fingerprint("sht20/data", payload, meta),
            topic="sht20/data",
            payload=payload,
            qos=meta.qos,
            retain=True,
            timestamp=T0,
            received_at=T0,
            device_id="sht20",
            message_type=MessageType.SENSOR_DATA,
            client_id=meta.client_id,
        )
        store.append_raw_log(entry)

        threads = [
            threading.Thread(target=recovery.recover),
            threading.Thread(target=service.ingest, args=("sht20/data", payload, meta)),
            threading.Thread(target=recovery.recover),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert reading_count() == 1
        assert store.query_unprocessed(10) == []


class TestRecoverySweeper:
    def test_zero_interval_disables_sweeper(self):
        sweeper = RecoverySweeper(MagicMock(), interval_seconds=0)
        sweeper.start()

        assert sweeper.enabled is False
        assert sweeper.running is False

    def test_sweeper_runs_periodically_and_survives_errors(self):
        processor = MagicMock()
        processor.recover.side_effect = [RuntimeError("db down"), MagicMock(), MagicMock(), MagicMock()]
        sweeper = RecoverySweeper(processor, interval_seconds=0.05)

        sweeper.start()
        deadline = time.time() + 5
        while processor.recover.call_count < 2 and time.time() < deadline:
            time.sleep(0.02)
        sweeper.stop()

        assert processor.recover.call_count >= 2
        assert sweeper.running is False

    def test_fresh_cache_is_rebuilt_from_store(self, store, service, normalizer, retained_meta):
        service.ingest("sht20/data", '{"temp":25.5,"hum":60.2}', retained_meta())
        fresh = RetainedStateCache()
        RecoveryProcessor(store, fresh, service, normalizer).recover()

        assert fresh.get("sht20/data").payload == '{"temp":25.5,"hum":60.2}'
