"""CLI entry point for the recovery runner.

Reprocesa el log crudo pendiente y backfillea lecturas desde retained
fuera del proceso web (cron, mantenimiento tras una caída de la BD).
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import replace

from common.config import get_settings
from common.log import configure_logging
from telemetry_api.context import build_context
from telemetry_api.transports import NullTransport

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Telemetry recovery runner (retained replay + pending raw log)")
    p.add_argument("--once", action="store_true", help="run a single recovery and exit")
    p.add_argument("--sleep-seconds", type=float, default=None, help="interval between runs")
    p.add_argument("--batch-size", type=int, default=None)
    args = p.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    if args.batch_size is not None:
        settings = replace(settings, recovery_batch_size=args.batch_size)
    sleep_seconds = args.sleep_seconds if args.sleep_seconds is not None else settings.recovery_interval_seconds or 30.0

    # Sin transporte en vivo: este proceso solo repara estado.
    context = build_context(settings, transport=NullTransport())
    if settings.db_auto_create:
        context.store.create_schema()

    logger.info("Recovery runner started batch_size=%d", settings.recovery_batch_size)

    while True:
        try:
            report = context.trigger_recovery()
            if args.once:
                return 0 if report.completed else 1
            logger.info("Iteración completada, esperando %.1fs...", sleep_seconds)
            time.sleep(sleep_seconds)
        except KeyboardInterrupt:
            logger.info("Recovery runner stopped")
            return 0
        except Exception as e:
            logger.error("Error en iteración: %s", e)
            if args.once:
                raise
            logger.info("Continuando con siguiente iteración...")
            time.sleep(sleep_seconds)


if __name__ == "__main__":
    raise SystemExit(main())
