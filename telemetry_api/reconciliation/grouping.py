"""Agrupación de lecturas en buckets de tiempo fijos."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from statistics import mean
from typing import Dict, Iterable, List

from ..core.domain.models import Reading

BUCKET_UNITS = ("minutes", "hours", "days")


@dataclass(frozen=True)
class Bucket:
    bucket_start: datetime
    avg_temperature: float
    avg_humidity: float
    count: int


def _check(bucket_size: int, bucket_unit: str) -> None:
    if bucket_unit not in BUCKET_UNITS:
        raise ValueError(f"bucket_unit must be one of {', '.join(BUCKET_UNITS)}, got {bucket_unit!r}")
    if isinstance(bucket_size, bool) or not isinstance(bucket_size, int) or bucket_size < 1:
        raise ValueError(f"bucket_size must be a positive integer, got {bucket_size!r}")


def floor_to_bucket(ts: datetime, bucket_size: int, bucket_unit: str) -> datetime:
    """Inicio del bucket que contiene ``ts``.

    Trunca los campos del timestamp en su propia zona horaria:
    15 minutes → 10:37 cae en 10:30; 6 hours → 13:10 cae en 12:00.
    """
    _check(bucket_size, bucket_unit)

    if bucket_unit == "minutes":
        return ts.replace(minute=(ts.minute // bucket_size) * bucket_size, second=0, microsecond=0)
    if bucket_unit == "hours":
        return ts.replace(hour=(ts.hour // bucket_size) * bucket_size, minute=0, second=0, microsecond=0)

    ordinal = (ts.toordinal() // bucket_size) * bucket_size
    start = date.fromordinal(max(ordinal, 1))
    return datetime(start.year, start.month, start.day, tzinfo=ts.tzinfo)


def group_readings(readings: Iterable[Reading], bucket_size: int, bucket_unit: str) -> List[Bucket]:
    """Promedios por bucket, orden ascendente; buckets vacíos se omiten.

    Cada lectura cae en el bucket de su propia zona horaria (la que reportó
    el dispositivo), así un bucket de 1 día es el día local del sensor.
    """
    _check(bucket_size, bucket_unit)

    grouped: Dict[datetime, List[Reading]] = OrderedDict()
    for reading in readings:
        key = floor_to_bucket(reading.local_timestamp, bucket_size, bucket_unit)
        grouped.setdefault(key, []).append(reading)

    return [
        Bucket(
            bucket_start=start,
            avg_temperature=mean(r.temperature for r in items),
            avg_humidity=mean(r.humidity for r in items),
            count=len(items),
        )
        for start, items in sorted(grouped.items(), key=lambda kv: kv[0])
    ]
