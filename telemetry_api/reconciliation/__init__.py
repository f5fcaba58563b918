from .engine import LatestSource, LatestValue, ReconciliationEngine
from .grouping import Bucket, floor_to_bucket, group_readings

__all__ = [
    "Bucket",
    "LatestSource",
    "LatestValue",
    "ReconciliationEngine",
    "floor_to_bucket",
    "group_readings",
]
