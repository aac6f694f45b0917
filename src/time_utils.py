"""
Time utilities - one clock for every timestamp the governance layer writes.

All timestamps are timezone-aware UTC. ISO strings use the "Z" suffix so
ledger lines sort lexicographically in time order.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat().replace("+00:00", "Z")

