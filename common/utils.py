from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import time


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def human_bytes(n: float) -> str:
    """1536 -> '1.5 KiB'."""
    if abs(n) < 1024.0:
        return f"{int(n)} B"
    for unit in ("KiB", "MiB", "GiB"):
        n /= 1024.0
        if abs(n) < 1024.0 or unit == "GiB":
            break
    return f"{n:.1f} {unit}"


@dataclass(slots=True)
class Throughput:
    """
    Items-per-second tracker for long loops.

    Usage:
        tp = Throughput()
        tp.add(len(batch))
        log.info("...", extra={"extra": {"rate": tp.rate}})
    """
    count: int = 0
    _t0: float = field(default_factory=time.perf_counter)

    def add(self, n: int) -> None:
        self.count += int(n)

    @property
    def elapsed_s(self) -> float:
        return time.perf_counter() - self._t0

    @property
    def rate(self) -> float:
        dt = self.elapsed_s
        return 0.0 if dt <= 0 else self.count / dt
