"""
Metric collection utilities for load tests.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

import psutil


class Timer:
    """Context manager for measuring elapsed time"""

    def __init__(self, clock: Callable[[], float] = time.perf_counter):
        self.clock = clock
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = self.clock()
        return self

    def __exit__(self, *args):
        self.end_time = self.clock()

    def elapsed_s(self) -> float:
        """Get elapsed time in seconds"""
        if self.end_time is None:
            return self.clock() - self.start_time
        return self.end_time - self.start_time

    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds"""
        return self.elapsed_s() * 1000


def measure_memory(pid: int | None = None) -> float:
    """
    Measure memory usage in MB.

    Args:
        pid: Process ID to measure (defaults to current process)

    Returns:
        RSS memory in MB
    """
    process = psutil.Process(pid) if pid else psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


def calculate_percentile(values: list[float], p: float) -> float:
    """
    Calculate the p-th percentile of a list of values.

    Uses the nearest-rank method: for p99 with 100 values this returns
    the 99th value when sorted.
    """
    if not values:
        return 0.0

    sorted_values = sorted(values)
    n = len(sorted_values)
    rank = int((p / 100) * n)

    if rank >= n:
        return sorted_values[-1]
    if rank == 0:
        return sorted_values[0]

    return sorted_values[rank]


@dataclass
class LatencyStats:
    """Statistical summary of confirmation latencies (ms)"""
    count: int
    min: float
    max: float
    mean: float
    p50: float
    p95: float
    p99: float
    p999: float | None = None

    @classmethod
    def from_measurements(cls, latencies: list[float]) -> "LatencyStats":
        """Calculate statistics from raw latency measurements"""
        if not latencies:
            return cls(0, 0, 0, 0, 0, 0, 0)

        sorted_lat = sorted(latencies)
        n = len(sorted_lat)

        return cls(
            count=n,
            min=sorted_lat[0],
            max=sorted_lat[-1],
            mean=sum(sorted_lat) / n,
            p50=calculate_percentile(sorted_lat, 50),
            p95=calculate_percentile(sorted_lat, 95),
            p99=calculate_percentile(sorted_lat, 99),
            p999=calculate_percentile(sorted_lat, 99.9) if n >= 1000 else None,
        )

    def describe(self) -> str:
        """One-line rendering for the run report"""
        if not self.count:
            return "no confirmations"
        line = (
            f"n={self.count} min={self.min:.3f} mean={self.mean:.3f} "
            f"p50={self.p50:.3f} p95={self.p95:.3f} p99={self.p99:.3f}"
        )
        if self.p999 is not None:
            line += f" p99.9={self.p999:.3f}"
        return f"{line} max={self.max:.3f} ms"
