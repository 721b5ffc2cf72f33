# diagnostics.py
import time
from collections import Counter, defaultdict


class Diagnostics:
    """Round-trip statistics gathered by the headless runner."""

    def __init__(self, stall_after: float = 2.0):
        self.latencies = defaultdict(list)
        self.failures = defaultdict(Counter)
        self.last_success = {}
        self.first_seen = {}
        self.stall_after = stall_after

    def _seen(self, pid, now):
        self.first_seen.setdefault(pid, now)

    def record_success(self, pid, latency, now=None):
        now = time.time() if now is None else now
        self._seen(pid, now)
        self.latencies[pid].append(latency)
        self.last_success[pid] = now

    def record_failure(self, pid, kind, now=None):
        self._seen(pid, time.time() if now is None else now)
        self.failures[pid][kind] += 1

    def successes(self):
        return sum(len(v) for v in self.latencies.values())

    def throughput(self, elapsed):
        return self.successes() / elapsed if elapsed > 0 else 0.0

    def average_latency(self):
        n = self.successes()
        return sum(sum(v) for v in self.latencies.values()) / n if n else 0.0

    def failures_by_kind(self):
        total = Counter()
        for c in self.failures.values():
            total.update(c)
        return dict(total)

    def get_bottlenecks(self, now=None):
        now = time.time() if now is None else now
        stalled = [p for p, t in self.first_seen.items()
                   if now - self.last_success.get(p, t) > self.stall_after]
        return f"Stalled: {', '.join(f'P{p}' for p in sorted(stalled))}" if stalled else ""

    def summary(self, elapsed):
        lines = [
            f"Throughput: {self.throughput(elapsed):.1f} req/s",
            f"Avg. Latency: {self.average_latency() * 1000:.2f} ms",
        ]
        failures = self.failures_by_kind()
        if failures:
            lines.append("Failures: " + ", ".join(f"{k}={v}" for k, v in sorted(failures.items())))
        stalled = self.get_bottlenecks()
        if stalled:
            lines.append(stalled)
        return "\n".join(lines)
