import unittest

from diagnostics import Diagnostics


class TestDiagnostics(unittest.TestCase):
    def test_throughput_and_latency(self):
        d = Diagnostics()
        d.record_success(1, 0.1, now=100.0)
        d.record_success(2, 0.3, now=100.0)
        self.assertEqual(d.successes(), 2)
        self.assertAlmostEqual(d.throughput(4.0), 0.5)
        self.assertAlmostEqual(d.average_latency(), 0.2)
        self.assertEqual(d.throughput(0), 0.0)

    def test_failures_by_kind(self):
        d = Diagnostics()
        d.record_failure(1, "response-timeout", now=100.0)
        d.record_failure(2, "response-timeout", now=100.0)
        d.record_failure(2, "inbox-contention", now=100.0)
        self.assertEqual(d.failures_by_kind(), {"response-timeout": 2, "inbox-contention": 1})

    def test_bottlenecks(self):
        d = Diagnostics(stall_after=2.0)
        d.record_success(1, 0.1, now=100.0)
        d.record_failure(2, "response-timeout", now=100.0)
        d.record_success(3, 0.1, now=103.0)
        self.assertEqual(d.get_bottlenecks(now=103.5), "Stalled: P1, P2")
        self.assertEqual(d.get_bottlenecks(now=101.0), "")

    def test_summary(self):
        d = Diagnostics()
        self.assertIn("Throughput: 0.0 req/s", d.summary(1.0))
        d.record_success(1, 0.005)
        d.record_failure(1, "response-timeout")
        text = d.summary(1.0)
        self.assertIn("Avg. Latency: 5.00 ms", text)
        self.assertIn("response-timeout=1", text)


if __name__ == "__main__":
    unittest.main()
