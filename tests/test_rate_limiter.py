import threading
import time
import unittest

from stockflow.core.errors import QueueOverflow
from stockflow.core.rate_limiter import RateLimiter


class RateLimiterTest(unittest.TestCase):
    def setUp(self):
        self.limiters = []

    def tearDown(self):
        for limiter in self.limiters:
            limiter.stop(timeout=2)

    def make_limiter(self, **kwargs):
        limiter = RateLimiter(**kwargs)
        self.limiters.append(limiter)
        return limiter

    def test_calls_are_spaced_by_interval(self):
        limiter = self.make_limiter(requests_per_second=20)
        started = []

        futures = [limiter.schedule(lambda: started.append(time.monotonic())) for _ in range(4)]
        for future in futures:
            future.result(timeout=5)

        gaps = [later - earlier for earlier, later in zip(started, started[1:])]
        self.assertEqual(len(started), 4)
        for gap in gaps:
            self.assertGreaterEqual(gap, limiter.interval * 0.9)

    def test_results_and_fifo_order(self):
        limiter = self.make_limiter(requests_per_second=100)
        order = []
        futures = [limiter.schedule(order.append, index) for index in range(5)]
        for future in futures:
            future.result(timeout=5)
        self.assertEqual(order, [0, 1, 2, 3, 4])
        self.assertEqual(limiter.call(lambda a, b: a + b, 2, b=3), 5)

    def test_exceptions_reach_the_caller_and_are_counted(self):
        limiter = self.make_limiter(requests_per_second=100)

        def boom():
            raise ValueError("nope")

        with self.assertRaises(ValueError):
            limiter.call(boom)
        limiter.call(lambda: None)

        stats = limiter.stats()
        self.assertEqual(stats["total_requests"], 2)
        self.assertEqual(stats["total_failed"], 1)
        self.assertEqual(len(stats["recent_calls"]), 2)
        self.assertFalse(stats["recent_calls"][0]["ok"])

    def test_queue_overflow_fails_fast(self):
        limiter = self.make_limiter(requests_per_second=100, max_queue=1)
        release = threading.Event()
        dispatched = threading.Event()

        def blocker():
            dispatched.set()
            release.wait(5)

        first = limiter.schedule(blocker)
        self.assertTrue(dispatched.wait(5))
        queued = limiter.schedule(lambda: "queued")

        with self.assertRaises(QueueOverflow):
            limiter.schedule(lambda: "rejected")

        release.set()
        first.result(timeout=5)
        self.assertEqual(queued.result(timeout=5), "queued")
        self.assertEqual(limiter.stats()["total_rejected"], 1)

    def test_history_is_bounded(self):
        limiter = self.make_limiter(requests_per_second=1000, history_size=3)
        for _ in range(6):
            limiter.call(lambda: None)
        stats = limiter.stats()
        self.assertEqual(stats["total_requests"], 6)
        self.assertEqual(len(stats["recent_calls"]), 3)

    def test_stop_fails_pending_calls(self):
        limiter = self.make_limiter(requests_per_second=100)
        release = threading.Event()
        dispatched = threading.Event()

        def blocker():
            dispatched.set()
            release.wait(5)

        limiter.schedule(blocker)
        self.assertTrue(dispatched.wait(5))
        pending = limiter.schedule(lambda: "never")

        stopper = threading.Thread(target=limiter.stop, kwargs={"timeout": 5})
        stopper.start()
        with self.assertRaises(RuntimeError):
            pending.result(timeout=5)
        release.set()
        stopper.join(5)
        self.assertFalse(limiter.is_running)

    def test_rejects_non_positive_rate(self):
        with self.assertRaises(ValueError):
            RateLimiter(requests_per_second=0)


if __name__ == "__main__":
    unittest.main()
