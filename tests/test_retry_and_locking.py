import os
import tempfile
import unittest

from dedupe_ingest.pipeline.locking import InFlightGuard, ProcessLock
from dedupe_ingest.pipeline.retry import backoff_delay, retry_with_backoff


class TestRetryWithBackoff(unittest.TestCase):
    def test_delay_is_capped(self):
        self.assertEqual(backoff_delay(10, 1.0, 5.0), 5.0)
        delay = backoff_delay(1, 1.0, 60.0)
        self.assertTrue(2.0 <= delay <= 3.0)

    def test_non_matching_errors_are_not_retried(self):
        sleeps, calls = [], []

        @retry_with_backoff(max_retries=3, retry_on=(ConnectionError,), sleep=sleeps.append)
        def flaky():
            calls.append(1)
            raise KeyError("nope")

        with self.assertRaises(KeyError):
            flaky()
        self.assertEqual(len(calls), 1)
        self.assertEqual(sleeps, [])

    def test_last_error_is_reraised_after_max_retries(self):
        sleeps, calls = [], []

        @retry_with_backoff(max_retries=2, retry_on=(ConnectionError,), sleep=sleeps.append)
        def always_down():
            calls.append(1)
            raise ConnectionError("down")

        with self.assertRaises(ConnectionError):
            always_down()
        self.assertEqual(len(calls), 2)
        self.assertEqual(len(sleeps), 1)


class TestLocks(unittest.TestCase):
    def test_second_process_lock_is_refused(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "run", "ingest.lock")
            with ProcessLock(path) as first:
                self.assertTrue(first.acquire())
                with open(path, "r") as f:
                    self.assertEqual(f.read().strip(), str(os.getpid()))
                self.assertFalse(ProcessLock(path).acquire())
            second = ProcessLock(path)
            self.assertTrue(second.acquire())
            second.release()

    def test_in_flight_guard(self):
        guard = InFlightGuard()
        self.assertTrue(guard.try_enter())
        self.assertTrue(guard.busy)
        self.assertFalse(guard.try_enter())
        guard.exit()
        self.assertFalse(guard.busy)


if __name__ == "__main__":
    unittest.main()
