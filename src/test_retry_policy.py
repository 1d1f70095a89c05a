import asyncio
import unittest

from medkb.services.retry import RetryPolicy, describe_error, exponential_backoff


class RetryPolicyTests(unittest.TestCase):
    def setUp(self):
        self.delays: list[float] = []

    async def _fake_sleep(self, delay: float) -> None:
        self.delays.append(delay)

    def test_backoff_is_exponential_in_attempt(self):
        backoff = exponential_backoff(2.0)
        self.assertEqual([backoff(attempt) for attempt in (1, 2, 3)], [2.0, 4.0, 8.0])

    def test_succeeds_on_third_attempt(self):
        calls = {"count": 0}

        async def _flaky() -> str:
            calls["count"] += 1
            if calls["count"] < 3:
                raise ConnectionError("reset by peer")
            return "ok"

        outcome = asyncio.run(RetryPolicy(max_attempts=3, sleep=self._fake_sleep).run(_flaky))

        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.value, "ok")
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(self.delays, [2.0, 4.0])

    def test_exhausted_attempts_keep_last_error_without_trailing_sleep(self):
        calls = {"count": 0}

        async def _always_fails() -> None:
            calls["count"] += 1
            raise RuntimeError(f"failure {calls['count']}")

        outcome = asyncio.run(RetryPolicy(max_attempts=3, sleep=self._fake_sleep).run(_always_fails))

        self.assertFalse(outcome.succeeded)
        self.assertEqual(str(outcome.error), "failure 3")
        self.assertEqual(calls["count"], 3)
        self.assertEqual(len(self.delays), 2)

    def test_custom_backoff(self):
        async def _fails() -> None:
            raise RuntimeError("x")

        policy = RetryPolicy(max_attempts=2, backoff=lambda attempt: 0.5 * attempt, sleep=self._fake_sleep)
        asyncio.run(policy.run(_fails))
        self.assertEqual(self.delays, [0.5])

    def test_max_attempts_must_be_positive(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_describe_error_falls_back_to_type_name(self):
        self.assertEqual(describe_error(asyncio.TimeoutError()), "TimeoutError")
        self.assertEqual(describe_error(ValueError("bad row")), "bad row")


if __name__ == "__main__":
    unittest.main()
