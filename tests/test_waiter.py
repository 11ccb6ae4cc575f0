import unittest

from batchpilot.cancellation import LocalCancellationToken
from batchpilot.errors import StoppedByUser, WaitTimeout
from batchpilot.waiter import generation_check_count, pause, wait_for_completion, wait_until


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class WaitUntilTests(unittest.TestCase):
    def test_returns_first_truthy_value(self) -> None:
        clock = FakeClock()
        answers = iter([None, False, "handle"])
        value = wait_until(
            lambda: next(answers),
            timeout_ms=10000,
            interval_ms=2000,
            clock=clock,
            sleep=clock.sleep,
        )
        self.assertEqual(value, "handle")
        self.assertEqual(clock.sleeps, [2.0, 2.0])

    def test_zero_is_a_satisfied_value(self) -> None:
        clock = FakeClock()
        self.assertEqual(wait_until(lambda: 0, timeout_ms=100, clock=clock, sleep=clock.sleep), 0)

    def test_timeout_never_fires_early(self) -> None:
        clock = FakeClock()
        calls: list[float] = []

        def check() -> None:
            calls.append(clock.now)
            return None

        with self.assertRaises(WaitTimeout) as ctx:
            wait_until(
                check,
                timeout_ms=5000,
                interval_ms=2000,
                description="editor",
                clock=clock,
                sleep=clock.sleep,
            )
        self.assertGreaterEqual(clock.now, 5.0)
        self.assertEqual(calls, [0.0, 2.0, 4.0, 5.0])
        self.assertIn("editor", str(ctx.exception))
        self.assertEqual(ctx.exception.timeout_ms, 5000)

    def test_stop_is_observed_before_next_check(self) -> None:
        clock = FakeClock()
        token = LocalCancellationToken()
        calls = []

        def check() -> None:
            calls.append(1)
            token.set()
            return None

        with self.assertRaises(StoppedByUser):
            wait_until(check, timeout_ms=60000, token=token, clock=clock, sleep=clock.sleep)
        self.assertEqual(len(calls), 1)
        self.assertLessEqual(clock.now, 2.0)

    def test_already_set_token_skips_the_check(self) -> None:
        token = LocalCancellationToken()
        token.set()
        called = []
        with self.assertRaises(StoppedByUser):
            wait_until(lambda: called.append(1), timeout_ms=1000, token=token)
        self.assertEqual(called, [])


class PauseTests(unittest.TestCase):
    def test_pause_sleeps_in_slices(self) -> None:
        clock = FakeClock()
        pause(5.0, slice_ms=2000, clock=clock, sleep=clock.sleep)
        self.assertEqual(clock.sleeps, [2.0, 2.0, 1.0])

    def test_pause_raises_when_stopped(self) -> None:
        clock = FakeClock()
        token = LocalCancellationToken()

        def sleep(seconds: float) -> None:
            clock.sleep(seconds)
            token.set()

        with self.assertRaises(StoppedByUser) as ctx:
            pause(30.0, token=token, context="settle", slice_ms=2000, clock=clock, sleep=sleep)
        self.assertIn("settle", str(ctx.exception))
        self.assertEqual(clock.now, 2.0)


class WaitForCompletionTests(unittest.TestCase):
    def test_check_count_is_budget_over_interval(self) -> None:
        self.assertEqual(generation_check_count(120, 2000), 60)
        self.assertEqual(generation_check_count(5, 2000), 2)
        self.assertEqual(generation_check_count(1, 2000), 1)

    def test_success_waits_initial_delay_and_settle(self) -> None:
        clock = FakeClock()
        busy = iter([True, True, False])
        done = wait_for_completion(
            lambda: next(busy),
            budget_seconds=120,
            clock=clock,
            sleep=clock.sleep,
        )
        self.assertTrue(done)
        # 5s initial delay, two 2s polls, 3s settle
        self.assertAlmostEqual(clock.now, 5.0 + 4.0 + 3.0)

    def test_timeout_fails_by_default(self) -> None:
        clock = FakeClock()
        with self.assertRaises(WaitTimeout) as ctx:
            wait_for_completion(
                lambda: True,
                budget_seconds=10,
                description="Slide 1 generation",
                clock=clock,
                sleep=clock.sleep,
            )
        self.assertEqual(ctx.exception.timeout_ms, 10000)
        self.assertIn("Slide 1 generation", str(ctx.exception))

    def test_timeout_can_proceed(self) -> None:
        clock = FakeClock()
        messages: list[str] = []
        done = wait_for_completion(
            lambda: True,
            budget_seconds=10,
            proceed_on_timeout=True,
            log=messages.append,
            clock=clock,
            sleep=clock.sleep,
        )
        self.assertFalse(done)
        self.assertTrue(any("proceeding anyway" in msg for msg in messages))

    def test_stop_during_initial_delay(self) -> None:
        clock = FakeClock()
        token = LocalCancellationToken()
        checked = []

        def sleep(seconds: float) -> None:
            clock.sleep(seconds)
            token.set()

        with self.assertRaises(StoppedByUser):
            wait_for_completion(
                lambda: checked.append(1),
                budget_seconds=120,
                token=token,
                clock=clock,
                sleep=sleep,
            )
        self.assertEqual(checked, [])


if __name__ == "__main__":
    unittest.main()
