import unittest

from batchpilot.cancellation import LocalCancellationToken, RemoteCancellationToken
from batchpilot.errors import CommunicationLost, StoppedByUser


class LocalTokenTests(unittest.TestCase):
    def test_set_is_visible_to_all_readers(self) -> None:
        token = LocalCancellationToken()
        self.assertFalse(token.is_set())
        token.check_or_fail("before")
        token.set()
        token.set()
        self.assertTrue(token.is_set())
        with self.assertRaises(StoppedByUser) as ctx:
            token.check_or_fail("after insert")
        self.assertEqual(str(ctx.exception), "Stopped by user (after insert)")


class RemoteTokenTests(unittest.TestCase):
    def test_queries_driver_each_time_until_stopped(self) -> None:
        answers = iter([False, False, True])
        calls = []

        def query() -> bool:
            calls.append(1)
            return next(answers)

        token = RemoteCancellationToken(query)
        token.check_or_fail("a")
        token.check_or_fail("b")
        with self.assertRaises(StoppedByUser):
            token.check_or_fail("c")
        # Latched: no further round trips.
        self.assertTrue(token.is_set())
        self.assertEqual(len(calls), 3)

    def test_failed_round_trip_counts_as_stop(self) -> None:
        messages: list[str] = []

        def query() -> bool:
            raise ConnectionError("agent gone")

        token = RemoteCancellationToken(query, log=messages.append)
        with self.assertRaises(CommunicationLost) as ctx:
            token.check_or_fail("generation")
        self.assertEqual(ctx.exception.kind, "communication_lost")
        self.assertIsInstance(ctx.exception, StoppedByUser)
        self.assertTrue(token.is_set())
        self.assertTrue(any("assuming stop" in msg for msg in messages))

    def test_is_set_never_raises(self) -> None:
        def query() -> bool:
            raise TimeoutError("slow")

        self.assertTrue(RemoteCancellationToken(query).is_set())

    def test_set_latches_and_forwards_best_effort(self) -> None:
        messages: list[str] = []

        def request_stop() -> None:
            raise OSError("refused")

        token = RemoteCancellationToken(lambda: False, request_stop=request_stop, log=messages.append)
        token.set()
        self.assertTrue(token.is_set())
        self.assertTrue(any("could not be delivered" in msg for msg in messages))


if __name__ == "__main__":
    unittest.main()
