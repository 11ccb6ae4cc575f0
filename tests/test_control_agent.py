import threading
import unittest
import urllib.error
from unittest.mock import patch

from batchpilot.client import (
    ControlClientError,
    agent_ping,
    fetch_events,
    post_event,
    request_action,
    request_status,
)
from batchpilot.control_agent import AgentRuntime, ControlServer, build_runtime
from batchpilot.models import Success
from batchpilot.queue_driver import QueueDriver
from batchpilot.settings import load_agent_settings
from batchpilot.storage import MemoryStore


def _runtime() -> AgentRuntime:
    driver = QueueDriver(
        item_runner=lambda item, config, token: Success(f"https://gamma.app/docs/{item.item_id}"),
        store=MemoryStore(),
        inter_item_delay_seconds=0,
    )
    return AgentRuntime(driver)


class AgentRuntimeTests(unittest.TestCase):
    def test_start_status_and_stop_actions(self) -> None:
        runtime = _runtime()
        payload = runtime.perform_action(
            "start",
            {
                "items": [{"item_id": "a.txt", "content": "Slide 1\nA"}, {"id": "b.txt", "content": "B"}],
                "config": {"promptWaitTime": 5},
            },
        )
        self.assertTrue(payload["accepted"])
        runtime.driver.join(timeout=5)

        status = runtime.perform_action("status")
        self.assertFalse(status["running"])
        self.assertEqual(status["results"]["b.txt"], "https://gamma.app/docs/b.txt")
        self.assertEqual(runtime.perform_action("stop"), {"accepted": True})

    def test_invalid_requests_are_rejected(self) -> None:
        runtime = _runtime()
        with self.assertRaises(ValueError):
            runtime.perform_action("noop")
        with self.assertRaises(ValueError):
            runtime.perform_action("start", {"items": "a.txt"})
        with self.assertRaises(ValueError):
            runtime.perform_action("start", {"items": [{"content": "x"}]})
        with self.assertRaises(ValueError):
            runtime.perform_action("start", {"items": [], "config": {"generationWaitTime": 0}})

    def test_events_are_buffered_with_ids(self) -> None:
        runtime = _runtime()
        runtime.accept_event({"type": "progress", "step": "Slide 2/3", "details": "a.txt"})
        runtime.accept_event({"type": "log", "message": "retrying insertion"})
        everything = runtime.events_since(0)
        self.assertEqual([evt["type"] for evt in everything["events"]], ["progress", "log"])
        self.assertEqual(everything["last_id"], 2)
        self.assertEqual(runtime.events_since(1)["events"][0]["message"], "retrying insertion")
        self.assertEqual(runtime.driver.status()["step"], "Slide 2/3")
        with self.assertRaises(ValueError):
            runtime.accept_event({"type": "click"})

    def test_build_runtime_picks_runner_by_mode(self) -> None:
        settings = load_agent_settings()
        with patch("batchpilot.control_agent.make_local_runner") as local_mock, patch(
            "batchpilot.control_agent.make_subprocess_runner"
        ) as subprocess_mock, patch("batchpilot.control_agent.JsonFileStore", return_value=MemoryStore()):
            build_runtime(settings, port=9555)
            build_runtime(settings, port=9555, isolate=True)
        local_mock.assert_called_once()
        subprocess_mock.assert_called_once()
        self.assertEqual(subprocess_mock.call_args.kwargs["port"], 9555)


class ControlServerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.runtime = _runtime()
        self.server = ControlServer(("127.0.0.1", 0), self.runtime)
        self.port = int(self.server.server_address[1])
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    def tearDown(self) -> None:
        self.server.shutdown()
        self.server.server_close()

    def test_round_trip_over_http(self) -> None:
        self.assertTrue(agent_ping(self.port))
        started = request_action(
            self.port, "start", {"items": [{"item_id": "a.txt", "content": "A"}], "config": {}}
        )
        self.assertTrue(started["accepted"])
        self.runtime.driver.join(timeout=5)

        status = request_status(self.port)
        self.assertFalse(status["running"])
        self.assertIn("a.txt", status["results"])

        post_event(self.port, {"type": "log", "message": "from worker"})
        events = fetch_events(self.port, since=0)["events"]
        self.assertTrue(any(evt.get("message") == "from worker" for evt in events))

    def test_bad_action_maps_to_client_error(self) -> None:
        with self.assertRaises(ControlClientError) as ctx:
            request_action(self.port, "launch")
        self.assertIn("Unsupported action", str(ctx.exception))

    def test_unreachable_agent(self) -> None:
        with patch(
            "batchpilot.client.urllib.request.urlopen",
            side_effect=urllib.error.URLError("connection refused"),
        ):
            self.assertFalse(agent_ping(self.port))
            with self.assertRaises(ControlClientError) as ctx:
                request_status(self.port)
        self.assertIn("unreachable", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
