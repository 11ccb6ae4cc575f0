import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from batchpilot.cli import load_items, logs_command, main, start_command, watch_command
from batchpilot.client import ControlClientError, write_agent_info


class LoadItemsTests(unittest.TestCase):
    def test_files_and_folders(self) -> None:
        with tempfile.TemporaryDirectory(dir=".") as tmp:
            root = Path(tmp)
            (root / "decks").mkdir()
            (root / "decks" / "b.md").write_text("Slide 1\nB", encoding="utf-8")
            (root / "decks" / "a.txt").write_text("Slide 1\nA", encoding="utf-8")
            (root / "decks" / "skip.pdf").write_text("x", encoding="utf-8")
            (root / "single.txt").write_text("Single", encoding="utf-8")
            items = load_items([str(root / "single.txt"), str(root / "decks")])
        self.assertEqual(
            [item["item_id"] for item in items],
            ["single.txt", "decks/a.txt", "decks/b.md"],
        )
        self.assertEqual(items[1]["content"], "Slide 1\nA")

    def test_missing_path_exits(self) -> None:
        with self.assertRaises(SystemExit):
            load_items(["does-not-exist.txt"])

    def test_empty_folder_exits(self) -> None:
        with tempfile.TemporaryDirectory(dir=".") as tmp:
            with self.assertRaises(SystemExit):
                load_items([tmp])


class CommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory(dir=".")
        self.runs_dir = Path(self._tmp.name)
        write_agent_info(self.runs_dir, port=9555)
        self._env = patch.dict(os.environ, {"BATCHPILOT_RUNS_DIR": str(self.runs_dir)})
        self._env.start()
        self._ping = patch("batchpilot.cli.agent_ping", return_value=True)
        self.ping_mock = self._ping.start()

    def tearDown(self) -> None:
        self._ping.stop()
        self._env.stop()
        self._tmp.cleanup()

    def test_start_requires_live_agent(self) -> None:
        deck = self.runs_dir / "deck.txt"
        deck.write_text("Slide 1\nHello", encoding="utf-8")
        self.ping_mock.return_value = False
        with patch("batchpilot.cli.request_action") as action_mock:
            with self.assertRaises(SystemExit) as ctx:
                start_command([str(deck)])
        self.assertIn("port 9555 is not responding", str(ctx.exception))
        self.ping_mock.assert_called_once_with(9555)
        action_mock.assert_not_called()

    def test_logs_tails_latest_batch(self) -> None:
        for batch_id, lines in (("20260101-000000", ["old"]), ("20260102-000000", ["a", "b", "c"])):
            run_dir = self.runs_dir / batch_id
            run_dir.mkdir()
            (run_dir / "batch.log").write_text("\n".join(lines) + "\n", encoding="utf-8")
        with patch("builtins.print") as print_mock:
            main(["logs", "--tail", "2"])
        self.assertEqual(print_mock.call_args.args[0], "b\nc")

    def test_logs_without_batches_exits(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            logs_command(50)
        self.assertIn("No batches", str(ctx.exception))

    def test_start_sends_items_and_config(self) -> None:
        deck = self.runs_dir / "deck.txt"
        deck.write_text("Slide 1\nHello", encoding="utf-8")
        with patch(
            "batchpilot.cli.request_action", return_value={"accepted": True, "batch_id": "b1"}
        ) as action_mock, patch("builtins.print"):
            start_command([str(deck)], prompt_wait=5, generation_wait=None)
        port, action, payload = action_mock.call_args.args
        self.assertEqual((port, action), (9555, "start"))
        self.assertEqual(payload["items"], [{"item_id": "deck.txt", "content": "Slide 1\nHello"}])
        self.assertEqual(payload["config"], {"script": "gamma", "prompt_wait_time": 5})

    def test_rejected_start_exits(self) -> None:
        deck = self.runs_dir / "deck.txt"
        deck.write_text("x", encoding="utf-8")
        with patch(
            "batchpilot.cli.request_action",
            return_value={"accepted": False, "error": "Batch is already running."},
        ):
            with self.assertRaises(SystemExit) as ctx:
                start_command([str(deck)])
        self.assertIn("already running", str(ctx.exception))

    def test_status_and_stop_print_agent_reply(self) -> None:
        with patch("batchpilot.cli.request_action", return_value={"running": False}) as action_mock, patch(
            "builtins.print"
        ) as print_mock:
            main(["status"])
            main(["stop"])
        self.assertEqual([c.args[1] for c in action_mock.call_args_list], ["status", "stop"])
        self.assertEqual(json.loads(print_mock.call_args.args[0]), {"running": False})

    def test_client_errors_become_exit_messages(self) -> None:
        with patch("batchpilot.cli.request_action", side_effect=ControlClientError("Control agent unreachable")):
            with self.assertRaises(SystemExit) as ctx:
                main(["stop"])
        self.assertIn("unreachable", str(ctx.exception))

    def test_watch_prints_only_new_events(self) -> None:
        replies = [
            {"events": [{"id": 1, "type": "progress", "step": "Processing item 1/2", "details": "a", "percent": 0}], "last_id": 1},
            {"events": [], "last_id": 1},
            {"events": [{"id": 2, "type": "log", "message": "retrying insertion"}], "last_id": 2},
        ]
        with patch("batchpilot.cli.fetch_events", side_effect=replies) as fetch_mock, patch(
            "batchpilot.cli.time.sleep"
        ), patch("builtins.print") as print_mock:
            watch_command(interval_ms=500, max_polls=3)
        self.assertEqual([c.kwargs["since"] for c in fetch_mock.call_args_list], [0, 1, 1])
        lines = [c.args[0] for c in print_mock.call_args_list]
        self.assertEqual(lines, ["[  0.0%] Processing item 1/2: a", "log: retrying insertion"])

    def test_watch_rejects_tiny_interval(self) -> None:
        with self.assertRaises(SystemExit):
            watch_command(interval_ms=10)


class NoAgentTests(unittest.TestCase):
    def test_missing_agent_registration(self) -> None:
        with tempfile.TemporaryDirectory(dir=".") as tmp, patch.dict(
            os.environ, {"BATCHPILOT_RUNS_DIR": tmp}
        ):
            with self.assertRaises(SystemExit) as ctx:
                main(["status"])
        self.assertIn("batchpilot serve", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
