"""Child-process entry point: run one item, report back to the control agent."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from batchpilot.cancellation import RemoteCancellationToken
from batchpilot.client import ControlClientError, post_event, request_action, request_status
from batchpilot.models import BatchConfig, Failure, Item
from batchpilot.runner import build_task_runner
from batchpilot.scripts import load_script
from batchpilot.settings import load_agent_settings


def _push(port: int, event: dict[str, Any]) -> None:
    try:
        post_event(port, event)
    except ControlClientError:
        pass


def remote_token(port: int) -> RemoteCancellationToken:
    return RemoteCancellationToken(
        lambda: bool(request_status(port).get("stop_requested", False)),
        request_stop=lambda: request_action(port, "stop"),
        log=lambda message: _push(port, {"type": "log", "message": message}),
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="python -m batchpilot.worker")
    parser.add_argument("--port", required=True, type=int)
    parser.add_argument("--item-file", required=True)
    args = parser.parse_args(argv)

    payload = json.loads(Path(args.item_file).read_text(encoding="utf-8"))
    try:
        item = Item.from_dict(payload.get("item"))
        config = BatchConfig.from_dict(payload.get("config"))
        script = load_script(config.script)
    except ValueError as exc:
        print(json.dumps(Failure(reason=f"invalid item payload: {exc}").to_dict(), ensure_ascii=False))
        return

    port = args.port
    runner = build_task_runner(
        load_agent_settings(),
        progress=lambda step, details: _push(
            port, {"type": "progress", "step": step, "details": details}
        ),
        log=lambda message: _push(port, {"type": "log", "message": message}),
    )
    outcome = runner.run(item, config, script, token=remote_token(port))
    print(json.dumps(outcome.to_dict(), ensure_ascii=False), flush=True)


if __name__ == "__main__":
    main()
