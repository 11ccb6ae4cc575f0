"""Control agent: hosts the queue driver behind a localhost HTTP surface."""

from __future__ import annotations

import argparse
from collections import deque
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import json
from threading import Lock
from typing import Any
from urllib.parse import parse_qs, urlparse

from batchpilot.client import write_agent_info
from batchpilot.models import BatchConfig, Item
from batchpilot.queue_driver import QueueDriver
from batchpilot.runner import make_local_runner, make_subprocess_runner
from batchpilot.settings import AgentSettings, load_agent_settings
from batchpilot.status_channel import StatusChannel
from batchpilot.storage import JsonFileStore


class AgentRuntime:
    """Routes control actions to the queue driver and buffers pushed events."""

    def __init__(self, driver: QueueDriver, *, max_events: int = 200) -> None:
        self.driver = driver
        self._lock = Lock()
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._last_id = 0
        driver.channel.subscribe(self.record_event)

    def record_event(self, payload: dict[str, Any]) -> None:
        with self._lock:
            self._last_id += 1
            event = dict(payload)
            event["id"] = self._last_id
            event.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            self._events.append(event)

    def events_since(self, since: int = 0) -> dict[str, Any]:
        with self._lock:
            events = [evt for evt in self._events if int(evt["id"]) > int(since)]
            return {"events": events, "last_id": self._last_id}

    def perform_action(self, action: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        action_name = str(action or "").strip()
        payload = payload or {}
        if action_name in {"start", "startBatch"}:
            raw_items = payload.get("items")
            if not isinstance(raw_items, list):
                raise ValueError("'items' must be a list")
            items = [Item.from_dict(raw) for raw in raw_items]
            config = BatchConfig.from_dict(payload.get("config"))
            return self.driver.start(items, config).to_dict()
        if action_name in {"stop", "stopBatch"}:
            return {"accepted": self.driver.stop()}
        if action_name in {"status", "getStatus"}:
            return self.driver.status()
        raise ValueError(f"Unsupported action: {action_name}")

    def accept_event(self, payload: dict[str, Any]) -> None:
        event_type = str(payload.get("type", "")).strip().lower()
        if event_type == "progress":
            self.driver.report_progress(str(payload.get("step", "")), str(payload.get("details", "")))
            return
        if event_type == "log":
            self.driver.log(str(payload.get("message", ""))[:2000], payload.get("data"))
            return
        raise ValueError(f"Unsupported event type: {event_type or 'missing'}")


def build_runtime(settings: AgentSettings, *, port: int, isolate: bool = False) -> AgentRuntime:
    channel = StatusChannel()
    driver: QueueDriver | None = None

    def progress(step: str, details: str) -> None:
        if driver is not None:
            driver.report_progress(step, details)

    if isolate:
        item_runner = make_subprocess_runner(settings, port=port, log=channel.log)
    else:
        item_runner = make_local_runner(settings, progress=progress, log=channel.log)
    driver = QueueDriver(
        item_runner=item_runner,
        store=JsonFileStore(settings.state_path),
        channel=channel,
        runs_dir=settings.runs_dir,
        inter_item_delay_seconds=settings.inter_item_delay_seconds,
    )
    return AgentRuntime(driver)


class _ControlHandler(BaseHTTPRequestHandler):
    server_version = "BatchPilotAgent/1.0"

    def _send_json(self, status_code: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        runtime: AgentRuntime = self.server.runtime
        if parsed.path == "/health":
            self._send_json(200, {"ok": True})
            return
        if parsed.path == "/status":
            self._send_json(200, runtime.driver.status())
            return
        if parsed.path == "/events":
            query = parse_qs(parsed.query)
            try:
                since = int((query.get("since") or ["0"])[0])
            except ValueError:
                self._send_json(400, {"error": "invalid_since"})
                return
            self._send_json(200, runtime.events_since(since))
            return
        self._send_json(404, {"error": "not_found"})

    def do_POST(self) -> None:  # noqa: N802
        runtime: AgentRuntime = self.server.runtime
        length = int(self.headers.get("Content-Length", "0") or "0")
        raw = self.rfile.read(length) if length > 0 else b"{}"
        try:
            payload = json.loads(raw.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            self._send_json(400, {"error": "invalid_json"})
            return
        if not isinstance(payload, dict):
            self._send_json(400, {"error": "invalid_payload"})
            return

        if self.path == "/event":
            try:
                runtime.accept_event(payload)
            except ValueError as exc:
                self._send_json(400, {"error": str(exc)})
                return
            self._send_json(200, {"ok": True})
            return

        if self.path != "/action":
            self._send_json(404, {"error": "not_found"})
            return

        try:
            result = runtime.perform_action(str(payload.get("action", "")), payload)
        except ValueError as exc:
            self._send_json(400, {"error": str(exc)})
            return
        except Exception as exc:  # pragma: no cover
            self._send_json(500, {"error": str(exc)})
            return
        self._send_json(200, result)

    def log_message(self, _format: str, *_args: Any) -> None:
        return


class ControlServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], runtime: AgentRuntime | None = None):
        super().__init__(server_address, _ControlHandler)
        self.runtime = runtime


def serve(*, port: int = 0, isolate: bool = False, settings: AgentSettings | None = None) -> None:
    settings = settings or load_agent_settings()
    # Isolated workers need the bound port, so the runtime is attached after binding.
    control = ControlServer(("127.0.0.1", port))
    bound_port = int(control.server_address[1])
    runtime = build_runtime(settings, port=bound_port, isolate=isolate)
    control.runtime = runtime
    write_agent_info(settings.runs_dir, port=bound_port)
    print(
        json.dumps({"port": bound_port, "isolate": isolate, "state_path": str(settings.state_path)}),
        flush=True,
    )
    try:
        control.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        runtime.driver.stop()
        control.server_close()


def main() -> None:
    parser = argparse.ArgumentParser(prog="python -m batchpilot.control_agent")
    parser.add_argument("--port", type=int, default=0)
    parser.add_argument("--isolate", action="store_true")
    args = parser.parse_args()
    serve(port=args.port, isolate=args.isolate)


if __name__ == "__main__":
    main()
