"""HTTP client for the control agent (request/response over localhost)."""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from batchpilot.storage import read_json, write_json


class ControlClientError(RuntimeError):
    pass


def agent_info_path(runs_dir: Path) -> Path:
    return runs_dir / "agent.json"


def write_agent_info(runs_dir: Path, *, port: int) -> None:
    write_json(agent_info_path(runs_dir), {"port": int(port), "pid": os.getpid()})


def read_agent_port(runs_dir: Path) -> int:
    try:
        payload = read_json(agent_info_path(runs_dir))
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    port = int((payload or {}).get("port", 0) or 0)
    if port <= 0:
        raise ControlClientError("No control agent registered. Run 'batchpilot serve' first.")
    return port


def request_action(
    port: int,
    action: str,
    payload: dict[str, Any] | None = None,
    *,
    timeout_seconds: float = 4.0,
) -> dict[str, Any]:
    body = dict(payload or {})
    body["action"] = action
    return _post(port, "/action", body, timeout_seconds=timeout_seconds, label=action)


def request_status(port: int, *, timeout_seconds: float = 4.0) -> dict[str, Any]:
    return _get(port, "/status", timeout_seconds=timeout_seconds)


def fetch_events(port: int, *, since: int = 0, timeout_seconds: float = 4.0) -> dict[str, Any]:
    return _get(port, f"/events?since={int(since)}", timeout_seconds=timeout_seconds)


def post_event(port: int, event: dict[str, Any], *, timeout_seconds: float = 2.0) -> None:
    _post(port, "/event", event, timeout_seconds=timeout_seconds, label="event")


def agent_ping(port: int) -> bool:
    try:
        _get(port, "/health", timeout_seconds=1.5)
    except ControlClientError:
        return False
    return True


def _get(port: int, path: str, *, timeout_seconds: float) -> dict[str, Any]:
    req = urllib.request.Request(f"http://127.0.0.1:{int(port)}{path}", method="GET")
    return _send(req, timeout_seconds=timeout_seconds, label=path)


def _post(
    port: int,
    path: str,
    payload: dict[str, Any],
    *,
    timeout_seconds: float,
    label: str,
) -> dict[str, Any]:
    data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = urllib.request.Request(
        f"http://127.0.0.1:{int(port)}{path}",
        data=data,
        method="POST",
        headers={"Content-Type": "application/json"},
    )
    return _send(req, timeout_seconds=timeout_seconds, label=label)


def _send(req: urllib.request.Request, *, timeout_seconds: float, label: str) -> dict[str, Any]:
    try:
        with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:
            body = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        reason = exc.read().decode("utf-8", errors="replace")
        raise ControlClientError(f"Control agent request failed ({label}): {reason}") from exc
    except (urllib.error.URLError, TimeoutError, OSError) as exc:
        raise ControlClientError(f"Control agent unreachable ({label}): {exc}") from exc
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ControlClientError(f"Control agent returned invalid JSON ({label})") from exc
    if not isinstance(parsed, dict):
        raise ControlClientError(f"Control agent returned invalid payload ({label})")
    return parsed
