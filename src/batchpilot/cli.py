"""CLI entrypoint for batchpilot."""

from __future__ import annotations

import argparse
import json
import time
from pathlib import Path
from typing import Any

from batchpilot.client import (
    ControlClientError,
    agent_ping,
    fetch_events,
    read_agent_port,
    request_action,
)
from batchpilot.constants import DEFAULT_SCRIPT
from batchpilot.settings import load_agent_settings
from batchpilot.storage import latest_batch_log, tail_lines


CONTENT_SUFFIXES = (".txt", ".md")


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        from batchpilot.control_agent import serve

        serve(port=args.port, isolate=args.isolate)
        return
    if args.command == "start":
        start_command(
            args.paths,
            prompt_wait=args.prompt_wait,
            generation_wait=args.generation_wait,
            script=args.script,
        )
        return
    if args.command == "status":
        _print(_call(lambda port: request_action(port, "status")))
        return
    if args.command == "stop":
        _print(_call(lambda port: request_action(port, "stop")))
        return
    if args.command == "watch":
        watch_command(interval_ms=args.interval_ms, json_mode=args.json)
        return
    if args.command == "logs":
        logs_command(args.tail)
        return

    parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batchpilot",
        description="Run batches of content items through a browser step script.",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Host the control agent and batch queue")
    serve_parser.add_argument("--port", type=int, default=0)
    serve_parser.add_argument(
        "--isolate",
        action="store_true",
        help="Run every item in its own child process",
    )

    start_parser = subparsers.add_parser("start", help="Submit files or folders as a batch")
    start_parser.add_argument("paths", nargs="+", type=str)
    start_parser.add_argument("--prompt-wait", type=float, default=None, help="Seconds")
    start_parser.add_argument("--generation-wait", type=float, default=None, help="Seconds")
    start_parser.add_argument("--script", type=str, default=DEFAULT_SCRIPT)

    subparsers.add_parser("status", help="Show the current batch status")
    subparsers.add_parser("stop", help="Request a cooperative stop")

    logs_parser = subparsers.add_parser("logs", help="Tail the log of the latest batch")
    logs_parser.add_argument("--tail", type=int, default=200)

    watch_parser = subparsers.add_parser("watch", help="Follow progress and log events")
    watch_parser.add_argument("--interval-ms", type=int, default=1000)
    watch_parser.add_argument("--json", action="store_true")
    return parser


def load_items(paths: list[str]) -> list[dict[str, str]]:
    """Collect `.txt`/`.md` files in argument order; folders are expanded sorted."""
    items: list[dict[str, str]] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files = sorted(
                p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in CONTENT_SUFFIXES
            )
            for file in files:
                item_id = f"{path.name}/{file.relative_to(path).as_posix()}"
                items.append({"item_id": item_id, "content": file.read_text(encoding="utf-8")})
            continue
        if not path.is_file():
            raise SystemExit(f"No such file or directory: {raw}")
        items.append({"item_id": path.name, "content": path.read_text(encoding="utf-8")})
    if not items:
        raise SystemExit("No .txt or .md files found to submit.")
    return items


def start_command(
    paths: list[str],
    *,
    prompt_wait: float | None = None,
    generation_wait: float | None = None,
    script: str = DEFAULT_SCRIPT,
) -> dict[str, Any]:
    items = load_items(paths)
    config: dict[str, Any] = {"script": script}
    if prompt_wait is not None:
        config["prompt_wait_time"] = prompt_wait
    if generation_wait is not None:
        config["generation_wait_time"] = generation_wait
    port = _agent_port()
    if not agent_ping(port):
        raise SystemExit(f"Control agent on port {port} is not responding. Run 'batchpilot serve' first.")
    result = _call(lambda port: request_action(port, "start", {"items": items, "config": config}))
    if not result.get("accepted", False):
        raise SystemExit(f"Batch rejected: {result.get('error', 'unknown reason')}")
    _print(result)
    return result


def logs_command(tail_count: int) -> None:
    log_path = latest_batch_log(load_agent_settings().runs_dir)
    if log_path is None:
        raise SystemExit("No batches run yet.")
    print("\n".join(tail_lines(log_path, tail_count)))


def watch_command(*, interval_ms: int, json_mode: bool = False, max_polls: int | None = None) -> None:
    if interval_ms < 100:
        raise SystemExit("--interval-ms must be >= 100")
    port = _agent_port()
    since = 0
    polls = 0
    while max_polls is None or polls < max_polls:
        polls += 1
        try:
            payload = fetch_events(port, since=since)
        except ControlClientError as exc:
            raise SystemExit(str(exc)) from exc
        except KeyboardInterrupt:
            return
        since = int(payload.get("last_id", since) or since)

        # Quiet when nothing new arrived.
        for evt in list(payload.get("events", []) or []):
            if not isinstance(evt, dict):
                continue
            if json_mode:
                print(json.dumps(evt, ensure_ascii=False), flush=True)
            else:
                print(_fmt_event(evt), flush=True)

        try:
            time.sleep(interval_ms / 1000.0)
        except KeyboardInterrupt:
            return


def _fmt_event(evt: dict[str, Any]) -> str:
    if evt.get("type") == "progress":
        return f"[{float(evt.get('percent', 0) or 0):5.1f}%] {evt.get('step', '')}: {evt.get('details', '')}"
    message = str(evt.get("message", "") or "").strip()
    return f"log: {message}"


def _agent_port() -> int:
    try:
        return read_agent_port(load_agent_settings().runs_dir)
    except ControlClientError as exc:
        raise SystemExit(str(exc)) from exc


def _call(fn) -> dict[str, Any]:
    port = _agent_port()
    try:
        return fn(port)
    except ControlClientError as exc:
        raise SystemExit(str(exc)) from exc


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
