"""Durable key-value state, per-batch run directories and append-only logs."""

from __future__ import annotations

import json
import os
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any


class KeyValueStore:
    """Minimal durable store: one JSON-serializable record per key."""

    def get(self, key: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def put(self, key: str, value: dict[str, Any]) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.put(key, value)

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)


class JsonFileStore(KeyValueStore):
    """All keys live in a single JSON file, rewritten atomically on every put."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            value = self._read_all().get(key)
        return value if isinstance(value, dict) else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            payload = self._read_all()
            payload[key] = value
            write_json(self.path, payload)

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        return payload if isinstance(payload, dict) else {}


@dataclass(frozen=True)
class RunContext:
    batch_id: str
    run_dir: Path
    log_path: Path


def create_run_context(runs_dir: Path) -> RunContext:
    runs_dir.mkdir(parents=True, exist_ok=True)
    run_dir: Path | None = None
    batch_id = ""
    for attempt in range(100):
        base = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        suffix = f"-{attempt:02d}" if attempt else ""
        batch_id = f"{base}{suffix}"
        candidate = runs_dir / batch_id
        if candidate.exists():
            continue
        candidate.mkdir(parents=True, exist_ok=False)
        run_dir = candidate
        break
    if run_dir is None:
        raise RuntimeError("Could not allocate unique run directory")
    return RunContext(batch_id=batch_id, run_dir=run_dir, log_path=run_dir / "batch.log")


def append_log(path: Path, message: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(message.rstrip() + "\n")


def write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
        fh.write("\n")
    os.replace(tmp, path)


def read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    return payload if isinstance(payload, dict) else None


def latest_batch_log(runs_dir: Path) -> Path | None:
    """Log of the most recent batch; run directory names sort by start time."""
    if not runs_dir.is_dir():
        return None
    runs = sorted(
        (p for p in runs_dir.iterdir() if (p / "batch.log").is_file()),
        key=lambda p: p.name,
    )
    return runs[-1] / "batch.log" if runs else None


def tail_lines(path: Path, line_count: int) -> list[str]:
    if line_count <= 0 or not path.exists():
        return []
    with path.open("r", encoding="utf-8") as fh:
        last = deque(fh, maxlen=line_count)
    return [line.rstrip("\n") for line in last]
