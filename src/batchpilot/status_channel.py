"""Progress snapshots and diagnostic log events pushed to observers."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable

from batchpilot.models import ProgressSnapshot
from batchpilot.storage import append_log


Observer = Callable[[dict[str, Any]], None]


class StatusChannel:
    """Caches the latest progress snapshot and fans events out best-effort.

    Observers receive `{"type": "progress", ...}` and `{"type": "log", ...}`
    payloads. A failing observer is dropped from that delivery only.
    """

    def __init__(self, *, log_path: Path | None = None) -> None:
        self._lock = Lock()
        self._snapshot = ProgressSnapshot()
        self._observers: list[Observer] = []
        self.log_path = log_path

    def subscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def restore(self, snapshot: ProgressSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def publish(self, step: str, details: str, percent: float) -> ProgressSnapshot:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            snapshot = ProgressSnapshot(
                step=str(step),
                details=str(details),
                percent=round(max(0.0, min(100.0, float(percent))), 2),
                seq=self._snapshot.seq + 1,
                updated_at=now,
            )
            self._snapshot = snapshot
            observers = list(self._observers)
        self._write_log(now, f"{snapshot.step} | {snapshot.details} | {snapshot.percent:g}%")
        event = {"type": "progress", **snapshot.to_dict()}
        self._notify(observers, event)
        return snapshot

    def query(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot

    def log(self, message: str, data: Any = None) -> None:
        now = datetime.now(timezone.utc).isoformat()
        line = str(message)
        if data is not None:
            line = f"{line} {_clean_data(data)}"
        self._write_log(now, line)
        with self._lock:
            observers = list(self._observers)
        self._notify(
            observers,
            {"type": "log", "message": str(message), "data": _clean_data(data), "timestamp": now},
        )

    def _write_log(self, timestamp: str, line: str) -> None:
        if self.log_path is None:
            return
        try:
            append_log(self.log_path, f"[{timestamp}] {line}")
        except OSError:
            pass

    @staticmethod
    def _notify(observers: list[Observer], event: dict[str, Any]) -> None:
        for observer in observers:
            try:
                observer(dict(event))
            except Exception:
                continue


def _clean_data(data: Any) -> Any:
    if data is None or isinstance(data, (str, int, float, bool)):
        return data
    if isinstance(data, BaseException):
        return f"{data.__class__.__name__}: {data}"
    if isinstance(data, dict):
        return {str(k): _clean_data(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_clean_data(v) for v in data]
    return str(data)[:400]
