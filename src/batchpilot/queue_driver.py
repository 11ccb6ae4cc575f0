"""Ordered, crash-tolerant batch queue: one item in flight, durable progress."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from batchpilot.cancellation import CancellationToken, LocalCancellationToken
from batchpilot.constants import INTER_ITEM_DELAY_SECONDS, STATE_KEY
from batchpilot.models import BatchConfig, BatchState, Failure, Item, Outcome
from batchpilot.status_channel import StatusChannel
from batchpilot.storage import KeyValueStore, RunContext, create_run_context


ItemRunner = Callable[[Item, BatchConfig, CancellationToken], Outcome]


@dataclass(frozen=True)
class StartResult:
    accepted: bool
    error: str = ""
    batch_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"accepted": self.accepted}
        if self.error:
            payload["error"] = self.error
        if self.batch_id:
            payload["batch_id"] = self.batch_id
        return payload


class QueueDriver:
    """Single owner of BatchState.

    `start`, `stop`, `status` and the processing loop serialize on one lock;
    the item runner itself is invoked outside the lock so status queries and
    stop requests are answered while an item is in flight.
    """

    def __init__(
        self,
        *,
        item_runner: ItemRunner,
        store: KeyValueStore,
        channel: StatusChannel | None = None,
        runs_dir: Path | None = None,
        inter_item_delay_seconds: float = INTER_ITEM_DELAY_SECONDS,
    ) -> None:
        self._item_runner = item_runner
        self._store = store
        self.channel = channel or StatusChannel()
        self._runs_dir = runs_dir
        self._delay = max(0.0, float(inter_item_delay_seconds))
        self._lock = threading.RLock()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._token: CancellationToken = LocalCancellationToken()
        self.run_context: RunContext | None = None
        self._state = self._recover()

    def _recover(self) -> BatchState:
        payload = self._store.get(STATE_KEY)
        if payload is None:
            return BatchState()
        try:
            state = BatchState.from_dict(payload)
        except (ValueError, TypeError) as exc:
            self.channel.log(f"discarding unreadable batch state: {exc}")
            state = BatchState()
            self._store.put(STATE_KEY, state.to_dict())
            return state
        self.channel.restore(state.progress)
        if state.running:
            # The in-flight item's outcome is unknown; nothing resumes automatically.
            self.channel.log(f"resetting orphaned batch {state.batch_id or '?'} after restart")
            state.running = False
            state.stop_requested = False
            state.queue = []
            state.finished_at = datetime.now(timezone.utc).isoformat()
            self._store.put(STATE_KEY, state.to_dict())
        return state

    def start(self, items: list[Item], config: BatchConfig) -> StartResult:
        with self._lock:
            if self._state.running:
                return StartResult(accepted=False, error="Batch is already running.")
            ids = [item.item_id for item in items]
            duplicates = sorted({item_id for item_id in ids if ids.count(item_id) > 1})
            if duplicates:
                return StartResult(accepted=False, error=f"Duplicate item ids: {duplicates}")
            batch_id = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
            if self._runs_dir is not None:
                self.run_context = create_run_context(self._runs_dir)
                batch_id = self.run_context.batch_id
                self.channel.log_path = self.run_context.log_path
            self._state = BatchState.begin(batch_id, items, config)
            self._token = LocalCancellationToken()
            self._wake.clear()
            self._persist()
            self.channel.log(f"batch {batch_id} started with {len(items)} items", config.to_dict())
            self._thread = threading.Thread(
                target=self._loop,
                name=f"batchpilot-{batch_id}",
                daemon=True,
            )
            self._thread.start()
            return StartResult(accepted=True, batch_id=batch_id)

    def stop(self) -> bool:
        with self._lock:
            state = self._state
            if not state.running or state.stop_requested:
                return True
            state.stop_requested = True
            self._token.set()
            self._wake.set()
            self.channel.log("stop signal received")
            self._publish("Stopping...", "Will stop after the current item.", state.progress.percent)
            return True

    def status(self) -> dict[str, Any]:
        with self._lock:
            state = self._state
            snapshot = self.channel.query()
            successes, failures = state.counts()
            return {
                "batch_id": state.batch_id,
                "running": state.running,
                "step": snapshot.step,
                "details": snapshot.details,
                "percent": snapshot.percent,
                "seq": snapshot.seq,
                "stop_requested": state.stop_requested,
                "cursor": state.cursor,
                "total": state.total,
                "success_count": successes,
                "failure_count": failures,
                "results": {key: outcome.to_status_string() for key, outcome in state.results.items()},
            }

    def stop_requested(self) -> bool:
        with self._lock:
            return self._state.stop_requested

    def report_progress(self, step: str, details: str) -> None:
        """Progress pushed by the item in flight; the percent stays the batch's."""
        with self._lock:
            self._publish(step, details, self._state.progress.percent)

    def log(self, message: str, data: Any = None) -> None:
        self.channel.log(message, data)

    def snapshot_state(self) -> BatchState:
        with self._lock:
            return BatchState.from_dict(self._state.to_dict())

    def join(self, timeout: float | None = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _loop(self) -> None:
        try:
            while self._advance():
                self._wake.wait(self._delay)
        except Exception as exc:
            with self._lock:
                self.channel.log("batch loop aborted", exc)
                self._state.running = False
                self._state.stop_requested = False
                self._state.queue = []
                try:
                    self._persist()
                except OSError:
                    pass
            raise

    def _advance(self) -> bool:
        with self._lock:
            state = self._state
            if state.stop_requested:
                self._finish_stopped()
                return False
            if state.cursor >= state.total:
                self._finish_complete()
                return False
            item = state.queue[state.cursor]
            config = state.config
            token = self._token
            percent = state.cursor / state.total * 100 if state.total else 100.0
            self._publish(f"Processing item {state.cursor + 1}/{state.total}", item.item_id, percent)

        outcome = self._run_item(item, config, token)

        with self._lock:
            state = self._state
            if outcome.stopped and state.stop_requested:
                self.channel.log(f"{item.item_id} interrupted by stop request")
                self._finish_stopped()
                return False
            state.results[item.item_id] = outcome
            state.cursor = min(state.total, state.cursor + 1)
            self._persist()
            return True

    def _run_item(self, item: Item, config: BatchConfig, token: CancellationToken) -> Outcome:
        try:
            return self._item_runner(item, config, token)
        except Exception as exc:
            self.channel.log(f"item runner raised for {item.item_id}", exc)
            return Failure.from_error(exc)

    def _finish_stopped(self) -> None:
        state = self._state
        state.running = False
        state.stop_requested = False
        state.queue = []
        state.finished_at = datetime.now(timezone.utc).isoformat()
        self._publish("Automation stopped", "User cancelled.", state.progress.percent)
        self.channel.log(f"batch {state.batch_id} stopped after {len(state.results)} items")

    def _finish_complete(self) -> None:
        state = self._state
        successes, failures = state.counts()
        state.running = False
        state.queue = []
        state.finished_at = datetime.now(timezone.utc).isoformat()
        self._publish("Batch complete", f"Success: {successes}, Failed: {failures}", 100.0)
        self.channel.log(f"batch {state.batch_id} complete")

    def _publish(self, step: str, details: str, percent: float) -> None:
        self._state.progress = self.channel.publish(step, details, percent)
        self._persist()

    def _persist(self) -> None:
        self._store.put(STATE_KEY, self._state.to_dict())
