"""Item runners handed to the queue driver: in-process or isolated child process."""

from __future__ import annotations

import json
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Callable

from batchpilot.cancellation import CancellationToken
from batchpilot.models import BatchConfig, Failure, Item, Outcome, outcome_from_dict
from batchpilot.playwright_driver import PlaywrightDriver
from batchpilot.queue_driver import ItemRunner
from batchpilot.scripts import load_script
from batchpilot.settings import AgentSettings
from batchpilot.task_runner import RunnerTiming, TaskRunner


def timing_from_settings(settings: AgentSettings) -> RunnerTiming:
    return RunnerTiming(
        element_timeout_ms=settings.element_timeout_ms,
        poll_interval_ms=settings.poll_interval_ms,
    )


def build_task_runner(
    settings: AgentSettings,
    *,
    progress: Callable[[str, str], None] | None,
    log: Callable[[str], None] | None,
) -> TaskRunner:
    def driver_factory() -> PlaywrightDriver:
        return PlaywrightDriver(
            headless=settings.headless,
            cdp_url=settings.cdp_url,
            downloads_dir=settings.downloads_dir,
            log=log,
        )

    return TaskRunner(
        driver_factory,
        timing=timing_from_settings(settings),
        progress=progress,
        log=log,
    )


def make_local_runner(
    settings: AgentSettings,
    *,
    progress: Callable[[str, str], None] | None = None,
    log: Callable[[str], None] | None = None,
) -> ItemRunner:
    task_runner = build_task_runner(settings, progress=progress, log=log)

    def run(item: Item, config: BatchConfig, token: CancellationToken) -> Outcome:
        return task_runner.run(item, config, load_script(config.script), token=token)

    return run


def make_subprocess_runner(
    settings: AgentSettings,
    *,
    port: int,
    log: Callable[[str], None] | None = None,
) -> ItemRunner:
    """Runs each item in a child process that only talks to the agent over HTTP.

    The token argument is unused here: the child polls the agent's status
    for the stop request instead.
    """

    def run(item: Item, config: BatchConfig, token: CancellationToken) -> Outcome:
        return run_item_subprocess(
            item,
            config,
            port=port,
            timeout_seconds=settings.item_timeout_seconds,
            log=log,
        )

    return run


def build_worker_command(port: int, item_file: Path) -> list[str]:
    return [
        sys.executable,
        "-m",
        "batchpilot.worker",
        "--port",
        str(int(port)),
        "--item-file",
        str(item_file),
    ]


def run_item_subprocess(
    item: Item,
    config: BatchConfig,
    *,
    port: int,
    timeout_seconds: float,
    log: Callable[[str], None] | None = None,
) -> Outcome:
    with tempfile.TemporaryDirectory(prefix="batchpilot-item-") as tmp:
        item_file = Path(tmp) / "item.json"
        item_file.write_text(
            json.dumps({"item": item.to_dict(), "config": config.to_dict()}, ensure_ascii=False),
            encoding="utf-8",
        )
        try:
            proc = subprocess.run(
                build_worker_command(port, item_file),
                text=True,
                capture_output=True,
                timeout=timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return Failure(
                reason=f"Timeout: worker did not finish {item.item_id} within {timeout_seconds:g}s",
                kind="timeout",
            )
    if proc.stderr.strip() and log is not None:
        log(f"worker stderr for {item.item_id}: {proc.stderr.strip()[-400:]}")
    return parse_worker_output(proc.stdout, returncode=proc.returncode)


def parse_worker_output(stdout: str, *, returncode: int) -> Outcome:
    for line in reversed([ln.strip() for ln in str(stdout or "").splitlines() if ln.strip()]):
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        try:
            return outcome_from_dict(payload)
        except ValueError:
            continue
    return Failure(reason=f"worker exited with code {returncode} without an outcome")
