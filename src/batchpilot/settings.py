"""Environment-driven runtime settings for the agent, runner and browser."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from batchpilot.constants import (
    ELEMENT_POLL_MS,
    ELEMENT_TIMEOUT_MS,
    INTER_ITEM_DELAY_SECONDS,
)


RUNS_DIR = Path("runs")


@dataclass(frozen=True)
class AgentSettings:
    state_path: Path
    runs_dir: Path
    downloads_dir: Path
    inter_item_delay_seconds: float
    element_timeout_ms: int
    poll_interval_ms: int
    item_timeout_seconds: float
    headless: bool
    cdp_url: str


def load_agent_settings() -> AgentSettings:
    runs_dir = Path(os.getenv("BATCHPILOT_RUNS_DIR", str(RUNS_DIR)) or str(RUNS_DIR))
    state_path = Path(
        os.getenv("BATCHPILOT_STATE_PATH", "") or str(runs_dir / "batch_state.json")
    )
    downloads_dir = Path(
        os.getenv("BATCHPILOT_DOWNLOADS_DIR", "") or str(runs_dir / "downloads")
    )
    inter_item_delay = _env_float("BATCHPILOT_INTER_ITEM_DELAY_SECONDS", INTER_ITEM_DELAY_SECONDS)
    inter_item_delay = max(0.0, min(600.0, inter_item_delay))
    element_timeout_ms = int(
        _env_float("BATCHPILOT_ELEMENT_TIMEOUT_SECONDS", ELEMENT_TIMEOUT_MS / 1000) * 1000
    )
    element_timeout_ms = max(1000, min(120000, element_timeout_ms))
    poll_interval_ms = int(_env_float("BATCHPILOT_POLL_INTERVAL_MS", ELEMENT_POLL_MS))
    poll_interval_ms = max(50, min(10000, poll_interval_ms))
    item_timeout_seconds = max(
        30.0, _env_float("BATCHPILOT_ITEM_TIMEOUT_SECONDS", 1800.0)
    )
    headless = str(os.getenv("BATCHPILOT_HEADLESS", "0")).strip().lower() in {"1", "true", "yes"}
    return AgentSettings(
        state_path=state_path,
        runs_dir=runs_dir,
        downloads_dir=downloads_dir,
        inter_item_delay_seconds=inter_item_delay,
        element_timeout_ms=element_timeout_ms,
        poll_interval_ms=poll_interval_ms,
        item_timeout_seconds=item_timeout_seconds,
        headless=headless,
        cdp_url=str(os.getenv("BATCHPILOT_CDP_URL", "")).strip(),
    )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not str(raw).strip():
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)
