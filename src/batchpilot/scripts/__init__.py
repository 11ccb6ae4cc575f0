"""Registry of step scripts for supported target applications."""

from __future__ import annotations

from typing import Callable

from batchpilot.scripts import gamma
from batchpilot.step_script import StepScript


_BUILDERS: dict[str, Callable[[], StepScript]] = {
    "gamma": gamma.build_script,
}


def available_scripts() -> list[str]:
    return sorted(_BUILDERS)


def register_script(name: str, builder: Callable[[], StepScript]) -> None:
    key = str(name or "").strip().lower()
    if not key:
        raise ValueError("script name must be non-empty")
    _BUILDERS[key] = builder


def load_script(name: str) -> StepScript:
    key = str(name or "").strip().lower()
    builder = _BUILDERS.get(key)
    if builder is None:
        raise ValueError(f"Unknown step script: {name!r}. Available: {available_scripts()}")
    return builder()
