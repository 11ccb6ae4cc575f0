"""Data models for items, batch configuration, outcomes and persisted batch state."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from batchpilot.constants import (
    DEFAULT_GENERATION_WAIT_SECONDS,
    DEFAULT_PROMPT_WAIT_SECONDS,
    DEFAULT_SCRIPT,
    DEFAULT_UNIT_LABEL,
)
from batchpilot.errors import STOP_KINDS, error_kind


@dataclass(frozen=True)
class Item:
    item_id: str
    content: str

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Item":
        if not isinstance(payload, dict):
            raise ValueError("item must be an object")
        item_id = payload.get("item_id", payload.get("id", payload.get("name")))
        if not isinstance(item_id, str) or not item_id.strip():
            raise ValueError("item requires a non-empty 'item_id'")
        content = payload.get("content", "")
        if not isinstance(content, str):
            raise ValueError(f"item '{item_id}' content must be a string")
        return cls(item_id=item_id.strip(), content=content)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def item_base_name(item_id: str) -> str:
    """`folder/report-001.txt` -> `report`."""
    base = str(item_id or "").replace("\\", "/").split("/")[-1]
    base = base.split(".")[0].split("-")[0]
    return base or "item"


@dataclass(frozen=True)
class BatchConfig:
    prompt_wait_time: float = DEFAULT_PROMPT_WAIT_SECONDS
    generation_wait_time: float = DEFAULT_GENERATION_WAIT_SECONDS
    script: str = DEFAULT_SCRIPT

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "BatchConfig":
        payload = dict(payload or {})
        prompt = _pick(payload, "prompt_wait_time", "promptWaitTime")
        generation = _pick(payload, "generation_wait_time", "generationWaitTime")
        script = payload.get("script", DEFAULT_SCRIPT)
        if not isinstance(script, str) or not script.strip():
            raise ValueError("'script' must be a non-empty string")
        return cls(
            prompt_wait_time=_positive_seconds("prompt_wait_time", prompt, DEFAULT_PROMPT_WAIT_SECONDS),
            generation_wait_time=_positive_seconds(
                "generation_wait_time", generation, DEFAULT_GENERATION_WAIT_SECONDS
            ),
            script=script.strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _positive_seconds(name: str, raw: Any, default: float) -> float:
    if raw is None or raw == "":
        return float(default)
    if isinstance(raw, bool):
        raise ValueError(f"'{name}' must be a number of seconds")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{name}' must be a number of seconds") from exc
    if value <= 0:
        raise ValueError(f"'{name}' must be positive")
    return value


@dataclass(frozen=True)
class Success:
    value: str

    ok = True
    stopped = False

    def to_status_string(self) -> str:
        return self.value

    def to_dict(self) -> dict[str, Any]:
        return {"status": "success", "value": self.value}


@dataclass(frozen=True)
class Failure:
    reason: str
    kind: str = "error"

    ok = False

    @classmethod
    def from_error(cls, exc: BaseException) -> "Failure":
        return cls(reason=str(exc) or exc.__class__.__name__, kind=error_kind(exc))

    @property
    def stopped(self) -> bool:
        return self.kind in STOP_KINDS

    def to_status_string(self) -> str:
        return f"Error: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        return {"status": "failure", "reason": self.reason, "kind": self.kind}


Outcome = Union[Success, Failure]


def outcome_from_dict(payload: dict[str, Any]) -> Outcome:
    if not isinstance(payload, dict):
        raise ValueError("outcome must be an object")
    status = payload.get("status")
    if status == "success":
        return Success(value=str(payload.get("value", "")))
    if status == "failure":
        return Failure(
            reason=str(payload.get("reason", "")),
            kind=str(payload.get("kind", "error") or "error"),
        )
    raise ValueError(f"Invalid outcome status: {status!r}")


@dataclass(frozen=True)
class ProgressSnapshot:
    step: str = ""
    details: str = ""
    percent: float = 0.0
    seq: int = 0
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ProgressSnapshot":
        payload = payload or {}
        return cls(
            step=str(payload.get("step", "")),
            details=str(payload.get("details", "")),
            percent=float(payload.get("percent", 0.0) or 0.0),
            seq=int(payload.get("seq", 0) or 0),
            updated_at=str(payload.get("updated_at", "")),
        )


@dataclass
class BatchState:
    batch_id: str = ""
    queue: list[Item] = field(default_factory=list)
    total: int = 0
    cursor: int = 0
    config: BatchConfig = field(default_factory=BatchConfig)
    results: dict[str, Outcome] = field(default_factory=dict)
    running: bool = False
    stop_requested: bool = False
    progress: ProgressSnapshot = field(default_factory=ProgressSnapshot)
    started_at: str = ""
    finished_at: str = ""

    @classmethod
    def begin(cls, batch_id: str, items: list[Item], config: BatchConfig) -> "BatchState":
        return cls(
            batch_id=batch_id,
            queue=list(items),
            total=len(items),
            cursor=0,
            config=config,
            results={},
            running=True,
            stop_requested=False,
            started_at=datetime.now(timezone.utc).isoformat(),
        )

    def counts(self) -> tuple[int, int]:
        successes = sum(1 for outcome in self.results.values() if outcome.ok)
        return successes, len(self.results) - successes

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "queue": [item.to_dict() for item in self.queue],
            "total": self.total,
            "cursor": self.cursor,
            "config": self.config.to_dict(),
            "results": {key: outcome.to_dict() for key, outcome in self.results.items()},
            "running": self.running,
            "stop_requested": self.stop_requested,
            "progress": self.progress.to_dict(),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BatchState":
        if not isinstance(payload, dict):
            raise ValueError("batch state must be an object")
        results = payload.get("results") or {}
        if not isinstance(results, dict):
            raise ValueError("'results' must be an object")
        return cls(
            batch_id=str(payload.get("batch_id", "")),
            queue=[Item.from_dict(item) for item in payload.get("queue") or []],
            total=int(payload.get("total", 0) or 0),
            cursor=int(payload.get("cursor", 0) or 0),
            config=BatchConfig.from_dict(payload.get("config")),
            results={str(key): outcome_from_dict(value) for key, value in results.items()},
            running=bool(payload.get("running", False)),
            stop_requested=bool(payload.get("stop_requested", False)),
            progress=ProgressSnapshot.from_dict(payload.get("progress")),
            started_at=str(payload.get("started_at", "")),
            finished_at=str(payload.get("finished_at", "")),
        )


@dataclass(frozen=True)
class ContentUnits:
    first: str
    rest: tuple[str, ...] = ()

    def __len__(self) -> int:
        return 1 + len(self.rest)


def split_units(content: str, label: str = DEFAULT_UNIT_LABEL) -> ContentUnits:
    """Split raw content into the first unit and the remaining units.

    Units are introduced by headings such as ``Slide 1``, ``Slide 2``. Without
    a ``<label> 1`` heading the whole content is the first unit.
    """
    text = str(content or "")
    head = re.escape(label)
    first_match = re.search(
        rf"{head}\s*1[\s\S]*?(?=\n{head}\s*\d+|$)",
        text,
        flags=re.IGNORECASE,
    )
    first = first_match.group(0).strip() if first_match else text
    rest_match = re.search(rf"{head}\s*2[\s\S]*", text, flags=re.IGNORECASE)
    if not rest_match:
        return ContentUnits(first=first)
    parts = re.split(rf"\n(?={head}\s*\d+)", rest_match.group(0), flags=re.IGNORECASE)
    return ContentUnits(first=first, rest=tuple(p.strip() for p in parts if p.strip()))
