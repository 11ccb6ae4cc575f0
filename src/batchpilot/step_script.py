"""Step-script descriptors and the UI capability interface the runner drives."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from batchpilot.constants import CLICK_SETTLE_MS, DEFAULT_UNIT_LABEL


NAVIGATE = "navigate"
WAIT_READY = "wait_ready"
INTERACT = "interact"
INSERT_CONTENT = "insert_content"
VERIFY_CONTENT = "verify_content"
WAIT_FOR_COMPLETION = "wait_for_completion"
PAUSE = "pause"
FINALIZE = "finalize"

STEP_KINDS = frozenset(
    {
        NAVIGATE,
        WAIT_READY,
        INTERACT,
        INSERT_CONTENT,
        VERIFY_CONTENT,
        WAIT_FOR_COMPLETION,
        PAUSE,
        FINALIZE,
    }
)

ACTIONS = frozenset({"click", "fill", "press"})

TEXT_SCOPE = "p, span, button"


@dataclass(frozen=True)
class Target:
    """An element located by CSS selector or by visible text."""

    selector: str = ""
    text: str = ""
    exact: bool = False
    scope: str = TEXT_SCOPE

    def __post_init__(self) -> None:
        if bool(self.selector) == bool(self.text):
            raise ValueError("Target needs exactly one of selector or text")

    def describe(self) -> str:
        if self.selector:
            return f"element {self.selector}"
        mode = "exact text" if self.exact else "text"
        return f'element with {mode} "{self.text}"'


@dataclass(frozen=True)
class Step:
    kind: str
    label: str
    target: Target | None = None
    fallbacks: tuple[Target, ...] = ()
    action: str = "click"
    # Template resolved against the item context ({first_unit}, {unit}, {base_name}, ...).
    value: str = ""
    timeout_ms: int | None = None
    settle_ms: int = 0
    # PAUSE steps read their duration from this BatchConfig field when set.
    config_field: str = ""
    require_enabled: bool = False
    proceed_on_timeout: bool = False
    optional: bool = False
    group: str = ""

    def __post_init__(self) -> None:
        if self.kind not in STEP_KINDS:
            raise ValueError(f"Unsupported step kind: {self.kind}")
        if self.kind in {INTERACT, INSERT_CONTENT} and self.target is None:
            raise ValueError(f"Step '{self.label}' ({self.kind}) requires a target")
        if self.kind == INTERACT and self.action not in ACTIONS:
            raise ValueError(f"Unsupported action '{self.action}' in step '{self.label}'")


def click(label: str, target: Target, **kwargs: Any) -> Step:
    kwargs.setdefault("settle_ms", CLICK_SETTLE_MS)
    return Step(kind=INTERACT, label=label, target=target, action="click", **kwargs)


@dataclass(frozen=True)
class StepScript:
    """A linear pipeline: setup steps, a unit loop over remaining content, closing steps."""

    name: str
    start_url: str
    steps: tuple[Step, ...]
    unit_steps: tuple[Step, ...] = ()
    closing_steps: tuple[Step, ...] = ()
    unit_label: str = DEFAULT_UNIT_LABEL
    description: str = ""


class UIDriver:
    """Capability interface over one external UI session.

    Probe methods (`locate`, `is_ready`, `is_busy`, `is_enabled`,
    `content_length`) answer immediately; waiting is the runner's job.
    """

    def open(self, url: str, *, label: str = "") -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def navigate(self, url: str) -> None:
        raise NotImplementedError

    def is_ready(self) -> bool:
        raise NotImplementedError

    def locate(self, target: Target) -> Any | None:
        raise NotImplementedError

    def act(self, handle: Any, action: str, value: str = "") -> None:
        raise NotImplementedError

    def is_enabled(self, handle: Any) -> bool:
        raise NotImplementedError

    def insert_content(self, handle: Any, text: str, *, strategy: str = "primary") -> None:
        raise NotImplementedError

    def content_length(self, handle: Any) -> int:
        raise NotImplementedError

    def is_busy(self) -> bool:
        raise NotImplementedError

    def current_url(self) -> str:
        raise NotImplementedError
