"""Single-item execution of a step script against one UI session."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from batchpilot.cancellation import CancellationToken
from batchpilot.constants import (
    CONTENT_MIN_LENGTH,
    ELEMENT_POLL_MS,
    ELEMENT_TIMEOUT_MS,
    ENABLED_WAIT_SECONDS,
    GENERATION_INITIAL_DELAY_MS,
    GENERATION_POLL_MS,
    GENERATION_SETTLE_MS,
    INSERT_VERIFY_DELAY_MS,
    PAGE_READY_SETTLE_MS,
    PAGE_READY_TIMEOUT_MS,
)
from batchpilot.errors import (
    BatchError,
    ElementNotFound,
    StepPreconditionFailed,
    StoppedByUser,
    WaitTimeout,
)
from batchpilot.models import BatchConfig, Failure, Item, Outcome, Success, item_base_name, split_units
from batchpilot.step_script import (
    FINALIZE,
    INSERT_CONTENT,
    INTERACT,
    NAVIGATE,
    PAUSE,
    VERIFY_CONTENT,
    WAIT_FOR_COMPLETION,
    WAIT_READY,
    Step,
    StepScript,
    Target,
    UIDriver,
)
from batchpilot.waiter import pause, wait_for_completion, wait_until


ProgressFn = Callable[[str, str], None]
LogFn = Callable[[str], None]


@dataclass(frozen=True)
class RunnerTiming:
    element_timeout_ms: int = ELEMENT_TIMEOUT_MS
    poll_interval_ms: int = ELEMENT_POLL_MS
    page_ready_timeout_ms: int = PAGE_READY_TIMEOUT_MS
    page_ready_settle_ms: int = PAGE_READY_SETTLE_MS
    generation_poll_ms: int = GENERATION_POLL_MS
    generation_initial_delay_ms: int = GENERATION_INITIAL_DELAY_MS
    generation_settle_ms: int = GENERATION_SETTLE_MS
    insert_verify_delay_ms: int = INSERT_VERIFY_DELAY_MS
    enabled_wait_seconds: float = ENABLED_WAIT_SECONDS
    min_content_length: int = CONTENT_MIN_LENGTH


@dataclass
class StepContext:
    item: Item
    config: BatchConfig
    token: CancellationToken
    values: dict[str, str]
    last_insert: tuple[Any, str] | None = None
    result: str | None = None
    skipped_groups: set[str] = field(default_factory=set)


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class TaskRunner:
    """Runs one item through a step script inside one scoped UI session.

    `run` never raises: every exit path closes the session and yields an
    Outcome. Failures caused by a stop request are tagged so the queue
    driver can tell a clean stop from a per-item error.
    """

    def __init__(
        self,
        driver_factory: Callable[[], UIDriver],
        *,
        timing: RunnerTiming | None = None,
        progress: ProgressFn | None = None,
        log: LogFn | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._driver_factory = driver_factory
        self.timing = timing or RunnerTiming()
        self._progress_fn = progress
        self._log_fn = log
        self._clock = clock
        self._sleep = sleep

    def run(
        self,
        item: Item,
        config: BatchConfig,
        script: StepScript,
        *,
        token: CancellationToken,
    ) -> Outcome:
        units = split_units(item.content, script.unit_label)
        ctx = StepContext(
            item=item,
            config=config,
            token=token,
            values={
                "item_id": item.item_id,
                "base_name": item_base_name(item.item_id),
                "first_unit": units.first,
                "unit": units.first,
                "unit_number": "1",
                "unit_count": str(len(units)),
                "content": item.content,
            },
        )
        self._log(f"starting {script.name} for {item.item_id} ({len(units)} units)")
        try:
            token.check_or_fail("start")
            with self._session(script.start_url, ctx.values["base_name"]) as driver:
                self._progress("Running steps", item.item_id)
                self._run_steps(driver, script.steps, ctx)
                for number, unit in enumerate(units.rest, start=2):
                    token.check_or_fail(f"start of {script.unit_label} {number}")
                    self._progress(f"{script.unit_label} {number}/{len(units)}", item.item_id)
                    ctx.values["unit"] = unit
                    ctx.values["unit_number"] = str(number)
                    try:
                        self._run_steps(driver, script.unit_steps, ctx)
                    except StoppedByUser:
                        raise
                    except BatchError as exc:
                        self._log(f"{script.unit_label} {number} failed, aborting item: {exc}")
                        raise
                    except Exception as exc:
                        raise ElementNotFound(f"{script.unit_label} {number}: {exc}") from exc
                self._run_steps(driver, script.closing_steps, ctx)
                result = ctx.result if ctx.result is not None else driver.current_url()
            self._progress("Item complete", item.item_id)
            self._log(f"success for {item.item_id}: {result}")
            return Success(value=result)
        except Exception as exc:
            outcome = Failure.from_error(exc)
            if outcome.stopped:
                self._progress("Item stopped", str(exc))
            else:
                self._progress("Item failed", str(exc))
            self._log(f"failed {item.item_id}: [{outcome.kind}] {outcome.reason}")
            return outcome

    @contextmanager
    def _session(self, url: str, label: str) -> Iterator[UIDriver]:
        driver = self._driver_factory()
        try:
            self._progress("Opening session", url)
            driver.open(url, label=label)
            yield driver
        finally:
            try:
                driver.close()
            except Exception as exc:
                self._log(f"session release failed: {exc}")

    def _run_steps(self, driver: UIDriver, steps: tuple[Step, ...], ctx: StepContext) -> None:
        for step in steps:
            if step.group and step.group in ctx.skipped_groups:
                continue
            ctx.token.check_or_fail(step.label)
            self._log(f"step: {step.label}")
            try:
                self._execute(driver, step, ctx)
            except StoppedByUser:
                raise
            except Exception as exc:
                if not step.optional:
                    self._log(f"step '{step.label}' failed: {exc}")
                    raise
                self._log(f"optional step '{step.label}' failed, proceeding: {exc}")
                if step.group:
                    ctx.skipped_groups.add(step.group)

    def _execute(self, driver: UIDriver, step: Step, ctx: StepContext) -> None:
        if step.kind == NAVIGATE:
            driver.navigate(self._resolve(step.value, ctx))
        elif step.kind == WAIT_READY:
            self._progress("Loading page", step.label)
            wait_until(
                driver.is_ready,
                timeout_ms=step.timeout_ms or self.timing.page_ready_timeout_ms,
                interval_ms=self.timing.poll_interval_ms,
                token=ctx.token,
                description="page ready",
                clock=self._clock,
                sleep=self._sleep,
            )
            self._pause(self.timing.page_ready_settle_ms, ctx, step.label)
        elif step.kind == INTERACT:
            handle = self._locate(driver, step, ctx)
            if step.require_enabled:
                self._wait_enabled(driver, handle, step, ctx)
            driver.act(handle, step.action, self._resolve(step.value, ctx))
        elif step.kind == INSERT_CONTENT:
            handle = self._locate(driver, step, ctx)
            text = self._resolve(step.value, ctx)
            self._insert(driver, handle, text, ctx, step.label)
            ctx.last_insert = (handle, text)
        elif step.kind == VERIFY_CONTENT:
            if ctx.last_insert is None:
                raise StepPreconditionFailed(f"{step.label}: no content was inserted before verification")
            handle, text = ctx.last_insert
            if driver.content_length(handle) < self.timing.min_content_length:
                self._log("content disappeared, re-inserting")
                self._insert(driver, handle, text, ctx, step.label)
        elif step.kind == WAIT_FOR_COMPLETION:
            wait_for_completion(
                driver.is_busy,
                budget_seconds=ctx.config.generation_wait_time,
                token=ctx.token,
                description=self._resolve(step.value, ctx) or step.label,
                proceed_on_timeout=step.proceed_on_timeout,
                interval_ms=self.timing.generation_poll_ms,
                initial_delay_ms=self.timing.generation_initial_delay_ms,
                settle_ms=self.timing.generation_settle_ms,
                log=self._log,
                clock=self._clock,
                sleep=self._sleep,
            )
        elif step.kind == PAUSE:
            if step.config_field:
                seconds = float(getattr(ctx.config, step.config_field))
                self._log(f"waiting {seconds:g}s ({step.config_field})")
                self._pause(int(seconds * 1000), ctx, step.label)
            else:
                self._pause(step.settle_ms, ctx, step.label)
            return
        elif step.kind == FINALIZE:
            ctx.result = self._resolve(step.value, ctx) or driver.current_url()
        self._pause(step.settle_ms, ctx, step.label)

    def _locate(self, driver: UIDriver, step: Step, ctx: StepContext) -> Any:
        if step.target is None:
            raise StepPreconditionFailed(f"{step.label}: step has no target to locate")
        timeout_ms = step.timeout_ms or self.timing.element_timeout_ms
        last_error: WaitTimeout | None = None
        for target in (step.target, *step.fallbacks):
            if last_error is not None:
                self._log(f"{last_error}; trying {target.describe()}")
            try:
                return self._wait_for_element(driver, target, timeout_ms, ctx)
            except WaitTimeout as exc:
                last_error = exc
        if last_error is None:
            raise StepPreconditionFailed(f"{step.label}: no element candidates")
        raise last_error

    def _wait_for_element(self, driver: UIDriver, target: Target, timeout_ms: int, ctx: StepContext) -> Any:
        return wait_until(
            lambda: driver.locate(target),
            timeout_ms=timeout_ms,
            interval_ms=self.timing.poll_interval_ms,
            token=ctx.token,
            description=target.describe(),
            clock=self._clock,
            sleep=self._sleep,
        )

    def _wait_enabled(self, driver: UIDriver, handle: Any, step: Step, ctx: StepContext) -> None:
        if driver.is_enabled(handle):
            return
        self._log(f"{step.label}: element disabled, waiting")
        try:
            wait_until(
                lambda: driver.is_enabled(handle),
                timeout_ms=int(self.timing.enabled_wait_seconds * 1000),
                interval_ms=1000,
                token=ctx.token,
                description=f"{step.label} enabled",
                clock=self._clock,
                sleep=self._sleep,
            )
        except WaitTimeout as exc:
            raise StepPreconditionFailed(
                f"{step.label}: element still disabled after {self.timing.enabled_wait_seconds:g}s"
            ) from exc

    def _insert(self, driver: UIDriver, handle: Any, text: str, ctx: StepContext, label: str) -> None:
        driver.insert_content(handle, text, strategy="primary")
        self._pause(self.timing.insert_verify_delay_ms, ctx, label)
        observed = driver.content_length(handle)
        if observed >= min(self.timing.min_content_length, len(text.strip())):
            return
        self._log(f"{label}: content missing after insertion ({observed} chars), retrying in chunks")
        ctx.token.check_or_fail(label)
        driver.insert_content(handle, text, strategy="chunked")

    def _pause(self, ms: int, ctx: StepContext, label: str) -> None:
        if ms <= 0:
            return
        pause(
            ms / 1000.0,
            token=ctx.token,
            context=label,
            slice_ms=self.timing.poll_interval_ms,
            clock=self._clock,
            sleep=self._sleep,
        )

    @staticmethod
    def _resolve(template: str, ctx: StepContext) -> str:
        if not template:
            return ""
        return template.format_map(_TemplateValues(ctx.values))

    def _progress(self, step: str, details: str) -> None:
        if self._progress_fn is not None:
            self._progress_fn(step, details)

    def _log(self, message: str) -> None:
        if self._log_fn is not None:
            self._log_fn(message)
