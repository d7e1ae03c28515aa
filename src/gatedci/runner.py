# runner.py
from __future__ import annotations

import logging
import signal
import threading
import time
from typing import Callable, List, Optional

from .cache import PipelineCache
from .capabilities import CapabilityProbe
from .executor import StepExecutor
from .model import (
    CANCELLED_REASON,
    PipelineDefinition,
    PipelineOutcome,
    PipelineResult,
    RunPhase,
    RunState,
    Step,
    StepOutcome,
    StepResult,
)

logger = logging.getLogger(__name__)

StepHook = Callable[[int, Step], None]
ResultHook = Callable[[int, StepResult], None]

# exit statuses of a step killed by SIGINT/SIGTERM (raw, or as reported by a shell)
INTERRUPTED_EXIT_CODES = frozenset({-signal.SIGINT, -signal.SIGTERM, 128 + signal.SIGINT, 128 + signal.SIGTERM})


class PipelineRunner:
    """
    Runs a pipeline definition step by step against one host.

      Pending -> Running(0) -> ... -> Completed
                      \\-> HaltedOnFailure(i)   (step i failed or the run was cancelled)

    Skipped steps (missing capability) do not halt. The runner never raises:
    step problems end up in the PipelineResult.

    A runner can be reused. A cancellation request applies to the current run,
    or to the next one if none is in progress, and is cleared when that run ends.
    """

    def __init__(
        self,
        probe: CapabilityProbe,
        executor: Optional[StepExecutor] = None,
        *,
        cache: Optional[PipelineCache] = None,
        on_step_start: Optional[StepHook] = None,
        on_step_result: Optional[ResultHook] = None,
    ):
        self.probe = probe
        self.executor = executor or StepExecutor()
        self.cache = cache
        self.on_step_start = on_step_start
        self.on_step_result = on_step_result

        self._cancel = threading.Event()
        self.state = RunState(RunPhase.PENDING)
        self.transitions: List[RunState] = [self.state]

    # ---- cancellation ----

    def cancel(self) -> None:
        """Request cancellation. Takes effect before the next step starts."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ---- state machine ----

    def _enter(self, phase: RunPhase, index: int | None = None) -> None:
        self.state = RunState(phase, index)
        self.transitions.append(self.state)
        logger.debug("pipeline state -> %s", self.state)

    def _evaluate(self, executor: StepExecutor, step: Step) -> StepResult:
        missing = self.probe.missing(step.requires)
        if missing:
            return StepResult.skipped(step, f"missing capability: {', '.join(missing)}")
        try:
            return executor.execute(step)
        except Exception as e:  # executor bugs must not take down the run
            logger.exception("executor raised for step %r", step.name)
            return StepResult.failed(step, None, f"executor error: {e}")

    def _interrupted(self, result: StepResult) -> bool:
        """A step that died from the same signal that cancelled the run."""
        return (
            self._cancel.is_set()
            and result.outcome is StepOutcome.FAILED
            and result.exit_code in INTERRUPTED_EXIT_CODES
        )

    def _notify(self, hook, *args) -> None:
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:
            logger.exception("step hook raised")

    def run(self, definition: PipelineDefinition) -> PipelineResult:
        self.state = RunState(RunPhase.PENDING)
        self.transitions = [self.state]
        start = time.monotonic()

        executor = self.executor.with_env(definition.env) if definition.env else self.executor
        results: List[StepResult] = []
        outcome = PipelineOutcome.COMPLETED
        halted_at: str | None = None

        if self.cache is not None:
            self._restore_cache(definition)

        for i, step in enumerate(definition.steps):
            self._enter(RunPhase.RUNNING, i)

            if self._cancel.is_set():
                result = StepResult.skipped(step, CANCELLED_REASON)
            else:
                self._notify(self.on_step_start, i, step)
                result = self._evaluate(executor, step)

            results.append(result)
            self._notify(self.on_step_result, i, result)

            if result.cancelled or self._interrupted(result):
                outcome, halted_at = PipelineOutcome.CANCELLED, step.name
                break
            if result.outcome is StepOutcome.FAILED:
                outcome, halted_at = PipelineOutcome.FAILED, step.name
                break

        if halted_at is None:
            self._enter(RunPhase.COMPLETED)
            if self.cache is not None:
                self._save_cache(definition)
        else:
            self._enter(RunPhase.HALTED_ON_FAILURE, len(results) - 1)

        self._cancel.clear()

        return PipelineResult(
            pipeline=definition.name,
            steps=tuple(results),
            outcome=outcome,
            halted_at=halted_at,
            phase=self.state.phase,
            duration=time.monotonic() - start,
        )

    # ---- cache collaborator ----

    def _restore_cache(self, definition: PipelineDefinition) -> None:
        try:
            for hit in self.cache.restore(definition):
                logger.info("cache %s: %s", hit.folder, hit.reason)
        except Exception as e:  # cache problems never change the run
            logger.warning("cache restore failed: %s", e)

    def _save_cache(self, definition: PipelineDefinition) -> None:
        try:
            for key in self.cache.save(definition):
                logger.info("cache saved (%s...)", key[:12])
        except Exception as e:  # cache problems never change the run
            logger.warning("cache save failed: %s", e)


def run_pipeline(
    definition: PipelineDefinition,
    probe: CapabilityProbe,
    executor: Optional[StepExecutor] = None,
    **kwargs,
) -> PipelineResult:
    """Convenience: one runner, one run."""
    return PipelineRunner(probe, executor, **kwargs).run(definition)
