# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


HARDWARE_VIRTUALIZATION = "hardware-virtualization"
TOOL_PREFIX = "tool:"


@dataclass(frozen=True)
class CacheSpec:
    """Folder to persist between runs, keyed by the output of fingerprint commands."""
    folder: str
    fingerprint: Tuple[str, ...] = ()
    prune: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Step:
    """A single shell command inside a pipeline."""
    name: str
    command: str
    requires: FrozenSet[str] = frozenset()
    cache: Optional[CacheSpec] = None

    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict, hash=False)
    timeout: float | None = None


@dataclass(frozen=True)
class PipelineDefinition:
    """
    An ordered list of steps.

    Order is fixed when the definition is loaded; the runner never reorders it.
    """
    name: str
    steps: Tuple[Step, ...] = ()
    env: Dict[str, str] = field(default_factory=dict, hash=False)

    def __len__(self) -> int:
        return len(self.steps)

    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]

    def cache_specs(self) -> list[Tuple[Step, CacheSpec]]:
        return [(s, s.cache) for s in self.steps if s.cache is not None]


class StepOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


CANCELLED_REASON = "cancelled"


@dataclass(frozen=True)
class StepResult:
    step: Step
    outcome: StepOutcome
    exit_code: int | None = None
    message: str = ""
    duration: float = 0.0

    @classmethod
    def succeeded(cls, step: Step, *, output: str = "", duration: float = 0.0) -> StepResult:
        return cls(step=step, outcome=StepOutcome.SUCCEEDED, exit_code=0, message=output, duration=duration)

    @classmethod
    def failed(
        cls,
        step: Step,
        exit_code: int | None,
        message: str,
        *,
        duration: float = 0.0,
    ) -> StepResult:
        return cls(step=step, outcome=StepOutcome.FAILED, exit_code=exit_code, message=message, duration=duration)

    @classmethod
    def skipped(cls, step: Step, reason: str) -> StepResult:
        return cls(step=step, outcome=StepOutcome.SKIPPED, message=reason)

    @property
    def name(self) -> str:
        return self.step.name

    @property
    def cancelled(self) -> bool:
        return self.outcome is StepOutcome.SKIPPED and self.message == CANCELLED_REASON

    def to_dict(self) -> dict:
        return {
            "name": self.step.name,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "message": self.message,
            "duration": round(self.duration, 3),
        }


class RunPhase(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    HALTED_ON_FAILURE = "halted_on_failure"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RunState:
    phase: RunPhase
    index: int | None = None

    @property
    def terminal(self) -> bool:
        return self.phase in (RunPhase.HALTED_ON_FAILURE, RunPhase.COMPLETED)

    def __str__(self) -> str:
        if self.index is None:
            return self.phase.value
        return f"{self.phase.value}({self.index})"


class PipelineOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one runner invocation. Not shared between runs."""
    pipeline: str
    steps: Tuple[StepResult, ...]
    outcome: PipelineOutcome
    halted_at: str | None = None
    phase: RunPhase = RunPhase.COMPLETED
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is PipelineOutcome.COMPLETED

    @property
    def exit_code(self) -> int:
        if self.outcome is PipelineOutcome.COMPLETED:
            return 0
        if self.outcome is PipelineOutcome.CANCELLED:
            return 130
        return 1

    def outcomes(self) -> list[StepOutcome]:
        return [r.outcome for r in self.steps]

    def failed_step(self) -> StepResult | None:
        for r in self.steps:
            if r.outcome is StepOutcome.FAILED:
                return r
        return None

    def to_dict(self) -> dict:
        return {
            "pipeline": self.pipeline,
            "outcome": self.outcome.value,
            "halted_at": self.halted_at,
            "phase": self.phase.value,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "steps": [r.to_dict() for r in self.steps],
        }
