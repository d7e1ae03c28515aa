"""Shared fixtures for gatedci tests."""

import logging

import pytest

from gatedci.executor import StepExecutor
from gatedci.model import Step, StepResult


class ScriptedExecutor(StepExecutor):
    """Executor that never spawns anything: outcomes come from a name -> exit code table."""

    def __init__(self, exit_codes=None, on_execute=None):
        super().__init__(".")
        self.exit_codes = dict(exit_codes or {})
        self.on_execute = on_execute
        self.calls = []

    def execute(self, step: Step) -> StepResult:
        self.calls.append(step.name)
        if self.on_execute is not None:
            self.on_execute(step)
        code = self.exit_codes.get(step.name, 0)
        if code == 0:
            return StepResult.succeeded(step, output=f"{step.name} ok", duration=0.01)
        return StepResult.failed(step, code, f"{step.name} failed", duration=0.01)


@pytest.fixture(autouse=True)
def _reset_gatedci_logger():
    """The CLI attaches handlers to the gatedci logger; undo that after each test."""
    logger = logging.getLogger("gatedci")
    original_level = logger.level
    original_handlers = logger.handlers[:]
    original_propagate = logger.propagate
    yield
    logger.setLevel(original_level)
    logger.handlers = original_handlers
    logger.propagate = original_propagate
