"""Console output formatting utilities for gatedci."""

from __future__ import annotations

import sys
import traceback
from typing import Iterable, Optional, Tuple

from gatedci.model import (
    PipelineDefinition,
    PipelineOutcome,
    PipelineResult,
    Step,
    StepOutcome,
    StepResult,
)


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
                and the output of successful steps
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        definition: str,
        step_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Pipeline: {pipeline}")
        print(f"Definition: {definition}")
        print(f"Steps: {step_count}")
        print()

    def print_step_start(self, index: int, step: Step) -> None:
        """Print step start message."""
        print(f"\nSTEP {index + 1}: {step.name}")
        print(f"$ {step.command}")

    def print_step_result(self, result: StepResult) -> None:
        """Print one step's outcome as soon as it is known."""
        if result.outcome is StepOutcome.SUCCEEDED:
            print(f"STATUS: success ({result.duration:.1f}s)")
            if self.debug and result.message:
                print(result.message.rstrip())
        elif result.outcome is StepOutcome.SKIPPED:
            print(f"\nSTEP SKIPPED: {result.name} ({result.message})")
        else:
            self.print_failure(result)

    def print_failure(self, result: StepResult) -> None:
        """Print a failed step with its exit code and output tail."""
        print(f"STEP FAILED: {result.name}")
        if result.exit_code is not None:
            print(f"Exit code: {result.exit_code}")
        if result.message:
            if self.debug:
                print(f"Error details:\n{result.message.rstrip()}")
            else:
                # last lines are usually the compiler/test error
                lines = result.message.rstrip().splitlines()[-20:]
                print("Output (tail):")
                for line in lines:
                    print(f"  {line}")

    def print_plan(self, definition: PipelineDefinition, missing: dict[str, list[str]]) -> None:
        """Print which steps would run or be skipped on this host."""
        self.print_header(f"PLAN: {definition.name}")
        for i, step in enumerate(definition.steps, start=1):
            if missing.get(step.name):
                print(f"  {i}. {step.name} (skip: missing {', '.join(missing[step.name])})")
            else:
                print(f"  {i}. {step.name} (run)")

    def print_capabilities(self, rows: Iterable[Tuple[str, bool]]) -> None:
        """Print capability resolution for this host."""
        self.print_header("CAPABILITIES")
        for tag, available in rows:
            print(f"  {tag}: {'available' if available else 'unavailable'}")

    def print_results(self, result: PipelineResult, definition: PipelineDefinition) -> None:
        """Print final results, including steps never reached after a halt."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for r in result.steps:
            if r.outcome is StepOutcome.SKIPPED:
                status = f"SKIPPED ({r.message})"
            elif r.outcome is StepOutcome.FAILED:
                code = f"exit={r.exit_code}" if r.exit_code is not None else "not started"
                status = f"FAILED ({code})"
            else:
                status = "SUCCESS"
            print(f"  {r.name}: {status}")
        for step in definition.steps[len(result.steps):]:
            print(f"  {step.name}: NOT RUN")

        print()
        if result.ok:
            print(f"PIPELINE: success ({result.duration:.1f}s)")
        elif result.outcome is PipelineOutcome.CANCELLED:
            print(f"PIPELINE: cancelled at step '{result.halted_at}'")
        else:
            print(f"PIPELINE: failed at step '{result.halted_at}'")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            traceback.print_exception(exc)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
