# executor.py
from __future__ import annotations

import copy
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Dict, Optional

from .model import Step, StepResult

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LIMIT = 4000


def _tail(text: str | bytes | None, limit: int) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-limit:] if limit > 0 else text


class StepExecutor:
    """
    Runs one step's command as a child process and classifies the outcome.

    Never raises for a step problem: a command that cannot be started, exits
    non-zero or times out comes back as a Failed StepResult. Output is kept as
    bytes and decoded leniently, so stray non-UTF-8 bytes never fail a step.
    """

    def __init__(
        self,
        workdir: str | Path = ".",
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: float | None = None,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
    ):
        """
        Args:
            workdir: Directory step `cwd` values are resolved against
            env: Pipeline-level environment layered over os.environ
            timeout: Default timeout in seconds for steps without their own
            output_limit: Number of trailing output characters kept per step
        """
        self.workdir = Path(workdir).resolve()
        self.env = dict(env or {})
        self.timeout = timeout
        self.output_limit = output_limit

    def with_env(self, env: Dict[str, str]) -> StepExecutor:
        """Copy of this executor with `env` layered over its environment."""
        clone = copy.copy(self)
        clone.env = {**self.env, **env}
        return clone

    def _environ(self, step: Step) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        env.update(step.env)
        return env

    def execute(self, step: Step) -> StepResult:
        cwd = (self.workdir / (step.cwd or ".")).resolve()
        timeout = step.timeout if step.timeout is not None else self.timeout
        start = time.monotonic()

        if not cwd.is_dir():
            return StepResult.failed(
                step,
                None,
                f"could not start step: working directory not found: {cwd}",
                duration=time.monotonic() - start,
            )

        logger.debug("running %r in %s: %s", step.name, cwd, step.command)
        try:
            proc = subprocess.run(
                step.command,
                shell=True,
                cwd=str(cwd),
                env=self._environ(step),
                # own session: a terminal Ctrl-C reaches the runner, not the step
                start_new_session=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            output = _tail(e.output, self.output_limit)
            message = f"step timed out after {timeout:g}s"
            return StepResult.failed(
                step,
                None,
                f"{output}\n{message}" if output else message,
                duration=time.monotonic() - start,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            return StepResult.failed(
                step,
                None,
                f"could not start step: {e}",
                duration=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        output = _tail(proc.stdout, self.output_limit)
        if proc.returncode != 0:
            logger.debug("step %r exited with %d", step.name, proc.returncode)
            return StepResult.failed(step, proc.returncode, output, duration=duration)
        return StepResult.succeeded(step, output=output, duration=duration)
