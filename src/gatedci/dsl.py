# src/gatedci/dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .loader import MalformedDefinition, check_unique_names
from .model import CacheSpec, PipelineDefinition, Step


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def cache(folder: str, *fingerprint: str, prune: Optional[Iterable[str]] = None) -> CacheSpec:
    """cache("target", "rustc --version", "cat Cargo.lock")"""
    return CacheSpec(folder=folder, fingerprint=tuple(fingerprint), prune=tuple(prune or ()))


def sh(
    name: str,
    command: str,
    *,
    requires: Optional[Iterable[str]] = None,
    cache: Optional[CacheSpec] = None,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
) -> Step:
    """Create a shell step."""
    if isinstance(requires, str):
        requires = [requires]
    return Step(
        name=name,
        command=command,
        requires=frozenset(requires or ()),
        cache=cache,
        cwd=cwd,
        # force values to str so they can be passed to subprocess as-is
        env={k: str(v) for k, v in (env or {}).items()},
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Pipeline helpers
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *steps: Step,  # allow: pipeline("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: pipeline("x", steps_list=[...])
    env: Optional[Dict[str, str]] = None,
) -> PipelineDefinition:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    for i, s in enumerate(steps_final):
        if not isinstance(s, Step):
            raise MalformedDefinition(
                f"expected a Step, got {type(s).__name__}", pipeline=name, index=i
            )

    return check_unique_names(
        PipelineDefinition(
            name=name,
            steps=tuple(steps_final),
            env={k: str(v) for k, v in (env or {}).items()},
        )
    )


def wf(*pipelines: PipelineDefinition) -> List[PipelineDefinition]:
    """
    Workflow definition helper.

        from gatedci import wf, pipeline, sh

        def workflow():
            return wf(
                pipeline("kvm", sh(...), sh(...)),
                pipeline("hosted", sh(...)),
            )

    Or use PIPELINES directly:
        PIPELINES = wf(pipeline(...), pipeline(...))
    """
    return list(pipelines)
