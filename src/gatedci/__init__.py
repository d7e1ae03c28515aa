from .capabilities import CapabilityProbe, HostCapabilityProbe, StaticCapabilityProbe
from .executor import StepExecutor
from .loader import MalformedDefinition, load_definitions, parse_definitions
from .model import (
    HARDWARE_VIRTUALIZATION,
    CacheSpec,
    PipelineDefinition,
    PipelineOutcome,
    PipelineResult,
    RunPhase,
    Step,
    StepOutcome,
    StepResult,
)
from .runner import PipelineRunner, run_pipeline

# Imported last: loading the `.cache` submodule (via runner) binds the
# package attribute `cache` to the module, which must not shadow the helper.
from .dsl import cache, pipeline, sh, wf

__all__ = [
    "cache",
    "pipeline",
    "sh",
    "wf",
    "CapabilityProbe",
    "HostCapabilityProbe",
    "StaticCapabilityProbe",
    "StepExecutor",
    "MalformedDefinition",
    "load_definitions",
    "parse_definitions",
    "HARDWARE_VIRTUALIZATION",
    "CacheSpec",
    "PipelineDefinition",
    "PipelineOutcome",
    "PipelineResult",
    "RunPhase",
    "Step",
    "StepOutcome",
    "StepResult",
    "PipelineRunner",
    "run_pipeline",
]
