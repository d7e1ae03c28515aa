# loader.py
from __future__ import annotations

import logging
import runpy
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .model import CacheSpec, PipelineDefinition, Step

logger = logging.getLogger(__name__)

STEP_KEYS = {"name", "command", "run", "requires", "cache", "cwd", "env", "timeout"}
CACHE_KEYS = {"folder", "fingerprint", "prune"}
PIPELINE_KEYS = {"steps", "env"}


@dataclass(eq=False)
class MalformedDefinition(Exception):
    """
    Raised when a pipeline definition cannot be loaded.

    Carries enough context to point at the offending step without a traceback.
    """
    message: str
    pipeline: str | None = None
    index: int | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        where = []
        if self.pipeline is not None:
            where.append(f"pipeline={self.pipeline}")
        if self.index is not None:
            where.append(f"step[{self.index}]")
        if self.step is not None:
            where.append(f"name={self.step}")
        prefix = f"{' '.join(where)}: " if where else ""
        return f"{prefix}{self.message}"


# ----------------------------------------------------------------------
# Field coercion
# ----------------------------------------------------------------------

def _str_list(value: Any, what: str, err: MalformedDefinition) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    err.message = f"'{what}' must be a string or a list of strings"
    raise err


def _env(value: Any, err: MalformedDefinition) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        err.message = "'env' must be a mapping"
        raise err
    # force values to str so they can be passed to subprocess as-is
    return {str(k): str(v) for k, v in value.items()}


def _cache_spec(value: Any, err: MalformedDefinition) -> Optional[CacheSpec]:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        err.message = "'cache' must be a mapping with at least 'folder'"
        raise err
    unknown = sorted(set(value) - CACHE_KEYS)
    if unknown:
        err.message = f"unknown cache key(s): {unknown}"
        raise err
    folder = value.get("folder")
    if not isinstance(folder, str) or not folder.strip():
        err.message = "'cache.folder' must be a non-empty string"
        raise err
    return CacheSpec(
        folder=folder,
        fingerprint=tuple(_str_list(value.get("fingerprint"), "cache.fingerprint", err)),
        prune=tuple(_str_list(value.get("prune"), "cache.prune", err)),
    )


def parse_step(raw: Any, *, pipeline: str, index: int) -> Step:
    err = MalformedDefinition("", pipeline=pipeline, index=index)

    if not isinstance(raw, Mapping):
        err.message = f"step must be a mapping, got {type(raw).__name__}"
        raise err

    name = raw.get("name")
    if isinstance(name, str):
        err.step = name
    if not isinstance(name, str) or not name.strip():
        err.message = "step is missing a non-empty 'name'"
        raise err

    unknown = sorted(set(raw) - STEP_KEYS)
    if unknown:
        err.message = f"unknown step key(s): {unknown}"
        raise err

    if "command" in raw and "run" in raw:
        err.message = "use either 'command' or 'run', not both"
        raise err
    command = raw.get("command", raw.get("run"))
    if not isinstance(command, str) or not command.strip():
        err.message = "step is missing a non-empty 'command'"
        raise err

    cwd = raw.get("cwd")
    if cwd is not None and not isinstance(cwd, str):
        err.message = "'cwd' must be a string"
        raise err

    timeout = raw.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            err.message = "'timeout' must be a positive number of seconds"
            raise err
        timeout = float(timeout)

    return Step(
        name=name,
        command=command,
        requires=frozenset(_str_list(raw.get("requires"), "requires", err)),
        cache=_cache_spec(raw.get("cache"), err),
        cwd=cwd,
        env=_env(raw.get("env"), err),
        timeout=timeout,
    )


def check_unique_names(definition: PipelineDefinition) -> PipelineDefinition:
    seen: Dict[str, int] = {}
    for i, s in enumerate(definition.steps):
        if s.name in seen:
            raise MalformedDefinition(
                f"duplicate step name (first declared at step[{seen[s.name]}])",
                pipeline=definition.name,
                index=i,
                step=s.name,
            )
        seen[s.name] = i
    return definition


def parse_pipeline(name: str, raw: Any) -> PipelineDefinition:
    env: Dict[str, str] = {}
    if isinstance(raw, Mapping):
        unknown = sorted(set(raw) - PIPELINE_KEYS)
        if unknown:
            raise MalformedDefinition(f"unknown pipeline key(s): {unknown}", pipeline=name)
        env = _env(raw.get("env"), MalformedDefinition("", pipeline=name))
        raw = raw.get("steps")

    if raw is None:
        raw = []
    if not isinstance(raw, list):
        raise MalformedDefinition("steps must be a list", pipeline=name)

    steps = tuple(parse_step(item, pipeline=name, index=i) for i, item in enumerate(raw))
    return check_unique_names(PipelineDefinition(name=name, steps=steps, env=env))


def parse_definitions(document: Any) -> Dict[str, PipelineDefinition]:
    """
    Turn a parsed document into pipeline definitions.

    The document maps pipeline name -> list of steps, or
    pipeline name -> {steps: [...], env: {...}}. Declaration order is kept.
    """
    if document is None:
        return {}
    if not isinstance(document, Mapping):
        raise MalformedDefinition(
            f"definition document must be a mapping of pipeline name -> steps, got {type(document).__name__}"
        )

    out: Dict[str, PipelineDefinition] = {}
    for name, raw in document.items():
        if not isinstance(name, str):
            raise MalformedDefinition(f"pipeline name must be a string, got {name!r}")
        out[name] = parse_pipeline(name, raw)
    return out


# ----------------------------------------------------------------------
# File loading
# ----------------------------------------------------------------------

def _load_workflow_module(path: Path) -> Dict[str, PipelineDefinition]:
    """
    Load pipelines from a python file.

    The file must define either:
      - workflow() -> List[PipelineDefinition]
      - PIPELINES = [PipelineDefinition, ...]
    """
    module_name = f"gatedci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    pipelines = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        pipelines = globals_dict["workflow"]()
    elif "PIPELINES" in globals_dict:
        pipelines = globals_dict["PIPELINES"]

    if not isinstance(pipelines, list) or not all(isinstance(p, PipelineDefinition) for p in pipelines):
        raise MalformedDefinition(
            "workflow file must return/define a List[PipelineDefinition]: "
            "define workflow() -> List[PipelineDefinition] or PIPELINES = [...]",
            details={"path": str(path)},
        )

    out: Dict[str, PipelineDefinition] = {}
    for p in pipelines:
        if p.name in out:
            raise MalformedDefinition("duplicate pipeline name", pipeline=p.name)
        out[p.name] = check_unique_names(p)
    return out


def load_definitions(path: str | Path) -> Dict[str, PipelineDefinition]:
    """Load every pipeline declared in a YAML/JSON document or a python workflow file."""
    def_path = Path(path).expanduser().resolve()
    if not def_path.exists():
        raise FileNotFoundError(f"Definition file not found: {def_path}")

    if def_path.suffix == ".py":
        definitions = _load_workflow_module(def_path)
    else:
        try:
            with def_path.open("r", encoding="utf-8") as handle:
                document = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise MalformedDefinition(f"invalid YAML in {def_path}: {exc}") from exc
        definitions = parse_definitions(document)

    logger.debug("loaded %d pipeline(s) from %s", len(definitions), def_path)
    return definitions


def select_pipeline(definitions: Dict[str, PipelineDefinition], name: str | None) -> PipelineDefinition:
    if name is not None:
        if name not in definitions:
            raise MalformedDefinition(
                f"no pipeline named {name!r}; known pipelines: {sorted(definitions)}",
                pipeline=name,
            )
        return definitions[name]

    if len(definitions) == 1:
        return next(iter(definitions.values()))
    if not definitions:
        raise MalformedDefinition("definition file declares no pipelines")
    raise MalformedDefinition(
        f"definition file declares several pipelines, pick one of {list(definitions)}"
    )
