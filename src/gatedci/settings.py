from __future__ import annotations

import os
from dataclasses import dataclass
from typing import FrozenSet, Mapping, Optional

from .cache import DEFAULT_CACHE_DIR
from .executor import DEFAULT_OUTPUT_LIMIT

DEFAULT_DEFINITION = "gatedci.yml"


def _optional_float(value: Optional[str], name: str) -> float | None:
    if value is None or value.strip() == "":
        return None
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from None
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return parsed


@dataclass(frozen=True)
class Settings:
    """Runner settings read from GATEDCI_* environment variables. CLI options override."""
    definition: str = DEFAULT_DEFINITION
    cache_dir: str = DEFAULT_CACHE_DIR
    step_timeout: float | None = None
    capabilities: Optional[FrozenSet[str]] = None  # None -> probe the host
    output_limit: int = DEFAULT_OUTPUT_LIMIT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ

        capabilities = None
        raw_caps = env.get("GATEDCI_CAPABILITIES")
        if raw_caps is not None:
            capabilities = frozenset(t.strip() for t in raw_caps.split(",") if t.strip())

        return cls(
            definition=env.get("GATEDCI_DEFINITION", DEFAULT_DEFINITION),
            cache_dir=env.get("GATEDCI_CACHE_DIR", DEFAULT_CACHE_DIR),
            step_timeout=_optional_float(env.get("GATEDCI_STEP_TIMEOUT"), "GATEDCI_STEP_TIMEOUT"),
            capabilities=capabilities,
            output_limit=int(env.get("GATEDCI_OUTPUT_LIMIT", DEFAULT_OUTPUT_LIMIT)),
        )
