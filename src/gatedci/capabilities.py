# capabilities.py
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
from typing import Callable, Dict, Iterable, List, Tuple

from .model import HARDWARE_VIRTUALIZATION, TOOL_PREFIX

logger = logging.getLogger(__name__)

KNOWN_CAPABILITIES = (HARDWARE_VIRTUALIZATION,)

KVM_DEVICE = "/dev/kvm"


class CapabilityProbe:
    """
    Answers "does this host have capability X?".

    Answers are memoised per probe, so a capability cannot appear or disappear
    in the middle of a run. Unknown tags are unsatisfied.
    """

    def __init__(self) -> None:
        self._resolved: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def has_capability(self, tag: str) -> bool:
        with self._lock:
            if tag not in self._resolved:
                self._resolved[tag] = self._resolve(tag)
                logger.debug("capability %s -> %s", tag, self._resolved[tag])
            return self._resolved[tag]

    def missing(self, tags: Iterable[str]) -> List[str]:
        return sorted(t for t in tags if not self.has_capability(t))

    def describe(self, tags: Iterable[str] = ()) -> List[Tuple[str, bool]]:
        wanted = list(dict.fromkeys([*KNOWN_CAPABILITIES, *tags]))
        return [(t, self.has_capability(t)) for t in wanted]

    def _resolve(self, tag: str) -> bool:
        raise NotImplementedError


class StaticCapabilityProbe(CapabilityProbe):
    """Fixed capability set (tests, or GATEDCI_CAPABILITIES overrides)."""

    def __init__(self, tags: Iterable[str] = ()):
        super().__init__()
        self.tags = frozenset(tags)

    def _resolve(self, tag: str) -> bool:
        return tag in self.tags


# ----------------------------------------------------------------------
# Host probes
# ----------------------------------------------------------------------

def _linux_kvm_available(device: str = KVM_DEVICE) -> bool:
    # Containers only see /dev/kvm when the runner passes it through.
    return os.path.exists(device) and os.access(device, os.R_OK | os.W_OK)


def _macos_hv_available() -> bool:
    try:
        out = subprocess.run(
            ["sysctl", "-n", "kern.hv_support"],
            text=True,
            capture_output=True,
            check=False,
        )
    except OSError:
        return False
    return out.returncode == 0 and out.stdout.strip() == "1"


def hardware_virtualization_available() -> bool:
    if sys.platform.startswith("linux"):
        return _linux_kvm_available()
    if sys.platform == "darwin":
        return _macos_hv_available()
    return False


def tool_available(name: str) -> bool:
    return bool(name) and shutil.which(name) is not None


class HostCapabilityProbe(CapabilityProbe):
    """
    Probes the live host.

    Supported tags:
      - hardware-virtualization: virtualization extensions exposed to this
        (possibly nested) container
      - tool:<name>: executable found on PATH

    `force` and `deny` override probing, e.g. to emulate a hosted runner
    without KVM on a developer machine.
    """

    def __init__(self, force: Iterable[str] = (), deny: Iterable[str] = ()):
        super().__init__()
        self.force = frozenset(force)
        self.deny = frozenset(deny)
        self._checks: Dict[str, Callable[[], bool]] = {
            HARDWARE_VIRTUALIZATION: hardware_virtualization_available,
        }

    def _resolve(self, tag: str) -> bool:
        if tag in self.deny:
            return False
        if tag in self.force:
            return True
        if tag.startswith(TOOL_PREFIX):
            return tool_available(tag[len(TOOL_PREFIX):])
        check = self._checks.get(tag)
        if check is None:
            logger.debug("unknown capability %r treated as unavailable", tag)
            return False
        return check()
