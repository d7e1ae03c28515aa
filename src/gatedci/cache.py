# cache.py
from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import re
import shutil
import subprocess
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .model import CacheSpec, PipelineDefinition

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Folder caching:
#   cache_key = hash(folder, outputs of each fingerprint command)
#
# Cache artifact:
#   a tar.gz of the folder, stored as an opaque blob under its key.
#
# The runner restores every declared folder once before a run and saves
# them once after a completed run, never per step.
# ---------------------------------------------------------------------

DEFAULT_CACHE_DIR = ".gatedci/cache"
INDEX_FILE = "index.json"
ARTIFACT_SUFFIX = ".blob"


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class CacheStore:
    """
    File-based blob store:
      root/
        index.json
        <key>.blob
    """

    def __init__(self, root: str | Path = DEFAULT_CACHE_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE

    def artifact_path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise ValueError(f"invalid cache key: {key!r}")
        return self.root / f"{key}{ARTIFACT_SUFFIX}"

    # ---- index ----

    def _rebuild_index(self) -> Dict[str, Dict]:
        index: Dict[str, Dict] = {}
        for p in sorted(self.root.glob(f"*{ARTIFACT_SUFFIX}")):
            st = p.stat()
            index[p.name[: -len(ARTIFACT_SUFFIX)]] = {"size": st.st_size, "saved_at": st.st_mtime}
        return index

    def index(self) -> Dict[str, Dict]:
        if not self.index_path.exists():
            return self._rebuild_index()
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("cache index at %s is unreadable, rebuilding", self.index_path)
            return self._rebuild_index()
        if not isinstance(data, dict):
            return self._rebuild_index()
        return data

    def _write_index(self, index: Dict[str, Dict]) -> None:
        tmp = self.index_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(index, sort_keys=True, indent=2), encoding="utf-8")
        tmp.replace(self.index_path)

    def invalidate_index(self) -> None:
        """Drop the index; it is rebuilt from the artifacts on disk next time."""
        self.index_path.unlink(missing_ok=True)

    # ---- blobs ----

    def restore(self, key: str) -> Optional[bytes]:
        art = self.artifact_path(key)
        if not art.exists():
            return None
        return art.read_bytes()

    def save(self, key: str, blob: bytes) -> None:
        """Store a blob under key. Concurrent writers: last rename wins."""
        art = self.artifact_path(key)
        tmp = art.with_name(f".{art.name}.{os.getpid()}.tmp")
        try:
            tmp.write_bytes(blob)
            tmp.replace(art)
        finally:
            tmp.unlink(missing_ok=True)

        index = self.index()
        index[key] = {"size": len(blob), "saved_at": time.time()}
        self._write_index(index)

    def prune(self, keep: int = 3) -> List[str]:
        """Keep only the newest N artifacts. Returns the removed keys."""
        index = self.index()
        newest = sorted(index, key=lambda k: index[k].get("saved_at", 0), reverse=True)
        removed = newest[keep:]
        for key in removed:
            self.artifact_path(key).unlink(missing_ok=True)
            index.pop(key, None)
        if removed:
            self._write_index(index)
        return removed


# ---------------------------------------------------------------------
# Folder archives
# ---------------------------------------------------------------------

_VAR_RE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


def expand_path(path: str, env: Dict[str, str], workdir: Path) -> Path:
    """Expand $VAR / ${VAR} from env and ~, relative to workdir. Unknown vars stay as-is."""
    expanded = _VAR_RE.sub(lambda m: env.get(m.group(1) or m.group(2), m.group(0)), path)
    expanded = os.path.expanduser(expanded)
    return (workdir / expanded).resolve()


def archive_folder(folder: Path) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        # deterministic traversal
        for p in sorted(folder.rglob("*")):
            if p.is_file() and not p.is_symlink():
                tar.add(str(p), arcname=p.relative_to(folder).as_posix(), recursive=False)
    return buf.getvalue()


def extract_folder(blob: bytes, folder: Path) -> None:
    folder.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz") as tar:
        tar.extractall(path=str(folder), filter="data")


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    folder: str
    reason: str  # human readable


class PipelineCache:
    """Restores/saves every cached folder of a pipeline around a full run."""

    def __init__(
        self,
        store: CacheStore,
        *,
        workdir: str | Path = ".",
        env: Optional[Dict[str, str]] = None,
        keep: int = 3,
    ):
        self.store = store
        self.workdir = Path(workdir).resolve()
        self.env = dict(env or {})
        self.keep = keep
        self._keys: Dict[str, str] = {}

    def _environ(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        return env

    def _fingerprint_output(self, command: str) -> str:
        """Run a fingerprint command; its output (or failure) feeds the key."""
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=str(self.workdir),
                env=self._environ(),
                capture_output=True,
            )
        except OSError as e:
            return f"error:{e}"
        digest = hashlib.sha256(proc.stdout).hexdigest()
        return f"exit={proc.returncode}:{digest}"

    def compute_key(self, spec: CacheSpec) -> str:
        payload = {
            "v": 1,  # bump this if you change hashing format
            "folder": spec.folder,
            "fingerprint": [[cmd, self._fingerprint_output(cmd)] for cmd in spec.fingerprint],
        }
        return _sha256_str(_json_dumps_stable(payload))

    def folder_path(self, spec: CacheSpec) -> Path:
        return expand_path(spec.folder, self._environ(), self.workdir)

    def restore(self, definition: PipelineDefinition) -> List[CacheHit]:
        hits: List[CacheHit] = []
        for _step, spec in definition.cache_specs():
            key = self.compute_key(spec)
            self._keys[spec.folder] = key
            try:
                blob = self.store.restore(key)
                if blob is None:
                    hits.append(CacheHit(False, key, spec.folder, "cache miss"))
                    continue
                extract_folder(blob, self.folder_path(spec))
            except (OSError, tarfile.TarError) as e:
                logger.warning("restoring cache for %s failed: %s", spec.folder, e)
                hits.append(CacheHit(False, key, spec.folder, f"restore failed: {e}"))
                continue
            hits.append(CacheHit(True, key, spec.folder, "cache hit: restored"))
        return hits

    def invalidate_index(self, spec: CacheSpec) -> None:
        """Delete the folder's prune paths (e.g. a registry index) before saving."""
        folder = self.folder_path(spec)
        for rel in spec.prune:
            target = (folder / rel).resolve()
            if folder not in target.parents:
                logger.warning("refusing to prune %s outside of %s", target, folder)
                continue
            if target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()

    def save(self, definition: PipelineDefinition) -> List[str]:
        saved: List[str] = []
        for _step, spec in definition.cache_specs():
            folder = self.folder_path(spec)
            if not folder.is_dir():
                logger.debug("cache folder %s does not exist, nothing to save", folder)
                continue
            key = self._keys.get(spec.folder) or self.compute_key(spec)
            try:
                self.invalidate_index(spec)
                self.store.save(key, archive_folder(folder))
            except (OSError, tarfile.TarError) as e:
                logger.warning("saving cache for %s failed: %s", spec.folder, e)
                continue
            saved.append(key)
        if saved:
            self.store.prune(keep=max(self.keep, len(saved)))
        return saved
