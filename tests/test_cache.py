"""Tests for the cache store and the pipeline cache collaborator."""

import io
import tarfile
from unittest.mock import patch

import pytest

from gatedci import cache, pipeline, sh
from gatedci.cache import CacheStore, PipelineCache, expand_path


@pytest.fixture
def store(tmp_path):
    return CacheStore(tmp_path / "store")


class TestCacheStore:
    def test_restore_missing_key(self, store):
        assert store.restore("abc") is None

    def test_save_then_restore(self, store):
        store.save("abc", b"payload")

        assert store.restore("abc") == b"payload"
        assert store.index()["abc"]["size"] == len(b"payload")

    def test_last_writer_wins(self, store):
        store.save("abc", b"first")
        store.save("abc", b"second")

        assert store.restore("abc") == b"second"

    def test_invalidate_index_rebuilds_from_disk(self, store):
        store.save("abc", b"payload")
        store.invalidate_index()

        assert not store.index_path.exists()
        assert "abc" in store.index()
        assert store.restore("abc") == b"payload"

    def test_prune_keeps_newest(self, store):
        with patch("gatedci.cache.time.time", side_effect=[1.0, 2.0, 3.0]):
            store.save("old", b"1")
            store.save("mid", b"2")
            store.save("new", b"3")

        assert store.prune(keep=1) == ["mid", "old"]
        assert store.restore("old") is None
        assert store.restore("new") == b"3"
        assert list(store.index()) == ["new"]

    @pytest.mark.parametrize("key", ["", "../escape", ".hidden"])
    def test_rejects_bad_keys(self, store, key):
        with pytest.raises(ValueError):
            store.save(key, b"x")


class TestExpandPath:
    def test_expands_env_vars(self, tmp_path):
        path = expand_path("$CARGO_HOME/registry", {"CARGO_HOME": str(tmp_path / "cargo")}, tmp_path)
        assert path == (tmp_path / "cargo" / "registry").resolve()

    def test_braced_vars_and_relative_paths(self, tmp_path):
        path = expand_path("${OUT}/target", {"OUT": "build"}, tmp_path)
        assert path == (tmp_path / "build" / "target").resolve()

    def test_unknown_vars_are_kept(self, tmp_path):
        path = expand_path("$NOPE/x", {}, tmp_path)
        assert path.name == "x"
        assert "$NOPE" in str(path)


def _workspace(tmp_path):
    work = tmp_path / "work"
    (work / "target").mkdir(parents=True)
    (work / "Cargo.lock").write_text("lock-v1", encoding="utf-8")
    (work / "target" / "artifact.bin").write_text("built", encoding="utf-8")
    return work


class TestPipelineCache:
    def test_miss_save_then_hit(self, tmp_path, store):
        work = _workspace(tmp_path)
        definition = pipeline("ci", sh("build", "cargo build", cache=cache("target", "cat Cargo.lock")))
        pc = PipelineCache(store, workdir=work)

        hits = pc.restore(definition)
        assert [h.hit for h in hits] == [False]

        assert len(pc.save(definition)) == 1

        (work / "target" / "artifact.bin").unlink()
        hits = PipelineCache(store, workdir=work).restore(definition)
        assert [h.hit for h in hits] == [True]
        assert (work / "target" / "artifact.bin").read_text(encoding="utf-8") == "built"

    def test_fingerprint_change_changes_key(self, tmp_path, store):
        work = _workspace(tmp_path)
        spec = cache("target", "cat Cargo.lock")
        pc = PipelineCache(store, workdir=work)

        before = pc.compute_key(spec)
        (work / "Cargo.lock").write_text("lock-v2", encoding="utf-8")

        assert pc.compute_key(spec) != before

    def test_prune_paths_are_removed_before_saving(self, tmp_path, store):
        work = tmp_path / "work"
        (work / "registry" / "index").mkdir(parents=True)
        (work / "registry" / "cache").mkdir(parents=True)
        (work / "registry" / "index" / "big").write_text("x", encoding="utf-8")
        (work / "registry" / "cache" / "crate").write_text("y", encoding="utf-8")
        definition = pipeline("ci", sh("toolchain", "true", cache=cache("registry", prune=["index"])))
        pc = PipelineCache(store, workdir=work)

        [key] = pc.save(definition)

        assert not (work / "registry" / "index").exists()
        with tarfile.open(fileobj=io.BytesIO(store.restore(key)), mode="r:gz") as tar:
            assert tar.getnames() == ["cache/crate"]

    def test_prune_refuses_paths_outside_folder(self, tmp_path, store):
        work = _workspace(tmp_path)
        pc = PipelineCache(store, workdir=work)
        pc.invalidate_index(cache("target", prune=["../Cargo.lock"]))

        assert (work / "Cargo.lock").exists()

    def test_missing_folder_is_not_saved(self, tmp_path, store):
        definition = pipeline("ci", sh("build", "true", cache=cache("nothing-here")))
        assert PipelineCache(store, workdir=tmp_path).save(definition) == []

    def test_corrupt_artifact_is_a_miss(self, tmp_path, store):
        work = _workspace(tmp_path)
        spec = cache("target")
        pc = PipelineCache(store, workdir=work)
        store.save(pc.compute_key(spec), b"not a tarball")

        hits = pc.restore(pipeline("ci", sh("build", "true", cache=spec)))
        assert not hits[0].hit
        assert "restore failed" in hits[0].reason
