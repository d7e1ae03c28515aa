"""Tests for the python workflow helpers."""

import pytest

from gatedci import cache, pipeline, sh, wf
from gatedci.loader import MalformedDefinition
from gatedci.model import HARDWARE_VIRTUALIZATION, CacheSpec


def test_sh_accepts_single_requirement():
    step = sh("test", "cargo test", requires=HARDWARE_VIRTUALIZATION)
    assert step.requires == frozenset({HARDWARE_VIRTUALIZATION})


def test_sh_stringifies_env():
    assert sh("x", "true", env={"JOBS": 4}).env == {"JOBS": "4"}


def test_cache_helper():
    spec = cache("target", "rustc --version", "cat Cargo.lock", prune=["index"])
    assert spec == CacheSpec("target", ("rustc --version", "cat Cargo.lock"), ("index",))


def test_pipeline_keeps_order():
    p = pipeline("ci", sh("b", "x"), sh("a", "y"), steps_list=[sh("first", "z")])
    assert p.step_names() == ["first", "b", "a"]


def test_pipeline_rejects_duplicates():
    with pytest.raises(MalformedDefinition) as exc:
        pipeline("ci", sh("a", "x"), sh("a", "y"))
    assert exc.value.index == 1


def test_pipeline_rejects_non_steps():
    with pytest.raises(MalformedDefinition):
        pipeline("ci", "cargo build")


def test_wf_returns_list():
    pipelines = wf(pipeline("a"), pipeline("b"))
    assert [p.name for p in pipelines] == ["a", "b"]
