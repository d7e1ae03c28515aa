# gatedci_workflow.py
# Workflow for checking gatedci itself: lint, tests and a packaging smoke test.
#   gatedci run --definition gatedci_workflow.py --pipeline self-check
from __future__ import annotations

from gatedci import cache, pipeline, sh, wf


def workflow():
    return wf(
        pipeline(
            "self-check",
            sh("Install package", "pip install -e '.[test]'"),
            sh("Ruff check", "ruff check src tests", requires=["tool:ruff"]),
            sh(
                "Run pytest",
                "pytest -q",
                cache=cache(".pytest_cache", "cat pyproject.toml"),
                timeout=600,
            ),
            sh("CLI smoke test", "gatedci list"),
        ),
    )
