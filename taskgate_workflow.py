# taskgate_workflow.py
# Workflow for taskgate itself: lint, tests (+ best-effort coverage), docs, publish.
from __future__ import annotations

from taskgate import pipeline, publish, sh, stage, task


def workflow():
    return pipeline(
        # Auto-fixers, run on demand only (nothing depends on this task)
        task(
            "fix",
            sh("Ruff fix", "ruff check --fix src tests"),
            sh("Ruff format", "ruff format src tests"),
            description="apply lint fixes and formatting",
        ),

        task(
            "build",
            sh("Install package", "python -m pip install -e .[test]"),
            description="install taskgate in editable mode",
        ),

        task(
            "lint",
            sh("Ruff check", "ruff check src tests"),
            sh("Ruff format check", "ruff format --check src tests"),
            description="static checks",
        ),

        task(
            "test",
            sh("Run pytest", "pytest -q"),
            # coverage is informational: a missing pytest-cov must not fail the run
            sh("Coverage", "pytest -q --cov=taskgate --cov-report=xml:target/coverage.xml", continue_on_error=True),
            needs=["build"],
            description="unit tests",
        ),

        task(
            "check",
            needs=["lint", "test"],
            description="everything CI runs on a pull request",
        ),

        task(
            "doc",
            sh("API docs", "pdoc taskgate -o target/doc"),
            stage("Stage API docs", "target/doc", "docs"),
            needs=["build"],
            description="build the API documentation",
        ),

        task(
            "publish-docs",
            publish("Deploy docs", "ghp-import --no-jekyll --push --branch gh-pages {source}", source="docs"),
            needs=["doc", "check"],
            description="push docs to gh-pages (main branch pushes only)",
        ),
        default="check",
    )
