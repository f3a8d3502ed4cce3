from __future__ import annotations

import pytest

from taskgate.dsl import build, pipeline, publish, service, sh, stage, task
from taskgate.errors import ArtifactConflict, ConfigurationError, UnknownService, UnknownTask
from taskgate.gates import DEFAULT_PUBLISH_GATE, flag
from taskgate.model import FailurePolicy, Step


def test_default_target_prefers_check():
    p = pipeline(task("build", sh("b", "true")), task("check", needs=["build"]), task("doc", needs=["build"]))
    assert p.default == "check"


def test_default_target_falls_back_to_last_task():
    p = pipeline(task("build", sh("b", "true")), task("doc", needs=["build"]))
    assert p.default == "doc"


def test_explicit_default_must_exist():
    with pytest.raises(UnknownTask):
        pipeline(task("build", sh("b", "true")), default="ship")


def test_empty_pipeline_has_no_default():
    with pytest.raises(ConfigurationError):
        pipeline().default


def test_unknown_service_reference():
    with pytest.raises(UnknownService) as exc:
        pipeline(task("test", sh("t", "true"), services=["redis"]))
    assert exc.value.task == "test"


def test_duplicate_service():
    with pytest.raises(ConfigurationError):
        pipeline(services=[service("db", port=1), service("db", port=2)])


def test_independent_writers_of_one_artifact_conflict():
    with pytest.raises(ArtifactConflict) as exc:
        pipeline(
            task("doc", stage("s", "target/doc", "site")),
            task("book", stage("s", "book", "./site")),
        )
    assert exc.value.path == "site"
    assert exc.value.tasks == ["doc", "book"]


def test_ordered_writers_of_one_artifact_are_fine():
    p = pipeline(
        task("doc", stage("s", "target/doc", "site")),
        task("book", stage("s", "book", "site"), needs=["doc"]),
    )
    assert p.registry.names() == ["doc", "book"]


def test_secret_names_come_from_publish_steps():
    p = pipeline(
        task("a", publish("pages", "ghp-import {source}")),
        task("b", publish("pypi", "twine upload {source}", credential="PYPI_TOKEN")),
        task("c", publish("rsync", "rsync -a {source} host:", credential=None)),
    )
    assert p.secret_names() == ["GITHUB_TOKEN", "PYPI_TOKEN"]


def test_publish_default_gate_and_override():
    assert publish("p", "x").gate == DEFAULT_PUBLISH_GATE
    assert publish("p", "x", when=flag("release")).gate == flag("release")
    assert publish("p", "x", when=None).gate is None


def test_sh_argv_and_policy():
    step = sh("t", ["cargo", "test"], continue_on_error=True, env={"RUST_LOG": "debug"})
    assert step.run == ("cargo", "test")
    assert step.command_line == "cargo test"
    assert step.policy is FailurePolicy.CONTINUE_ON_ERROR


def test_task_cwd_applies_to_steps_without_one():
    t = task("web", sh("a", "npm ci"), sh("b", "npm test", cwd="other"), cwd="frontend")
    assert [s.cwd for s in t.steps] == ["frontend", "other"]


def test_builder():
    t = (
        build("test")
        .depends_on("build")
        .requires_services("db")
        .define_step("unit", "pytest -q")
        .add(sh("cov", "coverage xml", continue_on_error=True))
        .with_env(PYTHONHASHSEED=0)
        .best_effort()
        .describe("unit tests")
        .build()
    )
    assert t.needs == ["build"]
    assert t.services == ["db"]
    assert [s.name for s in t.steps] == ["unit", "cov"]
    assert t.env == {"PYTHONHASHSEED": "0"}
    assert t.best_effort and t.description == "unit tests"


def test_stage_without_destination_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        pipeline(task("t", Step(name="copy", kind="stage", data={"source": "x"})))
