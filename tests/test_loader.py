from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from taskgate.errors import CyclicDependency, InvalidGate, InvalidWorkflow, UnknownService
from taskgate.gates import AllOf
from taskgate.loader import find_workflow_files, load_workflow, pipeline_from_dict
from taskgate.model import FailurePolicy
from taskgate.services import HttpProbe

EXAMPLES = Path(__file__).resolve().parents[1] / "examples"


def write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_load_example_yaml():
    p = load_workflow(EXAMPLES / "rust_search_service.yaml")

    assert p.default == "check"
    assert p.registry.names() == ["fix", "build", "test", "check", "run", "doc", "deploy-docs"]
    assert [t.name for t in p.registry.resolve("check")] == ["build", "test", "check"]

    test = p.registry.get("test")
    assert test.services == ["meilisearch"]
    assert [s.policy for s in test.steps] == [
        FailurePolicy.FAIL_FAST,
        FailurePolicy.CONTINUE_ON_ERROR,
        FailurePolicy.CONTINUE_ON_ERROR,
    ]
    assert test.steps[0].run == ("cargo", "test")

    (meili,) = p.services
    assert isinstance(meili.probe, HttpProbe)
    assert meili.timeout == 90

    deploy = p.registry.get("deploy-docs").steps[-1]
    assert deploy.kind == "publish"
    assert isinstance(deploy.gate, AllOf)
    assert p.secret_names() == ["GITHUB_TOKEN"]


def test_yaml_publish_gets_default_gate_when_unset():
    p = pipeline_from_dict({"tasks": {"deploy": {"steps": [{"name": "d", "publish": {"command": "true"}}]}}})
    assert str(p.registry.get("deploy").steps[0].gate) == "(branch-equals(main) and event-is(push))"


@pytest.mark.parametrize(
    "data",
    [
        {"tasks": {"a": {"steps": [{"name": "s"}]}}},  # no action
        {"tasks": {"a": {"steps": [{"name": "s", "run": "x", "stage": {"source": "a", "dest": "b"}}]}}},
        {"tasks": {"a": {"steps": [{"name": "s", "run": "x", "retries": 3}]}}},  # unknown key
        {"tasks": {"a": {"steps": [{"name": "s", "run": "x", "timeout": 0}]}}},
        {"tasks": {"a": {}}, "services": {"db": {"start": "x"}}},  # no probe
        {"tasks": "nope"},
        None,
    ],
)
def test_invalid_documents(data):
    with pytest.raises(InvalidWorkflow):
        pipeline_from_dict(data)


def test_unknown_gate_kind():
    data = {"tasks": {"a": {"steps": [{"name": "s", "run": "x", "when": {"tag-matches": "v*"}}]}}}
    with pytest.raises(InvalidGate):
        pipeline_from_dict(data)


def test_semantic_errors_surface_from_loader():
    with pytest.raises(CyclicDependency):
        pipeline_from_dict({"tasks": {"a": {"needs": ["b"]}, "b": {"needs": ["a"]}}})
    with pytest.raises(UnknownService):
        pipeline_from_dict({"tasks": {"a": {"services": ["db"]}}})


def test_duplicate_yaml_keys_are_rejected(tmp_path):
    wf = write(
        tmp_path / "taskgate.yaml",
        """
        tasks:
          build:
            steps: [{name: a, run: "true"}]
          build:
            steps: [{name: b, run: "true"}]
        """,
    )
    with pytest.raises(InvalidWorkflow) as exc:
        load_workflow(wf)
    assert "duplicate key 'build'" in str(exc.value)


def test_yaml_syntax_error(tmp_path):
    wf = write(tmp_path / "taskgate.yml", "tasks: [unclosed\n")
    with pytest.raises(InvalidWorkflow):
        load_workflow(wf)


def test_python_workflow_function(tmp_path):
    wf = write(
        tmp_path / "taskgate_workflow.py",
        """
        from taskgate import pipeline, sh, task

        def workflow():
            return pipeline(
                task("build", sh("b", "true")),
                task("ship", sh("s", "true"), needs=["build"]),
                default="ship",
            )
        """,
    )
    p = load_workflow(wf)
    assert p.default == "ship"
    assert p.registry.names() == ["build", "ship"]


def test_python_workflow_task_list(tmp_path):
    wf = write(
        tmp_path / "ci_workflow.py",
        """
        from taskgate import service, sh, task

        SERVICES = [service("db", port=5432)]
        TASKS = [task("test", sh("t", "pytest"), services=["db"])]
        DEFAULT_TARGET = "test"
        """,
    )
    p = load_workflow(wf)
    assert [s.name for s in p.services] == ["db"]
    assert p.default == "test"


def test_python_workflow_without_definitions(tmp_path):
    wf = write(tmp_path / "empty_workflow.py", "X = 1\n")
    with pytest.raises(InvalidWorkflow):
        load_workflow(wf)


def test_missing_and_unsupported_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "nope.yaml")
    wf = write(tmp_path / "workflow.toml", "")
    with pytest.raises(InvalidWorkflow):
        load_workflow(wf)


def test_find_workflow_files(tmp_path):
    write(tmp_path / "taskgate.yaml", "tasks: {}\n")
    write(tmp_path / "taskgate_workflow.py", "")
    write(tmp_path / "release_workflow.py", "")
    found = [p.name for p in find_workflow_files(tmp_path)]
    assert found == ["taskgate_workflow.py", "taskgate.yaml", "release_workflow.py"]
