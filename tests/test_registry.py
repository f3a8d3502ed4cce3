from __future__ import annotations

import itertools
import random

import pytest

from taskgate.dsl import publish, sh, task
from taskgate.errors import CyclicDependency, DuplicateTask, InvalidGate, InvalidTask, UnknownTask
from taskgate.gates import BranchEquals
from taskgate.model import Step
from taskgate.registry import TaskRegistry


def t(name, *needs):
    return task(name, sh("noop", "true"), needs=list(needs))


def test_register_rejects_duplicates():
    reg = TaskRegistry([t("build")])
    with pytest.raises(DuplicateTask) as exc:
        reg.register(t("build"))
    assert exc.value.name == "build"


def test_resolve_unknown_task():
    reg = TaskRegistry([t("build")])
    with pytest.raises(UnknownTask):
        reg.resolve("deploy")


def test_resolve_missing_prerequisite_names_the_dependent():
    reg = TaskRegistry([t("check", "build")])
    with pytest.raises(UnknownTask) as exc:
        reg.resolve("check")
    assert exc.value.name == "build"
    assert exc.value.required_by == "check"


def test_resolve_orders_prerequisites_first_and_is_lazy():
    reg = TaskRegistry([
        t("fix"),
        t("build"),
        t("test", "build"),
        t("lint"),
        t("check", "test", "lint"),
        t("doc", "build"),
    ])
    order = [x.name for x in reg.resolve("check")]
    assert order == ["build", "test", "lint", "check"]
    assert "fix" not in order and "doc" not in order


def test_ties_follow_registration_order():
    reg = TaskRegistry([t("c"), t("a"), t("b"), t("all", "a", "b", "c")])
    assert [x.name for x in reg.resolve("all")] == ["c", "a", "b", "all"]


def test_cycle_is_reported_with_its_path():
    reg = TaskRegistry([t("a", "c"), t("b", "a"), t("c", "b"), t("d")])
    with pytest.raises(CyclicDependency) as exc:
        reg.resolve("a")
    assert exc.value.cycle == ["a", "c", "b", "a"]
    # tasks outside the cycle still resolve
    assert [x.name for x in reg.resolve("d")] == ["d"]


def test_self_dependency_is_a_cycle():
    with pytest.raises(CyclicDependency):
        TaskRegistry([t("a", "a")])


def test_random_acyclic_graphs_resolve_in_dependency_order():
    rng = random.Random(7)
    for _ in range(25):
        names = [f"t{i}" for i in range(12)]
        tasks = []
        for i, name in enumerate(names):
            needs = rng.sample(names[:i], k=rng.randint(0, min(i, 3)))
            tasks.append(t(name, *needs))
        rng.shuffle(tasks)
        reg = TaskRegistry(tasks)

        target = rng.choice(names)
        order = [x.name for x in reg.resolve(target)]
        pos = {n: i for i, n in enumerate(order)}
        assert order[-1] == target
        assert len(order) == len(set(order))
        for name in order:
            for dep in reg.get(name).needs:
                assert pos[dep] < pos[name]


def test_levels_group_independent_tasks():
    reg = TaskRegistry([t("build"), t("lint"), t("test", "build"), t("check", "test", "lint")])
    assert reg.levels(["check"]) == [["build", "lint"], ["test"], ["check"]]


def test_validate_surfaces_errors_anywhere_in_the_registry():
    reg = TaskRegistry([t("ok"), t("broken", "missing")])
    reg.resolve("ok")
    with pytest.raises(UnknownTask):
        reg.validate()


def test_invalid_gate_rejected_at_registration():
    bad = task("deploy", Step(name="ship", run="true", gate="branch == main"))
    with pytest.raises(InvalidGate):
        TaskRegistry([bad])

    empty = task("deploy", Step(name="ship", run="true", gate=BranchEquals("")))
    with pytest.raises(InvalidGate):
        TaskRegistry([empty])


def test_publish_must_be_the_last_step():
    bad = task("docs", publish("Deploy", "true", credential=None), sh("after", "true"))
    with pytest.raises(InvalidTask):
        TaskRegistry([bad])


@pytest.mark.parametrize(
    "step",
    [
        Step(name="odd", run="true", kind="docker"),
        Step(name="empty", run=""),
        Step(name="slow", run="true", timeout=0),
        Step(name="env", run="true", env={"N": 1}),
        Step(name="copy", kind="stage"),
        Step(name="copy", kind="stage", data={"source": "target/doc"}),
        Step(name="copy", kind="stage", data={"source": "target/doc", "dest": ""}),
        Step(name="ship", run="true", kind="publish"),
        Step(name="ship", run="true", kind="publish", data={"source": "doc", "target": "gh-pages"}),
    ],
)
def test_malformed_steps_rejected(step):
    with pytest.raises(InvalidTask):
        TaskRegistry([task("x", step)])


def test_aggregate_task_without_steps_is_allowed():
    reg = TaskRegistry([t("a"), t("b"), task("all", needs=["a", "b"])])
    assert [x.name for x in reg.resolve("all")] == ["a", "b", "all"]


def test_every_permutation_of_registration_gives_a_valid_order():
    base = [t("build"), t("test", "build"), t("doc", "build"), t("release", "test", "doc")]
    for perm in itertools.permutations(base):
        order = [x.name for x in TaskRegistry(perm).resolve("release")]
        assert order[0] == "build" and order[-1] == "release"
