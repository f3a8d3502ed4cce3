from __future__ import annotations

import filecmp

import pytest

from taskgate.errors import ArtifactMissing, ExecutionError, InvalidArtifactPath, MissingCredential
from taskgate.model import ProcessResult
from taskgate.relay import ArtifactRelay, PublishTarget


@pytest.fixture
def relay(tmp_path):
    return ArtifactRelay(tmp_path, "target/taskgate")


def tree(root):
    return sorted(str(p.relative_to(root)) for p in root.rglob("*"))


def test_stage_copies_directory_tree(tmp_path, relay):
    src = tmp_path / "target" / "doc"
    (src / "search" / "assets").mkdir(parents=True)
    (src / "index.html").write_text("<html></html>")
    (src / "search" / "assets" / "logo.png").write_bytes(bytes(range(256)))

    count = relay.stage("target/doc", "doc")

    dst = tmp_path / "target" / "taskgate" / "doc"
    assert count == 2
    assert tree(dst) == tree(src)
    cmp = filecmp.dircmp(src, dst)
    assert not cmp.diff_files and not cmp.left_only and not cmp.right_only
    assert (dst / "search" / "assets" / "logo.png").read_bytes() == bytes(range(256))


def test_stage_overwrites_and_merges(tmp_path, relay):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "x.txt").write_text("new")
    dst = tmp_path / "target" / "taskgate" / "site"
    dst.mkdir(parents=True)
    (dst / "x.txt").write_text("old")
    (dst / "keep.txt").write_text("keep")

    relay.stage("a", "site")
    assert (dst / "x.txt").read_text() == "new"
    assert (dst / "keep.txt").read_text() == "keep"


def test_stage_single_file_into_nested_destination(tmp_path, relay):
    (tmp_path / "README.md").write_text("# hi")
    assert relay.stage("README.md", "deep/nested/README.md") == 1
    assert (tmp_path / "target" / "taskgate" / "deep" / "nested" / "README.md").read_text() == "# hi"


def test_stage_missing_source(relay):
    with pytest.raises(ArtifactMissing) as exc:
        relay.stage("target/doc", "doc")
    assert exc.value.fatal
    assert "target/doc" in str(exc.value).replace("\\", "/")


class Recorder:
    def __init__(self, exit_code: int = 0):
        self.exit_code = exit_code
        self.calls = []

    def __call__(self, cmd, *, cwd, env, timeout):
        self.calls.append((cmd, cwd, env, timeout))
        return ProcessResult(exit_code=self.exit_code, stderr="denied" if self.exit_code else "")


@pytest.fixture
def staged(tmp_path, relay):
    (tmp_path / "target" / "taskgate" / "doc").mkdir(parents=True)
    return relay


def test_publish_passes_payload_and_credential(tmp_path, staged, ctx):
    launch = Recorder()
    target = PublishTarget("gh-pages", ("ghp-import", "--push", "{source}"), credential="GITHUB_TOKEN")
    staged.publish("doc", target, ctx(secrets={"GITHUB_TOKEN": "t0k"}), launch=launch, env={}, timeout=30)

    (cmd, cwd, env, timeout), = launch.calls
    payload = str((tmp_path / "target" / "taskgate" / "doc").resolve())
    assert cmd == ("ghp-import", "--push", payload)
    assert cwd == tmp_path.resolve()
    assert env["GITHUB_TOKEN"] == "t0k"
    assert env["TASKGATE_PUBLISH_DIR"] == payload
    assert env["TASKGATE_PUBLISH_TARGET"] == "gh-pages"
    assert timeout == 30


def test_publish_shell_command_is_rendered(tmp_path, staged, ctx):
    launch = Recorder()
    target = PublishTarget("pages", "rsync -a {source}/ host:/srv")
    staged.publish("doc", target, ctx(), launch=launch)
    cmd = launch.calls[0][0]
    assert cmd.startswith("rsync -a ") and cmd.endswith("/ host:/srv")
    assert "{source}" not in cmd


def test_publish_without_credential_never_launches(staged, ctx):
    launch = Recorder()
    target = PublishTarget("gh-pages", "ghp-import {source}", credential="GITHUB_TOKEN")
    with pytest.raises(MissingCredential) as exc:
        staged.publish("doc", target, ctx(secrets={"GITHUB_TOKEN": ""}), launch=launch)
    assert launch.calls == []
    assert exc.value.fatal


def test_publish_missing_payload(relay, ctx):
    launch = Recorder()
    with pytest.raises(ArtifactMissing):
        relay.publish("doc", PublishTarget("x", "true"), ctx(), launch=launch)
    assert launch.calls == []


def test_publish_failure_raises_execution_error(staged, ctx):
    with pytest.raises(ExecutionError) as exc:
        staged.publish("doc", PublishTarget("x", "upload {source}"), ctx(), launch=Recorder(exit_code=3))
    assert exc.value.exit_code == 3
    assert "denied" in exc.value.output


def test_stage_refuses_destination_inside_source(tmp_path, relay):
    # the output root target/taskgate lives inside target/
    (tmp_path / "target" / "doc").mkdir(parents=True)
    (tmp_path / "target" / "doc" / "index.html").write_text("x")
    with pytest.raises(InvalidArtifactPath) as exc:
        relay.stage("target", "all")
    assert exc.value.fatal
    assert not (tmp_path / "target" / "taskgate" / "all").exists()
