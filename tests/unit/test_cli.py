import asyncio

from typer.testing import CliRunner

from waymark import Workspace
from waymark.cli import app

runner = CliRunner()


def _seed(root) -> Workspace:
    workspace = Workspace(root)
    asyncio.run(workspace.tracker.start_step("release", "lint"))
    asyncio.run(workspace.tracker.complete_step("release", "lint"))
    asyncio.run(workspace.tracker.start_step("release", "build"))
    return workspace


def _invoke(root, *args):
    return runner.invoke(app, ["--root", str(root), *args])


def test_state_list_and_show(tmp_path):
    _seed(tmp_path)

    result = _invoke(tmp_path, "state", "list")
    assert result.exit_code == 0, result.stdout
    assert "release" in result.stdout

    result = _invoke(tmp_path, "state", "show", "release")
    assert result.exit_code == 0, result.stdout
    assert "Workflow release: 50% (1/2 steps finished)" in result.stdout
    assert "Current step: build" in result.stdout
    assert "- lint: completed" in result.stdout
    assert "- build: in-progress" in result.stdout


def test_state_show_missing_workflow(tmp_path):
    result = _invoke(tmp_path, "state", "show", "missing")

    assert result.exit_code == 1
    assert "NotFound" in result.stdout


def test_state_list_empty(tmp_path):
    result = _invoke(tmp_path, "state", "list")

    assert result.exit_code == 0
    assert "No workflows found" in result.stdout


def test_checkpoint_commands(tmp_path):
    workspace = _seed(tmp_path)

    result = _invoke(tmp_path, "checkpoint", "create", "release")
    assert result.exit_code == 0, result.stdout
    assert "(1/2 steps, 50%)" in result.stdout

    summaries = asyncio.run(workspace.checkpoints.list_checkpoints("release")).unwrap()
    checkpoint_id = summaries[0].checkpoint_id

    result = _invoke(tmp_path, "checkpoint", "list", "release")
    assert checkpoint_id in result.stdout
    assert "build" in result.stdout

    result = _invoke(tmp_path, "checkpoint", "show", "release", checkpoint_id)
    assert result.exit_code == 0, result.stdout
    assert "- lint: completed" in result.stdout

    result = _invoke(tmp_path, "checkpoint", "delete", "release", checkpoint_id)
    assert result.exit_code == 0, result.stdout
    result = _invoke(tmp_path, "checkpoint", "list", "release")
    assert "No checkpoints found" in result.stdout


def test_checkpoint_prune(tmp_path):
    workspace = _seed(tmp_path)
    for _ in range(3):
        asyncio.run(workspace.checkpoints.create_checkpoint("release"))

    result = _invoke(tmp_path, "checkpoint", "prune", "release", "--keep", "1")
    assert result.exit_code == 0, result.stdout
    assert "Deleted 2 checkpoint(s)" in result.stdout


def test_rollback_commands(tmp_path):
    workspace = _seed(tmp_path)
    asyncio.run(workspace.checkpoints.create_checkpoint("release"))
    asyncio.run(workspace.tracker.complete_step("release", "build"))

    result = _invoke(tmp_path, "rollback", "last", "release")
    assert result.exit_code == 0, result.stdout
    assert "1 step(s), 0 file(s) reverted [success]" in result.stdout

    result = _invoke(tmp_path, "rollback", "status", "release")
    assert "1 rollback(s)" in result.stdout
    assert "Available checkpoints: 1" in result.stdout

    result = _invoke(tmp_path, "rollback", "report", "release")
    assert result.exit_code == 0, result.stdout
    assert "Total rollbacks: 1" in result.stdout
    assert "* Use rollback_to_last_checkpoint('release')" in result.stdout


def test_rollback_without_checkpoint_fails(tmp_path):
    _seed(tmp_path)

    result = _invoke(tmp_path, "rollback", "last", "release")
    assert result.exit_code == 1
    assert "RollbackError" in result.stdout
