from datetime import timedelta

import pytest

from waymark import Checkpoint, CheckpointStore, ErrorKind, StateStore, StepTracker
from waymark.persistence import write_document
from waymark.utils import CheckpointIdGenerator, utcnow


def _services(tmp_path, keep_last=None):
    store = StateStore(tmp_path)
    return StepTracker(store), CheckpointStore(store, keep_last=keep_last)


@pytest.mark.asyncio
async def test_create_checkpoint_captures_state_and_metadata(tmp_path):
    tracker, checkpoints = _services(tmp_path)
    await tracker.set_variable("wf", "env", "staging")
    await tracker.start_step("wf", "step1")
    await tracker.complete_step("wf", "step1")
    await tracker.start_step("wf", "step2")

    summary = (await checkpoints.create_checkpoint("wf")).unwrap()
    assert summary.workflow_id == "wf"
    assert summary.step_id == "step2"
    assert summary.metadata.total_steps == 2
    assert summary.metadata.completed_steps == 1
    assert summary.metadata.progress == 50

    path = checkpoints.path_for("wf", summary.checkpoint_id)
    assert path == tmp_path / "state" / "checkpoints" / "wf" / f"checkpoint-{summary.checkpoint_id}.yaml"
    assert path.exists()

    checkpoint = (await checkpoints.load_checkpoint("wf", summary.checkpoint_id)).unwrap()
    assert checkpoint.state.variables == {"env": "staging"}
    assert [s.step_id for s in checkpoint.state.step_history] == ["step1", "step2"]
    assert checkpoint.state.current_step == "step2"
    assert "created" in checkpoint.state.timestamps


@pytest.mark.asyncio
async def test_create_checkpoint_without_state(tmp_path):
    _, checkpoints = _services(tmp_path)

    summary = (await checkpoints.create_checkpoint("new-wf", "setup")).unwrap()
    assert summary.step_id == "setup"
    assert summary.metadata.total_steps == 0
    assert summary.metadata.progress == 0


@pytest.mark.asyncio
async def test_checkpoint_is_unaffected_by_later_state_changes(tmp_path):
    tracker, checkpoints = _services(tmp_path)
    await tracker.start_step("wf", "step1")
    summary = (await checkpoints.create_checkpoint("wf")).unwrap()
    before = (await checkpoints.load_checkpoint("wf", summary.checkpoint_id)).unwrap()

    await tracker.complete_step("wf", "step1", {"output": "done"})
    await tracker.start_step("wf", "step2")
    await tracker.set_variable("wf", "late", True)

    after = (await checkpoints.load_checkpoint("wf", summary.checkpoint_id)).unwrap()
    assert after == before
    assert after.state.step_history[0].status == "in-progress"
    assert "late" not in after.state.variables


@pytest.mark.asyncio
async def test_list_checkpoints_newest_first(tmp_path):
    tracker, checkpoints = _services(tmp_path)
    await tracker.start_step("wf", "s")

    created = [(await checkpoints.create_checkpoint("wf")).unwrap() for _ in range(5)]
    listed = (await checkpoints.list_checkpoints("wf")).unwrap()

    assert [s.checkpoint_id for s in listed] == [s.checkpoint_id for s in reversed(created)]


@pytest.mark.asyncio
async def test_list_checkpoints_empty_and_skips_corrupt_files(tmp_path):
    _, checkpoints = _services(tmp_path)
    assert (await checkpoints.list_checkpoints("wf")).value == []

    good = (await checkpoints.create_checkpoint("wf")).unwrap()
    directory = checkpoints.directory_for("wf")
    (directory / "checkpoint-broken.yaml").write_text("state: [unclosed")
    (directory / "checkpoint-list.yaml").write_text("- not\n- a mapping\n")
    (directory / "notes.txt").write_text("ignored")

    listed = (await checkpoints.list_checkpoints("wf")).unwrap()
    assert [s.checkpoint_id for s in listed] == [good.checkpoint_id]


@pytest.mark.asyncio
async def test_load_checkpoint_errors(tmp_path):
    _, checkpoints = _services(tmp_path)

    missing = await checkpoints.load_checkpoint("wf", "123")
    assert missing.kind is ErrorKind.NOT_FOUND

    for bad_id in ("", None, "../escape", "a b"):
        invalid = await checkpoints.load_checkpoint("wf", bad_id)
        assert invalid.kind is ErrorKind.INVALID_IDENTIFIER

    assert (await checkpoints.load_checkpoint("", "123")).kind is ErrorKind.INVALID_IDENTIFIER

    directory = checkpoints.directory_for("wf")
    directory.mkdir(parents=True)
    (directory / "checkpoint-999.yaml").write_text("checkpointId: [unclosed")
    corrupt = await checkpoints.get_checkpoint_info("wf", "999")
    assert corrupt.kind is ErrorKind.PARSE_ERROR


@pytest.mark.asyncio
async def test_delete_and_latest_checkpoint(tmp_path):
    tracker, checkpoints = _services(tmp_path)

    none_yet = await checkpoints.get_latest_checkpoint("wf")
    assert not none_yet.success
    assert none_yet.kind is ErrorKind.NOT_FOUND

    await tracker.start_step("wf", "a")
    first = (await checkpoints.create_checkpoint("wf")).unwrap()
    await tracker.start_step("wf", "b")
    second = (await checkpoints.create_checkpoint("wf")).unwrap()

    latest = (await checkpoints.get_latest_checkpoint("wf")).unwrap()
    assert latest.checkpoint_id == second.checkpoint_id

    assert (await checkpoints.delete_checkpoint("wf", second.checkpoint_id)).success
    latest = (await checkpoints.get_latest_checkpoint("wf")).unwrap()
    assert latest.checkpoint_id == first.checkpoint_id

    again = await checkpoints.delete_checkpoint("wf", second.checkpoint_id)
    assert again.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_checkpoints_survive_state_deletion(tmp_path):
    tracker, checkpoints = _services(tmp_path)
    await tracker.start_step("wf", "a")
    summary = (await checkpoints.create_checkpoint("wf")).unwrap()

    await tracker.store.delete("wf")

    assert (await checkpoints.load_checkpoint("wf", summary.checkpoint_id)).success


@pytest.mark.asyncio
async def test_prune_and_automatic_retention(tmp_path):
    tracker, checkpoints = _services(tmp_path)
    await tracker.start_step("wf", "a")
    created = [(await checkpoints.create_checkpoint("wf")).unwrap() for _ in range(4)]

    deleted = (await checkpoints.prune_checkpoints("wf", 1)).unwrap()
    assert deleted == 3
    listed = (await checkpoints.list_checkpoints("wf")).unwrap()
    assert [s.checkpoint_id for s in listed] == [created[-1].checkpoint_id]

    _, retaining = _services(tmp_path / "other", keep_last=2)
    for _ in range(3):
        await retaining.create_checkpoint("wf")
    assert len((await retaining.list_checkpoints("wf")).unwrap()) == 2


@pytest.mark.asyncio
async def test_resume_from_checkpoint_restores_state(tmp_path):
    tracker, checkpoints = _services(tmp_path)
    await tracker.start_step("wf", "a")
    await tracker.complete_step("wf", "a")
    summary = (await checkpoints.create_checkpoint("wf")).unwrap()
    await tracker.start_step("wf", "b")

    resumed = (await checkpoints.resume_from_checkpoint("wf")).unwrap()
    assert resumed.checkpoint_id == summary.checkpoint_id

    state = (await tracker.store.load("wf")).unwrap()
    assert [s.step_id for s in state.step_history] == ["a"]
    assert state.rollback is None


def test_checkpoint_ids_are_monotonic():
    generator = CheckpointIdGenerator()
    ids = [generator.next_id() for _ in range(1000)]

    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


@pytest.mark.asyncio
async def test_listing_follows_ids_when_clock_steps_back(tmp_path):
    _, checkpoints = _services(tmp_path)
    now = utcnow()
    older = Checkpoint(
        checkpoint_id="0000000000000001-0000", workflow_id="wf", created_at=now
    )
    newer = Checkpoint(
        checkpoint_id="0000000000000002-0000",
        workflow_id="wf",
        created_at=now - timedelta(minutes=5),
    )
    for checkpoint in (older, newer):
        write_document(
            checkpoints.path_for("wf", checkpoint.checkpoint_id), checkpoint.to_document()
        )

    listed = (await checkpoints.list_checkpoints("wf")).unwrap()
    assert [s.checkpoint_id for s in listed] == [newer.checkpoint_id, older.checkpoint_id]

    latest = (await checkpoints.get_latest_checkpoint("wf")).unwrap()
    assert latest.checkpoint_id == newer.checkpoint_id


def test_retention_must_keep_at_least_one(tmp_path):
    with pytest.raises(ValueError):
        _services(tmp_path, keep_last=0)

    _, retaining = _services(tmp_path, keep_last=1)
    assert retaining.keep_last == 1
