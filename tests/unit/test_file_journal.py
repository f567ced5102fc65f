import pytest

from waymark import ErrorKind, FileChange, FileChangeJournal, StateStore, StepTracker


def _services(tmp_path):
    store = StateStore(tmp_path / "store")
    return StepTracker(store), FileChangeJournal(store)


@pytest.mark.asyncio
async def test_track_file_change_appends_to_step(tmp_path):
    tracker, journal = _services(tmp_path)
    await tracker.start_step("wf", "render")

    first = await journal.track_file_change(
        "wf", "render", {"operation": "create", "path": "/tmp/out.txt"}
    )
    second = await journal.track_file_change(
        "wf",
        "render",
        FileChange(operation="modify", path="/tmp/conf.ini", previous_content="a=1\n"),
    )
    assert first.success and second.success
    assert first.value.timestamp is not None

    step = (await tracker.get_step_status("wf", "render")).unwrap()
    assert [c.operation for c in step.file_changes] == ["create", "modify"]
    assert step.file_changes[1].previous_content == "a=1\n"


@pytest.mark.asyncio
async def test_track_file_change_requires_workflow_and_step(tmp_path):
    tracker, journal = _services(tmp_path)
    change = {"operation": "create", "path": "/tmp/x"}

    assert (await journal.track_file_change("wf", "s", change)).kind is ErrorKind.NOT_FOUND

    await tracker.start_step("wf", "s")
    missing_step = await journal.track_file_change("wf", "other", change)
    assert missing_step.kind is ErrorKind.NOT_FOUND

    bad_id = await journal.track_file_change("", "s", change)
    assert bad_id.kind is ErrorKind.INVALID_IDENTIFIER


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "change",
    [
        None,
        "create /tmp/x",
        {"path": "/tmp/x"},
        {"operation": "create"},
        {"operation": "create", "path": ""},
        {"operation": "rename", "path": "/tmp/x"},
    ],
)
async def test_track_file_change_rejects_invalid_change(tmp_path, change):
    tracker, journal = _services(tmp_path)
    await tracker.start_step("wf", "s")

    result = await journal.track_file_change("wf", "s", change)
    assert result.kind is ErrorKind.INVALID_CHANGE


@pytest.mark.asyncio
async def test_revert_empty_list(tmp_path):
    _, journal = _services(tmp_path)
    summary = (await journal.revert_file_changes([])).unwrap()

    assert summary.reverted_count == 0
    assert summary.status == "success"


@pytest.mark.asyncio
async def test_revert_each_operation(tmp_path):
    _, journal = _services(tmp_path)
    created = tmp_path / "created.txt"
    created.write_text("new")
    modified = tmp_path / "modified.txt"
    modified.write_text("changed")
    deleted = tmp_path / "nested" / "deleted.txt"

    summary = (
        await journal.revert_file_changes(
            [
                {"operation": "create", "path": str(created)},
                {"operation": "modify", "path": str(modified), "previousContent": "original"},
                {"operation": "delete", "path": str(deleted), "previousContent": "restored"},
            ]
        )
    ).unwrap()

    assert summary.reverted_count == 3
    assert summary.failed_count == 0
    assert not created.exists()
    assert modified.read_text() == "original"
    assert deleted.read_text() == "restored"


@pytest.mark.asyncio
async def test_revert_runs_newest_first(tmp_path):
    _, journal = _services(tmp_path)
    target = tmp_path / "file.txt"
    target.write_text("second")

    summary = (
        await journal.revert_file_changes(
            [
                {"operation": "create", "path": str(target)},
                {"operation": "modify", "path": str(target), "previousContent": "first"},
            ]
        )
    ).unwrap()

    assert [c.operation for c in summary.changes] == ["modify", "create"]
    assert not target.exists()


@pytest.mark.asyncio
async def test_revert_continues_past_failures(tmp_path):
    _, journal = _services(tmp_path)
    created = tmp_path / "created.txt"
    created.write_text("x")

    summary = (
        await journal.revert_file_changes(
            [
                {"operation": "create", "path": str(created)},
                {"operation": "modify", "path": str(tmp_path / "gone.txt")},
            ]
        )
    ).unwrap()

    assert summary.reverted_count == 1
    assert summary.failed_count == 1
    assert summary.status == "partial"
    assert summary.changes[0].status == "failed"
    assert summary.changes[0].reason == "Cannot revert - no previous content"
    assert not created.exists()


@pytest.mark.asyncio
async def test_revert_missing_created_file_counts_as_reverted(tmp_path):
    _, journal = _services(tmp_path)
    summary = (
        await journal.revert_file_changes(
            [{"operation": "copy", "path": str(tmp_path / "never-written.txt")}]
        )
    ).unwrap()

    assert summary.reverted_count == 1
