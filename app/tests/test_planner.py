import itertools

import pytest

from boxsync.providers.box.models import (
    FETCH,
    FILE,
    FOLDER,
    LOCAL,
    PUSH,
    REMOTE,
    Classification,
    Delete,
    DiffEntry,
    Download,
    LocalEntry,
    RemoteEntry,
    Skip,
    Upload,
)
from boxsync.providers.box.planner import build_plan


def _entry(path: str, classification: Classification, kind: str = FILE, local: bool = True, remote: bool = True) -> DiffEntry:
    return DiffEntry(
        relative_path=path,
        local=LocalEntry(path, kind, 1000.0, None if kind == FOLDER else "lh", 1, f"/root/{path}") if local else None,
        remote=RemoteEntry(path, f"id-{path}", kind, 1000.0, None if kind == FOLDER else "rh", 1) if remote else None,
        classification=classification,
    )


def _all_entries() -> list[DiffEntry]:
    return [
        _entry("unchanged", Classification.UNCHANGED),
        _entry("added-local", Classification.ADDED_LOCALLY, remote=False),
        _entry("added-remote", Classification.ADDED_REMOTELY, local=False),
        _entry("mod-local", Classification.MODIFIED_LOCALLY),
        _entry("mod-remote", Classification.MODIFIED_REMOTELY),
        _entry("del-local", Classification.DELETED_LOCALLY, local=False),
        _entry("del-remote", Classification.DELETED_REMOTELY, remote=False),
        _entry("conflict", Classification.CONFLICTED),
    ]


@pytest.mark.parametrize("direction,overwrite", list(itertools.product([PUSH, FETCH], [False, True])))
def test_delete_false_never_plans_delete(direction, overwrite):
    plan = build_plan(_all_entries(), direction, overwrite=overwrite, delete=False, local_root="/root")
    assert not plan.deletions()


@pytest.mark.parametrize(
    "direction,overwrite,delete",
    list(itertools.product([PUSH, FETCH], [False, True], [False, True])),
)
def test_conflicts_are_always_skipped(direction, overwrite, delete):
    plan = build_plan(_all_entries(), direction, overwrite=overwrite, delete=delete, local_root="/root")

    conflict_actions = [a for a in plan if a.relative_path == "conflict"]
    assert conflict_actions == [Skip("conflict", "conflict")]


def test_push_policy():
    plan = build_plan(_all_entries(), PUSH, overwrite=False, delete=False, local_root="/root")
    by_path = {a.relative_path: a for a in plan}

    assert isinstance(by_path["added-local"], Upload)
    assert by_path["added-local"].file_id is None
    assert isinstance(by_path["del-remote"], Upload)
    assert by_path["mod-local"] == Skip("mod-local", "overwrite disabled")
    assert by_path["mod-remote"] == Skip("mod-remote", "overwrite disabled")
    assert by_path["added-remote"] == Skip("added-remote", "absent locally")
    assert by_path["unchanged"] == Skip("unchanged", "unchanged")
    assert not any(isinstance(a, Download) for a in plan)


def test_push_overwrite_uploads_new_versions():
    plan = build_plan(_all_entries(), PUSH, overwrite=True, delete=False, local_root="/root")
    by_path = {a.relative_path: a for a in plan}

    assert by_path["mod-local"].file_id == "id-mod-local"
    assert by_path["mod-remote"].file_id == "id-mod-remote"


def test_push_delete_removes_remote_only():
    plan = build_plan(_all_entries(), PUSH, overwrite=False, delete=True, local_root="/root")

    deletes = {a.relative_path: a for a in plan.deletions()}
    assert set(deletes) == {"added-remote", "del-local"}
    assert all(a.side == REMOTE for a in deletes.values())
    assert deletes["added-remote"].item_id == "id-added-remote"


def test_fetch_policy_mirrors_push():
    plan = build_plan(_all_entries(), FETCH, overwrite=True, delete=True, local_root="/root")
    by_path = {a.relative_path: a for a in plan}

    assert isinstance(by_path["added-remote"], Download)
    assert by_path["added-remote"].local_path == "/root/added-remote"
    assert isinstance(by_path["del-local"], Download)
    assert isinstance(by_path["mod-local"], Download)
    assert by_path["added-local"] == Delete("added-local", LOCAL, FILE, local_path="/root/added-local")
    assert by_path["del-remote"].side == LOCAL
    assert not any(isinstance(a, Upload) for a in plan)


def test_order_creates_parents_first_and_deletes_children_first():
    entries = [
        _entry("new/deeper", Classification.ADDED_LOCALLY, kind=FOLDER, remote=False),
        _entry("new", Classification.ADDED_LOCALLY, kind=FOLDER, remote=False),
        _entry("new/deeper/f.txt", Classification.ADDED_LOCALLY, remote=False),
        _entry("a.txt", Classification.ADDED_LOCALLY, remote=False),
        _entry("old", Classification.ADDED_REMOTELY, kind=FOLDER, local=False),
        _entry("old/f.txt", Classification.ADDED_REMOTELY, local=False),
        _entry("old/sub", Classification.ADDED_REMOTELY, kind=FOLDER, local=False),
        _entry("old/sub/g.txt", Classification.ADDED_REMOTELY, local=False),
    ]

    plan = build_plan(entries, PUSH, delete=True, local_root="/root")

    assert [a.relative_path for a in plan] == [
        "new",
        "new/deeper",
        "a.txt",
        "new/deeper/f.txt",
        "old/sub/g.txt",
        "old/f.txt",
        "old/sub",
        "old",
    ]


def test_plan_is_immutable_tuple():
    plan = build_plan(_all_entries(), PUSH)
    assert isinstance(plan.actions, tuple)
    with pytest.raises(AttributeError):
        plan.actions = ()


def test_invalid_direction_rejected():
    with pytest.raises(ValueError):
        build_plan([], "sideways")
