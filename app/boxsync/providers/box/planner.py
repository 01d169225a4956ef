from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .models import (
    FETCH,
    FOLDER,
    LOCAL,
    PUSH,
    REMOTE,
    Action,
    Classification,
    Delete,
    DiffEntry,
    Download,
    Skip,
    SyncPlan,
    Upload,
)
from .scanner import parent_rel_path

REASON_UNCHANGED = "unchanged"
REASON_CONFLICT = "conflict"
REASON_OVERWRITE_DISABLED = "overwrite disabled"
REASON_ABSENT_LOCALLY = "absent locally"
REASON_ABSENT_REMOTELY = "absent remotely"

_MODIFIED = (Classification.MODIFIED_LOCALLY, Classification.MODIFIED_REMOTELY)


def _depth(rel_path: str) -> int:
    return rel_path.count("/")


def _local_path(entry: DiffEntry, local_root: str) -> str:
    if entry.local is not None and entry.local.full_path:
        return entry.local.full_path
    return str(Path(local_root) / entry.relative_path)


def _upload(entry: DiffEntry, local_root: str, replace: bool) -> Upload:
    local = entry.local
    return Upload(
        relative_path=entry.relative_path,
        local_path=_local_path(entry, local_root),
        parent_path=parent_rel_path(entry.relative_path),
        kind=local.kind,
        file_id=entry.remote.id if replace and entry.remote is not None else None,
        modified_at=local.modified_at,
    )


def _download(entry: DiffEntry, local_root: str) -> Download:
    remote = entry.remote
    return Download(
        relative_path=entry.relative_path,
        remote_id=remote.id,
        local_path=_local_path(entry, local_root),
        kind=remote.kind,
        modified_at=remote.modified_at,
    )


def _plan_push(entry: DiffEntry, overwrite: bool, delete: bool, local_root: str) -> Action:
    c = entry.classification
    if c in (Classification.ADDED_LOCALLY, Classification.DELETED_REMOTELY):
        return _upload(entry, local_root, replace=False)
    if c in _MODIFIED:
        if not overwrite:
            return Skip(entry.relative_path, REASON_OVERWRITE_DISABLED)
        return _upload(entry, local_root, replace=True)
    if c in (Classification.ADDED_REMOTELY, Classification.DELETED_LOCALLY):
        if not delete:
            return Skip(entry.relative_path, REASON_ABSENT_LOCALLY)
        return Delete(entry.relative_path, REMOTE, entry.remote.kind, item_id=entry.remote.id)
    if c == Classification.CONFLICTED:
        return Skip(entry.relative_path, REASON_CONFLICT)
    return Skip(entry.relative_path, REASON_UNCHANGED)


def _plan_fetch(entry: DiffEntry, overwrite: bool, delete: bool, local_root: str) -> Action:
    c = entry.classification
    if c in (Classification.ADDED_REMOTELY, Classification.DELETED_LOCALLY):
        return _download(entry, local_root)
    if c in _MODIFIED:
        if not overwrite:
            return Skip(entry.relative_path, REASON_OVERWRITE_DISABLED)
        return _download(entry, local_root)
    if c in (Classification.ADDED_LOCALLY, Classification.DELETED_REMOTELY):
        if not delete:
            return Skip(entry.relative_path, REASON_ABSENT_REMOTELY)
        return Delete(
            entry.relative_path,
            LOCAL,
            entry.local.kind,
            local_path=_local_path(entry, local_root),
        )
    if c == Classification.CONFLICTED:
        return Skip(entry.relative_path, REASON_CONFLICT)
    return Skip(entry.relative_path, REASON_UNCHANGED)


def build_plan(
    diff_entries: Iterable[DiffEntry],
    direction: str,
    overwrite: bool = False,
    delete: bool = False,
    local_root: str = "",
) -> SyncPlan:
    """Turn classifications into an ordered, immutable action list.

    Order: skips, folder creations parent-first, file transfers by path,
    then deletions deepest-first so a folder is only removed after its
    children.
    """
    if direction == PUSH:
        plan_one = _plan_push
    elif direction == FETCH:
        plan_one = _plan_fetch
    else:
        raise ValueError(f"invalid_direction: {direction}")

    skips: list[Skip] = []
    folders: list[Action] = []
    files: list[Action] = []
    deletes: list[Delete] = []
    for entry in diff_entries:
        action = plan_one(entry, overwrite, delete, local_root)
        if isinstance(action, Skip):
            skips.append(action)
        elif isinstance(action, Delete):
            deletes.append(action)
        elif action.kind == FOLDER:
            folders.append(action)
        else:
            files.append(action)

    skips.sort(key=lambda a: a.relative_path)
    folders.sort(key=lambda a: (_depth(a.relative_path), a.relative_path))
    files.sort(key=lambda a: a.relative_path)
    deletes.sort(key=lambda a: (-_depth(a.relative_path), a.kind == FOLDER, a.relative_path))
    return SyncPlan(direction=direction, actions=tuple(skips + folders + files + deletes))
