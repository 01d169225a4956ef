"""Classify every relative path of a local and a remote listing.

``diff`` is pure: the same listings (and baseline) always give the same
classifications, in the same order.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from .models import FOLDER, Classification, DiffEntry, Entry, LocalEntry, RemoteEntry

DEFAULT_MTIME_TOLERANCE_SEC = 2.0


def _index(entries: Iterable[Entry], side: str) -> dict[str, Entry]:
    out: dict[str, Entry] = {}
    for entry in entries:
        if entry.relative_path in out:
            raise ValueError(f"duplicate_{side}_path: {entry.relative_path}")
        out[entry.relative_path] = entry
    return out


def same_content(local: Entry, remote: Entry) -> bool:
    if local.kind != remote.kind:
        return False
    if local.kind == FOLDER:
        return True
    if local.content_hash and remote.content_hash:
        return local.content_hash == remote.content_hash
    return local.size == remote.size


def _newer_side(local: Entry, remote: Entry, tolerance: float) -> Optional[str]:
    if local.modified_at is None or remote.modified_at is None:
        return None
    delta = local.modified_at - remote.modified_at
    if abs(delta) <= tolerance:
        return None
    return "local" if delta > 0 else "remote"


def _changed_since(entry: Entry, baseline_hash: Optional[str]) -> bool:
    if entry.kind == FOLDER:
        return False
    return (entry.content_hash or None) != (baseline_hash or None)


def classify(
    local: Optional[LocalEntry],
    remote: Optional[RemoteEntry],
    baseline: Optional[Mapping[str, Optional[str]]] = None,
    mtime_tolerance: float = DEFAULT_MTIME_TOLERANCE_SEC,
) -> Classification:
    if local is None and remote is None:
        raise ValueError("classify_needs_an_entry")

    path = (local or remote).relative_path
    known = baseline is not None and path in baseline
    base_hash = baseline.get(path) if known else None

    if remote is None:
        if known:
            return Classification.CONFLICTED if _changed_since(local, base_hash) else Classification.DELETED_REMOTELY
        return Classification.ADDED_LOCALLY

    if local is None:
        if known:
            return Classification.CONFLICTED if _changed_since(remote, base_hash) else Classification.DELETED_LOCALLY
        return Classification.ADDED_REMOTELY

    if same_content(local, remote):
        return Classification.UNCHANGED
    if local.kind != remote.kind:
        return Classification.CONFLICTED

    if known:
        local_changed = _changed_since(local, base_hash)
        remote_changed = _changed_since(remote, base_hash)
        if local_changed and not remote_changed:
            return Classification.MODIFIED_LOCALLY
        if remote_changed and not local_changed:
            return Classification.MODIFIED_REMOTELY
        return Classification.CONFLICTED

    newer = _newer_side(local, remote, mtime_tolerance)
    if newer == "local":
        return Classification.MODIFIED_LOCALLY
    if newer == "remote":
        return Classification.MODIFIED_REMOTELY
    return Classification.CONFLICTED


def case_collisions(paths: Iterable[str]) -> set[str]:
    """Paths that differ from another path only by letter case.

    Box treats names case-insensitively, so such paths cannot coexist there.
    """
    groups: dict[str, set[str]] = {}
    for path in paths:
        groups.setdefault(path.casefold(), set()).add(path)
    return {p for group in groups.values() if len(group) > 1 for p in group}


def diff(
    local_entries: Iterable[LocalEntry],
    remote_entries: Iterable[RemoteEntry],
    baseline: Optional[Mapping[str, Optional[str]]] = None,
    mtime_tolerance: float = DEFAULT_MTIME_TOLERANCE_SEC,
) -> list[DiffEntry]:
    """Compare two listings keyed by relative path.

    ``baseline`` maps relative paths to the content hash both sides agreed on
    at the last known-good sync. Paths found in it are judged by which side
    moved away from that hash instead of by modification times.

    Paths that collide with another path case-insensitively (``Report.csv``
    locally, ``report.csv`` on Box) are ``conflicted``.
    """
    local_by_path = _index(local_entries, "local")
    remote_by_path = _index(remote_entries, "remote")
    all_paths = set(local_by_path) | set(remote_by_path)
    colliding = case_collisions(all_paths)

    out: list[DiffEntry] = []
    for path in sorted(all_paths):
        local = local_by_path.get(path)
        remote = remote_by_path.get(path)
        if path in colliding:
            classification = Classification.CONFLICTED
        else:
            classification = classify(local, remote, baseline, mtime_tolerance)
        out.append(DiffEntry(relative_path=path, local=local, remote=remote, classification=classification))
    return out
