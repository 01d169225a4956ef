from __future__ import annotations

import json
import os
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, Optional

from .models import (
    FOLDER,
    LOCAL,
    REMOTE,
    Action,
    Delete,
    DiffEntry,
    Download,
    Skip,
    SyncPlan,
    Upload,
)
from .planner import build_plan
from .report import APPLIED, FAILED, SKIPPED, Outcome, SyncResult
from .scanner import format_timestamp, safe_rel_path


def _noop_log(*_args):
    return None


def remote_folders_from_diff(diff_entries: Iterable[DiffEntry], root_id: str) -> dict[str, str]:
    folders = {"": root_id}
    for entry in diff_entries:
        if entry.remote is not None and entry.remote.kind == FOLDER:
            folders[entry.relative_path] = entry.remote.id
    return folders


class SyncExecutor:
    def __init__(
        self,
        client,
        remote_root_id: str,
        remote_folders: Optional[dict[str, str]] = None,
        log_func=None,
        max_workers: int = 1,
    ):
        self.client = client
        self.remote_root_id = remote_root_id
        self.max_workers = max(1, int(max_workers))
        self.log_func = log_func or _noop_log

        self._remote_folder_cache: dict[str, str] = {"": remote_root_id}
        self._remote_folder_cache.update(remote_folders or {})
        self._folder_lock = threading.Lock()

    def _log(self, level: str, module: str, message: str, detail: Optional[str] = None):
        self.log_func(level, module, message, detail)

    def _ensure_remote_folder(self, rel_dir: str) -> str:
        rel_dir = safe_rel_path(rel_dir)
        with self._folder_lock:
            if rel_dir in self._remote_folder_cache:
                return self._remote_folder_cache[rel_dir]

            current = self.remote_root_id
            current_rel = ""
            for part in Path(rel_dir).parts:
                current_rel = f"{current_rel}/{part}" if current_rel else part
                cached = self._remote_folder_cache.get(current_rel)
                if cached:
                    current = cached
                    continue
                current = self.client.create_folder(part, current)
                self._remote_folder_cache[current_rel] = current
                self._log("INFO", "sync", "remote_folder_created", json.dumps({"path": current_rel, "id": current}))
            return current

    def _apply_upload(self, action: Upload):
        if action.kind == FOLDER:
            self._ensure_remote_folder(action.relative_path)
            return
        parent_id = self._ensure_remote_folder(action.parent_path)
        item = self.client.upload(
            action.local_path,
            parent_id,
            file_name=Path(action.relative_path).name,
            file_id=action.file_id,
            content_modified_at=format_timestamp(action.modified_at) if action.modified_at is not None else None,
        )
        self._log(
            "INFO",
            "sync",
            "uploaded_new_version" if action.file_id else "uploaded",
            json.dumps({"path": action.relative_path, "file_id": (item or {}).get("id")}, ensure_ascii=False),
        )

    def _apply_download(self, action: Download):
        dest = Path(action.local_path)
        if action.kind == FOLDER:
            dest.mkdir(parents=True, exist_ok=True)
            return
        dest.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=".boxsync-", suffix=".part", dir=str(dest.parent))
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            self.client.download(action.remote_id, str(tmp_path))
            if action.modified_at is not None:
                os.utime(tmp_path, (action.modified_at, action.modified_at))
            os.replace(tmp_path, dest)
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
        self._log("INFO", "sync", "downloaded", json.dumps({"path": action.relative_path}, ensure_ascii=False))

    def _apply_delete(self, action: Delete):
        if action.side == REMOTE:
            # Non-recursive: a folder that still holds a file we failed to delete stays put.
            self.client.delete(action.item_id, action.kind, recursive=False)
        elif action.side == LOCAL:
            target = Path(action.local_path)
            if action.kind == FOLDER:
                if target.is_dir():
                    target.rmdir()
            else:
                target.unlink(missing_ok=True)
        else:
            raise ValueError(f"invalid_delete_side: {action.side}")
        self._log("INFO", "sync", f"{action.side}_deleted", json.dumps({"path": action.relative_path}, ensure_ascii=False))

    def _run_one(self, action: Action, result: SyncResult) -> Outcome:
        try:
            if isinstance(action, Upload):
                self._apply_upload(action)
            elif isinstance(action, Download):
                self._apply_download(action)
            elif isinstance(action, Delete):
                self._apply_delete(action)
            else:
                raise ValueError(f"unknown_action: {action!r}")
        except Exception as e:
            self._log(
                "ERROR",
                "sync",
                f"{type(action).__name__.lower()}_failed",
                json.dumps({"path": action.relative_path, "error": str(e)}, ensure_ascii=False),
            )
            return result.record(action, FAILED, str(e) or type(e).__name__)
        return result.record(action, APPLIED)

    def run(self, plan: SyncPlan, result: Optional[SyncResult] = None) -> SyncResult:
        result = result or SyncResult(direction=plan.direction)

        folders: list[Action] = []
        files: list[Action] = []
        deletes: list[Action] = []
        for action in plan:
            if isinstance(action, Skip):
                result.record(action, SKIPPED, action.reason)
            elif isinstance(action, Delete):
                deletes.append(action)
            elif action.kind == FOLDER:
                folders.append(action)
            else:
                files.append(action)

        for action in folders:
            self._run_one(action, result)

        if self.max_workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                list(pool.map(lambda a: self._run_one(a, result), files))
        else:
            for action in files:
                self._run_one(action, result)

        for action in deletes:
            self._run_one(action, result)

        return result


def execute(
    client,
    diff_entries: Iterable[DiffEntry],
    direction: str,
    overwrite: bool = False,
    delete: bool = False,
    *,
    local_root: str,
    remote_root_id: str,
    log_func=None,
    max_workers: int = 1,
    on_outcome: Optional[Callable[[str, Outcome], None]] = None,
) -> SyncResult:
    entries = list(diff_entries)
    plan = build_plan(entries, direction, overwrite=overwrite, delete=delete, local_root=local_root)
    executor = SyncExecutor(
        client,
        remote_root_id,
        remote_folders=remote_folders_from_diff(entries, remote_root_id),
        log_func=log_func,
        max_workers=max_workers,
    )
    return executor.run(plan, SyncResult(direction=direction, on_outcome=on_outcome))
