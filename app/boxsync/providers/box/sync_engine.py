from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Mapping, Optional

from boxsync.core.logging_setup import make_log_func

from .differ import DEFAULT_MTIME_TOLERANCE_SEC, diff
from .executor import SyncExecutor, remote_folders_from_diff
from .models import FETCH, PUSH, DiffEntry, SyncPlan
from .planner import build_plan
from .report import Outcome, SyncResult
from .scanner import list_local_tree, list_remote_tree

DEFAULT_EXCLUDE_DIRS = [".git", "__pycache__", ".Rproj.user"]


class SyncEngine:
    """Reconcile a local directory with a Box folder.

    Listings are rebuilt on every call and the plan is computed once, before
    any transfer starts. Listing failures propagate; per-file failures end up
    in the returned ``SyncResult``.
    """

    def __init__(self, client, cfg: Optional[dict] = None, log_func=None):
        self.client = client
        self.cfg = cfg or {}
        self.log_func = log_func or make_log_func()

        sync_cfg = self.cfg.get("sync", {}) or {}
        self.exclude_dirs = list(sync_cfg.get("exclude_dirs", DEFAULT_EXCLUDE_DIRS))
        self.exclude_hidden_dirs = bool(sync_cfg.get("exclude_hidden_dirs", True))
        self.exclude_hidden_files = bool(sync_cfg.get("exclude_hidden_files", True))
        self.follow_symlinks = bool(sync_cfg.get("follow_symlinks", False))
        self.mtime_tolerance = float(sync_cfg.get("mtime_tolerance_sec", DEFAULT_MTIME_TOLERANCE_SEC))
        self.max_workers = max(1, int(sync_cfg.get("max_workers", 1)))

    def _log(self, level: str, module: str, message: str, detail: Optional[str] = None):
        self.log_func(level, module, message, detail)

    def _diff(
        self,
        direction: str,
        local_dir: str,
        remote_folder_id: str,
        baseline: Optional[Mapping[str, Optional[str]]] = None,
    ) -> list[DiffEntry]:
        filters = {
            "exclude_dirs": self.exclude_dirs,
            "exclude_hidden_dirs": self.exclude_hidden_dirs,
            "exclude_hidden_files": self.exclude_hidden_files,
        }
        if direction == FETCH and not Path(local_dir).exists():
            # A fetch target that does not exist yet is an empty directory.
            local_entries = []
        else:
            local_entries = list_local_tree(local_dir, follow_symlinks=self.follow_symlinks, **filters)
        remote_entries = list_remote_tree(self.client, remote_folder_id, **filters)
        self._log(
            "INFO",
            "sync",
            "listings_built",
            json.dumps({"local_total": len(local_entries), "remote_total": len(remote_entries)}),
        )
        return diff(local_entries, remote_entries, baseline=baseline, mtime_tolerance=self.mtime_tolerance)

    def _plan(
        self,
        direction: str,
        local_dir: str,
        remote_folder_id: str,
        overwrite: bool,
        delete: bool,
        baseline: Optional[Mapping[str, Optional[str]]],
    ) -> tuple[list[DiffEntry], SyncPlan]:
        entries = self._diff(direction, local_dir, remote_folder_id, baseline)
        plan = build_plan(entries, direction, overwrite=overwrite, delete=delete, local_root=str(local_dir))
        return entries, plan

    def preview(
        self,
        direction: str,
        local_dir: str,
        remote_folder_id: str,
        overwrite: bool = False,
        delete: bool = False,
        baseline: Optional[Mapping[str, Optional[str]]] = None,
    ) -> tuple[list[DiffEntry], SyncPlan]:
        """List both sides and plan, without touching either of them."""
        self.client.ensure_authenticated()
        return self._plan(direction, local_dir, remote_folder_id, overwrite, delete, baseline)

    def _sync(
        self,
        direction: str,
        local_dir: str,
        remote_folder_id: str,
        overwrite: bool,
        delete: bool,
        baseline: Optional[Mapping[str, Optional[str]]],
        on_outcome: Optional[Callable[[str, Outcome], None]],
    ) -> SyncResult:
        detail = {
            "direction": direction,
            "local_dir": str(local_dir),
            "remote_folder_id": remote_folder_id,
            "overwrite": overwrite,
            "delete": delete,
        }
        try:
            self.client.ensure_authenticated()
            if direction == FETCH:
                Path(local_dir).mkdir(parents=True, exist_ok=True)
            entries, plan = self._plan(direction, local_dir, remote_folder_id, overwrite, delete, baseline)
        except Exception as e:
            self._log("ERROR", "sync", "run_failed", json.dumps({**detail, "error": str(e)}, ensure_ascii=False))
            raise

        executor = SyncExecutor(
            self.client,
            remote_folder_id,
            remote_folders=remote_folders_from_diff(entries, remote_folder_id),
            log_func=self.log_func,
            max_workers=self.max_workers,
        )
        result = executor.run(plan, SyncResult(direction=direction, on_outcome=on_outcome))
        summary = result.summary()
        level = "INFO" if result.ok else "WARN"
        self._log(level, "sync", "run_finished", json.dumps({**detail, **summary}, ensure_ascii=False))
        return result

    def push(
        self,
        local_dir: str,
        remote_folder_id: str,
        overwrite: bool = False,
        delete: bool = False,
        baseline: Optional[Mapping[str, Optional[str]]] = None,
        on_outcome: Optional[Callable[[str, Outcome], None]] = None,
    ) -> SyncResult:
        """Make the Box folder look like ``local_dir``. Never modifies local files."""
        return self._sync(PUSH, local_dir, remote_folder_id, overwrite, delete, baseline, on_outcome)

    def fetch(
        self,
        remote_folder_id: str,
        local_dir: str,
        overwrite: bool = False,
        delete: bool = False,
        baseline: Optional[Mapping[str, Optional[str]]] = None,
        on_outcome: Optional[Callable[[str, Outcome], None]] = None,
    ) -> SyncResult:
        """Make ``local_dir`` look like the Box folder. Never modifies Box."""
        return self._sync(FETCH, local_dir, remote_folder_id, overwrite, delete, baseline, on_outcome)


def _engine(client, options: dict) -> SyncEngine:
    sync_keys = (
        "exclude_dirs",
        "exclude_hidden_dirs",
        "exclude_hidden_files",
        "follow_symlinks",
        "mtime_tolerance_sec",
        "max_workers",
    )
    sync_cfg = {k: options.pop(k) for k in sync_keys if k in options}
    return SyncEngine(client, {"sync": sync_cfg}, options.pop("log_func", None))


def push(client, local_dir: str, remote_folder_id: str, overwrite: bool = False, delete: bool = False, **options) -> SyncResult:
    engine = _engine(client, options)
    return engine.push(local_dir, remote_folder_id, overwrite=overwrite, delete=delete, **options)


def fetch(client, remote_folder_id: str, local_dir: str, overwrite: bool = False, delete: bool = False, **options) -> SyncResult:
    engine = _engine(client, options)
    return engine.fetch(remote_folder_id, local_dir, overwrite=overwrite, delete=delete, **options)
