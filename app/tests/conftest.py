import hashlib
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from boxsync.core.errors import DeleteError, UploadError


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat(timespec="seconds")


class FakeBox:
    """In-memory stand-in for BoxClient, keyed by item id."""

    def __init__(self):
        self.folders: dict[str, dict] = {"0": {"name": "", "parent": None}}
        self.files: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_uploads: dict[str, Exception] = {}
        self.fail_downloads: dict[str, Exception] = {}
        self.list_errors: dict[str, Exception] = {}
        self.auth_error: Exception | None = None
        self._next_id = 100
        self._id_lock = threading.Lock()
        self._write_lock = threading.Lock()

    def _new_id(self) -> str:
        with self._id_lock:
            self._next_id += 1
            return str(self._next_id)

    # -- seeding helpers -------------------------------------------------------

    def add_folder(self, rel_path: str, parent_id: str = "0") -> str:
        current = parent_id
        for part in Path(rel_path).parts:
            found = next(
                (fid for fid, f in self.folders.items() if f["parent"] == current and f["name"] == part),
                None,
            )
            if found is None:
                found = self._new_id()
                self.folders[found] = {"name": part, "parent": current}
            current = found
        return current

    def add_file(self, rel_path: str, content: bytes, modified_at: float = 1_700_000_000, content_type: str = "") -> str:
        parent_rel = str(Path(rel_path).parent)
        parent_id = "0" if parent_rel == "." else self.add_folder(parent_rel)
        file_id = self._new_id()
        self.files[file_id] = {
            "name": Path(rel_path).name,
            "parent": parent_id,
            "content": content,
            "modified_at": _iso(modified_at),
            "content_type": content_type,
            "versions": 1,
            "history": [],
        }
        return file_id

    def path_of(self, item_id: str, is_folder: bool = False) -> str:
        item = self.folders[item_id] if is_folder else self.files[item_id]
        parts = [item["name"]]
        parent = item["parent"]
        while parent and parent != "0":
            parts.append(self.folders[parent]["name"])
            parent = self.folders[parent]["parent"]
        return "/".join(reversed(parts))

    def tree(self) -> dict[str, bytes]:
        return {self.path_of(fid): f["content"] for fid, f in self.files.items()}

    def folder_paths(self) -> set[str]:
        return {self.path_of(fid, is_folder=True) for fid in self.folders if fid != "0"}

    def file_id(self, rel_path: str) -> str:
        return next(fid for fid in self.files if self.path_of(fid) == rel_path)

    def transfer_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("upload", "download")]

    # -- client surface ----------------------------------------------------------

    def ensure_authenticated(self) -> str:
        if self.auth_error is not None:
            raise self.auth_error
        return "developer_token"

    def list_folder_items(self, folder_id: str) -> list[dict]:
        self.calls.append(("list", folder_id))
        if folder_id in self.list_errors:
            raise self.list_errors[folder_id]
        items = []
        for fid, f in self.folders.items():
            if f["parent"] == folder_id:
                items.append({"type": "folder", "id": fid, "name": f["name"]})
        for fid, f in self.files.items():
            if f["parent"] == folder_id:
                items.append(
                    {
                        "type": "file",
                        "id": fid,
                        "name": f["name"],
                        "sha1": hashlib.sha1(f["content"]).hexdigest(),
                        "size": len(f["content"]),
                        "modified_at": _iso(1_800_000_000),
                        "content_modified_at": f["modified_at"],
                    }
                )
        return items

    def create_folder(self, name: str, parent_id: str) -> str:
        self.calls.append(("create_folder", name, parent_id))
        folder_id = self._new_id()
        self.folders[folder_id] = {"name": name, "parent": parent_id}
        return folder_id

    def upload(self, local_path, folder_id, file_name=None, file_id=None, content_modified_at=None) -> dict:
        name = file_name or Path(local_path).name
        self.calls.append(("upload", name, folder_id, file_id))
        if name in self.fail_uploads:
            raise self.fail_uploads[name]
        content = Path(local_path).read_bytes()
        modified = content_modified_at or _iso(1_800_000_000)
        with self._write_lock:
            return self._store_upload(name, folder_id, file_id, content, modified)

    def _store_upload(self, name, folder_id, file_id, content, modified) -> dict:
        if file_id:
            entry = self.files[file_id]
            entry["history"].append((f"v{file_id}-{entry['versions']}", entry["content"]))
            entry["content"] = content
            entry["modified_at"] = modified
            entry["versions"] += 1
        else:
            # Box names are case-insensitive within a folder.
            existing = next(
                (
                    fid
                    for fid, f in self.files.items()
                    if f["parent"] == folder_id and f["name"].casefold() == name.casefold()
                ),
                None,
            )
            if existing:
                raise UploadError(f"upload_failed: {name} box_error: status=409 code=item_name_in_use")
            file_id = self._new_id()
            self.files[file_id] = {
                "name": name,
                "parent": folder_id,
                "content": content,
                "modified_at": modified,
                "content_type": "",
                "versions": 1,
                "history": [],
            }
        return {"id": file_id, "type": "file", "name": name}

    def download(self, file_id: str, dest_path: str, version_id=None, version_no=None) -> dict:
        self.calls.append(("download", file_id))
        if file_id in self.fail_downloads:
            Path(dest_path).write_bytes(b"partial")
            raise self.fail_downloads[file_id]
        entry = self.files[file_id]
        content = entry["content"]
        if version_no is not None and version_no <= len(entry["history"]):
            content = entry["history"][version_no - 1][1]
        if version_id:
            content = dict(entry["history"])[version_id]
        Path(dest_path).parent.mkdir(parents=True, exist_ok=True)
        Path(dest_path).write_bytes(content)
        return {"content_type": entry["content_type"], "filename": entry["name"]}

    def delete(self, item_id: str, kind: str = "file", recursive: bool = False) -> None:
        self.calls.append(("delete", item_id, kind))
        if kind == "folder":
            has_children = any(f["parent"] == item_id for f in self.files.values()) or any(
                f["parent"] == item_id for f in self.folders.values()
            )
            if has_children and not recursive:
                raise DeleteError(f"delete_failed: folder={item_id} folder_not_empty")
            self.folders.pop(item_id)
        else:
            if item_id not in self.files:
                raise DeleteError(f"delete_failed: file={item_id} not_found")
            self.files.pop(item_id)


def write_local(root: Path, rel_path: str, content: bytes, mtime: float = 1_700_000_000) -> Path:
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def fake_box() -> FakeBox:
    return FakeBox()


@pytest.fixture
def quiet_log():
    records: list[tuple] = []

    def _log(level, module, message, detail=None):
        records.append((level, module, message, detail))

    _log.records = records
    return _log
