from __future__ import annotations

import hashlib
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from boxsync.core.errors import AuthError, LocalListError, RemoteListError

from .models import FILE, FOLDER, LocalEntry, RemoteEntry


def sha1_file(path: Path) -> str:
    # Box reports SHA-1 for every file version, so local digests compare directly.
    h = hashlib.sha1()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 64), b""):
            h.update(chunk)
    return h.hexdigest()


def safe_rel_path(value: str) -> str:
    rel = str(Path(value).as_posix()).lstrip("/")
    return "" if rel == "." else rel


def parent_rel_path(rel_path: str) -> str:
    return safe_rel_path(str(Path(rel_path).parent))


def parse_timestamp(value) -> Optional[float]:
    """Epoch seconds from Box ISO-8601 strings or epoch s/ms numbers."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        num = float(value)
        return num / 1000.0 if num > 1e11 else num
    text = str(value).strip()
    try:
        num = float(text)
        return num / 1000.0 if num > 1e11 else num
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def format_timestamp(epoch: float) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).isoformat(timespec="seconds")


def _raise_local(err: OSError):
    raise LocalListError(f"local_list_failed: {err.filename} {err}") from err


def is_excluded(name: str, is_dir: bool, excludes: set[str], hidden_dirs: bool, hidden_files: bool) -> bool:
    """Shared name filter, applied to both listings so they stay comparable."""
    if is_dir:
        return name in excludes or (hidden_dirs and name.startswith("."))
    return hidden_files and name.startswith(".")


def iter_local_tree(
    root_path: str,
    exclude_dirs: Optional[Iterable[str]] = None,
    exclude_hidden_dirs: bool = True,
    exclude_hidden_files: bool = True,
    follow_symlinks: bool = False,
) -> Iterator[LocalEntry]:
    base = Path(root_path)
    if not base.is_dir():
        raise LocalListError(f"local_root_missing: {root_path}")

    excludes = set(exclude_dirs or [])
    base_st = base.stat()
    # Inodes of each walked directory's ancestors; a followed link is only a
    # loop when it points back up its own chain.
    ancestors: dict[str, frozenset] = {os.fspath(base): frozenset({(base_st.st_dev, base_st.st_ino)})}

    for root, dirnames, filenames in os.walk(base, onerror=_raise_local, followlinks=follow_symlinks):
        root_path_obj = Path(root)
        chain = ancestors.pop(root, frozenset())
        kept: list[str] = []
        for name in sorted(dirnames):
            if is_excluded(name, True, excludes, exclude_hidden_dirs, exclude_hidden_files):
                continue
            full = root_path_obj / name
            if full.is_symlink() and not follow_symlinks:
                continue
            try:
                st = full.stat()
            except OSError as e:
                _raise_local(e)
            key = (st.st_dev, st.st_ino)
            if follow_symlinks and key in chain:
                continue
            ancestors[os.path.join(root, name)] = chain | {key}
            kept.append(name)
            yield LocalEntry(
                relative_path=safe_rel_path(str(full.relative_to(base))),
                kind=FOLDER,
                modified_at=st.st_mtime,
                content_hash=None,
                size=0,
                full_path=str(full),
            )
        dirnames[:] = kept

        for name in sorted(filenames):
            if is_excluded(name, False, excludes, exclude_hidden_dirs, exclude_hidden_files):
                continue
            full = root_path_obj / name
            if full.is_symlink() and not follow_symlinks:
                continue
            if not full.is_file():
                continue
            try:
                st = full.stat()
                digest = sha1_file(full)
            except OSError as e:
                _raise_local(e)
            yield LocalEntry(
                relative_path=safe_rel_path(str(full.relative_to(base))),
                kind=FILE,
                modified_at=st.st_mtime,
                content_hash=digest,
                size=st.st_size,
                full_path=str(full),
            )


class LocalTree:
    """Restartable lazy listing: every iteration walks the filesystem again."""

    def __init__(self, root_path: str, **options):
        self.root_path = root_path
        self.options = options

    def __iter__(self) -> Iterator[LocalEntry]:
        return iter_local_tree(self.root_path, **self.options)


def list_local_tree(root_path: str, **options) -> list[LocalEntry]:
    return list(iter_local_tree(root_path, **options))


def iter_remote_tree(
    client,
    root_folder_id: str,
    exclude_dirs: Optional[Iterable[str]] = None,
    exclude_hidden_dirs: bool = False,
    exclude_hidden_files: bool = False,
) -> Iterator[RemoteEntry]:
    """Depth-first walk of a Box folder.

    The exclusion options take the same names and meaning as for
    ``iter_local_tree``; an excluded folder is neither listed nor descended into.
    """
    excludes = set(exclude_dirs or [])
    seen: set[str] = set()
    stack: list[tuple[str, str]] = [("", root_folder_id)]

    while stack:
        prefix, folder_id = stack.pop()
        try:
            children = client.list_folder_items(folder_id)
        except (AuthError, RemoteListError):
            raise
        except Exception as e:
            raise RemoteListError(f"list_folder_items_failed: folder={folder_id} {e}") from e

        subfolders: list[tuple[str, str]] = []
        for item in children:
            item_id = item.get("id")
            if not item_id:
                continue
            item_type = item.get("type") or FILE
            if item_type not in (FILE, FOLDER):
                # web_link bookmarks have no content to sync
                continue
            name = item.get("name") or str(item_id)
            if is_excluded(name, item_type == FOLDER, excludes, exclude_hidden_dirs, exclude_hidden_files):
                continue
            path = f"{prefix}/{name}" if prefix else name
            if path in seen:
                raise RemoteListError(f"duplicate_remote_path: {path}")
            seen.add(path)

            yield RemoteEntry(
                relative_path=path,
                id=str(item_id),
                kind=item_type,
                modified_at=parse_timestamp(item.get("content_modified_at") or item.get("modified_at")),
                content_hash=(item.get("sha1") or None) if item_type == FILE else None,
                size=int(item.get("size") or 0) if item_type == FILE else 0,
                parent_id=str(folder_id),
            )
            if item_type == FOLDER:
                subfolders.append((path, str(item_id)))

        stack.extend(reversed(subfolders))


class RemoteTree:
    """Restartable lazy listing of a Box folder tree."""

    def __init__(self, client, root_folder_id: str, **options):
        self.client = client
        self.root_folder_id = root_folder_id
        self.options = options

    def __iter__(self) -> Iterator[RemoteEntry]:
        return iter_remote_tree(self.client, self.root_folder_id, **self.options)


def list_remote_tree(client, root_folder_id: str, **options) -> list[RemoteEntry]:
    return list(iter_remote_tree(client, root_folder_id, **options))
