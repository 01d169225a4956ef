from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

FILE = "file"
FOLDER = "folder"

LOCAL = "local"
REMOTE = "remote"

PUSH = "push"
FETCH = "fetch"


class Classification(str, Enum):
    UNCHANGED = "unchanged"
    ADDED_LOCALLY = "added-locally"
    ADDED_REMOTELY = "added-remotely"
    MODIFIED_LOCALLY = "modified-locally"
    MODIFIED_REMOTELY = "modified-remotely"
    DELETED_LOCALLY = "deleted-locally"
    DELETED_REMOTELY = "deleted-remotely"
    CONFLICTED = "conflicted"


@dataclass(frozen=True)
class RemoteEntry:
    relative_path: str
    id: str
    kind: str
    modified_at: Optional[float]
    content_hash: Optional[str]
    size: int = 0
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class LocalEntry:
    relative_path: str
    kind: str
    modified_at: Optional[float]
    content_hash: Optional[str]
    size: int = 0
    full_path: str = ""
    id: Optional[str] = None


Entry = Union[LocalEntry, RemoteEntry]


@dataclass(frozen=True)
class DiffEntry:
    relative_path: str
    local: Optional[LocalEntry]
    remote: Optional[RemoteEntry]
    classification: Classification


@dataclass(frozen=True)
class Upload:
    relative_path: str
    local_path: str
    parent_path: str
    kind: str = FILE
    # Set when the remote file exists; the upload then becomes a new version.
    file_id: Optional[str] = None
    modified_at: Optional[float] = None


@dataclass(frozen=True)
class Download:
    relative_path: str
    remote_id: Optional[str]
    local_path: str
    kind: str = FILE
    modified_at: Optional[float] = None


@dataclass(frozen=True)
class Delete:
    relative_path: str
    side: str
    kind: str = FILE
    item_id: Optional[str] = None
    local_path: Optional[str] = None


@dataclass(frozen=True)
class Skip:
    relative_path: str
    reason: str


Action = Union[Upload, Download, Delete, Skip]


@dataclass(frozen=True)
class SyncPlan:
    direction: str
    actions: tuple[Action, ...]

    def __iter__(self):
        return iter(self.actions)

    def __len__(self):
        return len(self.actions)

    def transfers(self) -> tuple[Action, ...]:
        return tuple(a for a in self.actions if isinstance(a, (Upload, Download)))

    def deletions(self) -> tuple[Delete, ...]:
        return tuple(a for a in self.actions if isinstance(a, Delete))


def action_name(action: Action) -> str:
    return type(action).__name__.lower()
