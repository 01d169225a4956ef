"""Box client library with directory push/fetch synchronization."""

from boxsync.core.errors import (
    AuthError,
    BoxAPIError,
    BoxSyncError,
    DeleteError,
    DownloadError,
    LocalListError,
    RemoteListError,
    UnknownFormatError,
    UploadError,
)
from boxsync.providers.box import BoxClient, SyncEngine, fetch, push
from boxsync.providers.box.differ import diff
from boxsync.providers.box.models import Classification, DiffEntry, LocalEntry, RemoteEntry, SyncPlan
from boxsync.providers.box.readers import (
    box_read,
    box_read_csv,
    box_read_json,
    box_read_tsv,
    box_read_yaml,
    box_write,
)
from boxsync.providers.box.report import SyncResult
from boxsync.providers.box.scanner import list_local_tree, list_remote_tree

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AuthError",
    "BoxAPIError",
    "BoxClient",
    "BoxSyncError",
    "Classification",
    "DeleteError",
    "DiffEntry",
    "DownloadError",
    "LocalEntry",
    "LocalListError",
    "RemoteEntry",
    "RemoteListError",
    "SyncEngine",
    "SyncPlan",
    "SyncResult",
    "UnknownFormatError",
    "UploadError",
    "box_read",
    "box_read_csv",
    "box_read_json",
    "box_read_tsv",
    "box_read_yaml",
    "box_write",
    "diff",
    "fetch",
    "list_local_tree",
    "list_remote_tree",
    "push",
]
