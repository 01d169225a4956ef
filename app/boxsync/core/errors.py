from __future__ import annotations


class BoxSyncError(RuntimeError):
    """Base for every error raised by boxsync."""


class AuthError(BoxSyncError):
    pass


class BoxAPIError(BoxSyncError):
    def __init__(self, status: int, code: str = "", message: str = "", context: dict | None = None):
        self.status = int(status)
        self.code = code or ""
        self.message = message or ""
        self.context = context or {}
        super().__init__(f"box_error: status={self.status} code={self.code} msg={self.message}")


class RemoteListError(BoxSyncError):
    pass


class LocalListError(BoxSyncError):
    pass


class UploadError(BoxSyncError):
    pass


class DownloadError(BoxSyncError):
    pass


class DeleteError(BoxSyncError):
    pass


class UnknownFormatError(BoxSyncError):
    pass
