import json
import logging
import re
import time
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlencode

import requests

from boxsync.core.errors import (
    AuthError,
    BoxAPIError,
    DeleteError,
    DownloadError,
    RemoteListError,
    UploadError,
)
from .scanner import parse_timestamp

BASE = "https://api.box.com/2.0"
UPLOAD_BASE = "https://upload.box.com/api/2.0"
OAUTH_AUTHORIZE_URL = "https://account.box.com/api/oauth2/authorize"
OAUTH_TOKEN_URL = "https://api.box.com/oauth2/token"

ITEM_FIELDS = "id,type,name,sha1,size,modified_at,content_modified_at,parent"

logger = logging.getLogger(__name__)


def _filename_from_disposition(value: str) -> str | None:
    match = re.search(r"filename\*=UTF-8''([^;]+)", value or "")
    if match:
        return unquote(match.group(1))
    match = re.search(r'filename="?([^";]+)"?', value or "")
    return match.group(1) if match else None


class BoxClient:
    """Authenticated session against the Box content API.

    One instance holds one set of credentials and its token state; nothing
    is shared between instances.
    """

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        token_file: str = "",
        developer_token: str = "",
        timeout: int = 30,
        max_retries: int = 3,
        page_size: int = 1000,
    ):
        self.client_id = client_id or ""
        self.client_secret = client_secret or ""
        self.token_file = token_file or ""
        self.developer_token = developer_token or ""
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.page_size = min(max(1, int(page_size)), 1000)

    # -- token storage ---------------------------------------------------

    def _load_tokens(self) -> dict[str, Any] | None:
        if not self.token_file:
            return None
        p = Path(self.token_file).expanduser()
        if not p.exists():
            return None
        payload = json.loads(p.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            return payload
        return None

    def _save_tokens(self, data: dict[str, Any]) -> None:
        if not self.token_file:
            return
        p = Path(self.token_file).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    # -- OAuth2 ------------------------------------------------------------

    def create_oauth_authorize_url(self, redirect_uri: str, state: str) -> str:
        if not self.client_id:
            raise AuthError("client_id_missing")
        if not redirect_uri:
            raise AuthError("redirect_uri_missing")
        if not state:
            raise AuthError("oauth_state_missing")
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "state": state,
            }
        )
        return f"{OAUTH_AUTHORIZE_URL}?{query}"

    def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        res = requests.post(OAUTH_TOKEN_URL, data=data, timeout=self.timeout)
        try:
            payload = res.json()
        except ValueError:
            payload = {}
        if res.status_code >= 400 or not isinstance(payload, dict) or not payload.get("access_token"):
            detail = payload.get("error_description") if isinstance(payload, dict) else None
            raise AuthError(f"token_request_failed: status={res.status_code} msg={detail or res.text[:200]}")
        payload["created_at"] = int(time.time() * 1000)
        self._save_tokens(payload)
        return payload

    def exchange_code_for_token(self, code: str) -> dict[str, Any]:
        if not self.client_id or not self.client_secret:
            raise AuthError("auth_incomplete")
        code_text = (code or "").strip()
        if not code_text:
            raise AuthError("oauth_code_missing")
        return self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code_text,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
        )

    def refresh_access_token(self, force: bool = False) -> dict[str, Any]:
        tokens = self._load_tokens()
        if not tokens:
            raise AuthError("no_token_file_or_empty")

        if not force and self._token_still_valid(tokens):
            return tokens

        refresh = str(tokens.get("refresh_token") or "").strip()
        if not refresh or not self.client_id or not self.client_secret:
            raise AuthError("refresh_token_missing_or_auth_incomplete")
        # Box refresh tokens are single use; the response carries the next one.
        return self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
        )

    @staticmethod
    def _token_still_valid(tokens: dict[str, Any]) -> bool:
        access_token = tokens.get("access_token")
        created = int(tokens.get("created_at", 0) or 0)
        expires_in = int(tokens.get("expires_in", 3600) or 3600)
        expire_at = created + max(expires_in - 300, 300) * 1000
        return bool(access_token and created and int(time.time() * 1000) < expire_at)

    def get_access_token(self) -> tuple[str | None, str | None]:
        if self.developer_token:
            return self.developer_token, "developer_token"

        tokens = self._load_tokens()
        if not tokens or not tokens.get("access_token"):
            return None, None
        if self._token_still_valid(tokens):
            return str(tokens["access_token"]), "oauth_access_token"

        try:
            refreshed = self.refresh_access_token(force=True)
        except (AuthError, requests.RequestException) as e:
            logger.warning("token_refresh_failed %s", e)
            return None, None
        return str(refreshed["access_token"]), "oauth_access_token"

    def ensure_authenticated(self) -> str:
        token, token_type = self.get_access_token()
        if not token:
            raise AuthError("no_token")
        return token_type or ""

    # -- transport -----------------------------------------------------------

    @staticmethod
    def _rewind_files(files: Any) -> None:
        if not isinstance(files, dict):
            return
        for value in files.values():
            fp = value[1] if isinstance(value, tuple) and len(value) > 1 else value
            if hasattr(fp, "seek"):
                fp.seek(0)

    @staticmethod
    def _raise_for_box_error(res: requests.Response) -> None:
        if res.status_code < 400:
            return
        try:
            payload = res.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        raise BoxAPIError(
            res.status_code,
            str(payload.get("code") or ""),
            str(payload.get("message") or res.text[:200] or ""),
            payload.get("context_info") if isinstance(payload.get("context_info"), dict) else None,
        )

    def authenticated_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Send one API call with a bearer token.

        HTTP 429 is retried up to ``max_retries`` times honouring ``Retry-After``.
        A 401 forces one token refresh. Any other status >= 400 raises
        ``BoxAPIError``.
        """
        if not url.startswith("http"):
            url = f"{BASE}{url}"
        extra_headers = dict(kwargs.pop("headers", None) or {})
        refreshed = False
        attempt = 0
        while True:
            token, _ = self.get_access_token()
            if not token:
                raise AuthError("no_token")
            headers = {**extra_headers, "Authorization": f"Bearer {token}"}
            self._rewind_files(kwargs.get("files"))
            res = requests.request(
                method,
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )

            if res.status_code == 429 and attempt < self.max_retries:
                attempt += 1
                try:
                    wait_sec = float(res.headers.get("Retry-After") or 0)
                except ValueError:
                    wait_sec = 0.0
                wait_sec = wait_sec or min(60, 2 ** attempt)
                logger.warning("rate_limited retry=%s wait=%.1fs url=%s", attempt, wait_sec, url)
                res.close()
                time.sleep(wait_sec)
                continue

            if res.status_code == 401:
                res.close()
                if refreshed or self.developer_token:
                    raise AuthError("unauthorized")
                refreshed = True
                try:
                    self.refresh_access_token(force=True)
                except requests.RequestException as e:
                    raise AuthError(f"unauthorized_refresh_failed: {e}") from e
                continue

            self._raise_for_box_error(res)
            return res

    @staticmethod
    def _json(res: requests.Response) -> dict[str, Any]:
        try:
            payload = res.json()
        except ValueError as e:
            raise BoxAPIError(res.status_code, "invalid_response", str(e)) from e
        if not isinstance(payload, dict):
            raise BoxAPIError(res.status_code, "invalid_response", "payload_not_object")
        return payload

    # -- folders -------------------------------------------------------------

    def whoami(self) -> dict[str, Any]:
        return self._json(self.authenticated_request("GET", "/users/me"))

    def list_items_page(self, folder_id: str, marker: str | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {
            "fields": ITEM_FIELDS,
            "limit": self.page_size,
            "usemarker": "true",
        }
        if marker:
            params["marker"] = marker
        body = self._json(self.authenticated_request("GET", f"/folders/{folder_id}/items", params=params))
        entries_raw = body.get("entries", []) or []
        entries = [item for item in entries_raw if isinstance(item, dict)] if isinstance(entries_raw, list) else []
        next_marker = body.get("next_marker")
        return {"entries": entries, "next_marker": str(next_marker) if next_marker else None}

    def list_folder_items(self, folder_id: str) -> list[dict[str, Any]]:
        marker: str | None = None
        items: list[dict[str, Any]] = []
        try:
            while True:
                page = self.list_items_page(folder_id, marker)
                items.extend(page["entries"])
                marker = page["next_marker"]
                if not marker:
                    break
        except AuthError:
            raise
        except (BoxAPIError, requests.RequestException) as e:
            raise RemoteListError(f"list_folder_items_failed: folder={folder_id} {e}") from e
        return items

    def create_folder(self, name: str, parent_id: str) -> str:
        try:
            res = self.authenticated_request(
                "POST",
                "/folders",
                json={"name": name, "parent": {"id": parent_id or "0"}},
                params={"fields": "id,type,name"},
            )
        except BoxAPIError as e:
            # Someone else created it first; reuse the existing folder.
            if e.status == 409:
                for conflict in e.context.get("conflicts", []) or []:
                    if isinstance(conflict, dict) and conflict.get("type") == "folder" and conflict.get("id"):
                        return str(conflict["id"])
            raise UploadError(f"create_folder_failed: name={name} {e}") from e
        folder_id = self._json(res).get("id")
        if not folder_id:
            raise UploadError("create_folder_no_id")
        return str(folder_id)

    # -- files -----------------------------------------------------------------

    def get_file_metadata(self, file_id: str) -> dict[str, Any]:
        res = self.authenticated_request("GET", f"/files/{file_id}", params={"fields": ITEM_FIELDS})
        return self._json(res)

    def upload(
        self,
        local_path: str,
        folder_id: str,
        file_name: str | None = None,
        file_id: str | None = None,
        content_modified_at: str | None = None,
    ) -> dict[str, Any]:
        """Upload a file; passing ``file_id`` stores a new version of that file."""
        path = Path(local_path)
        if not path.exists() or not path.is_file():
            raise UploadError(f"local_file_not_found: {local_path}")

        name = file_name or path.name
        attributes: dict[str, Any] = {"name": name}
        if content_modified_at:
            attributes["content_modified_at"] = content_modified_at
        if file_id:
            url = f"{UPLOAD_BASE}/files/{file_id}/content"
        else:
            url = f"{UPLOAD_BASE}/files/content"
            attributes["parent"] = {"id": folder_id or "0"}

        try:
            with path.open("rb") as fp:
                res = self.authenticated_request(
                    "POST",
                    url,
                    params={"fields": ITEM_FIELDS},
                    data={"attributes": json.dumps(attributes)},
                    files={"file": (name, fp, "application/octet-stream")},
                )
        except BoxAPIError as e:
            conflict = e.context.get("conflicts") if e.status == 409 else None
            if not file_id and isinstance(conflict, dict) and conflict.get("type") == "file" and conflict.get("id"):
                return self.upload(local_path, folder_id, name, str(conflict["id"]), content_modified_at)
            raise UploadError(f"upload_failed: {name} {e}") from e
        except requests.RequestException as e:
            raise UploadError(f"upload_failed: {name} {e}") from e

        entries = self._json(res).get("entries") or []
        if not entries or not isinstance(entries[0], dict) or not entries[0].get("id"):
            raise UploadError("upload_no_file_id")
        return entries[0]

    def list_versions(self, file_id: str) -> list[dict[str, Any]]:
        """Previous versions of a file, oldest first. The current version is not included."""
        out: list[dict[str, Any]] = []
        offset = 0
        while True:
            body = self._json(
                self.authenticated_request(
                    "GET",
                    f"/files/{file_id}/versions",
                    params={"fields": "id,type,sha1,size,created_at,modified_at", "limit": 1000, "offset": offset},
                )
            )
            entries = [e for e in body.get("entries") or [] if isinstance(e, dict)]
            out.extend(entries)
            offset += len(entries)
            if not entries or offset >= int(body.get("total_count") or 0):
                break
        return sorted(out, key=lambda v: (parse_timestamp(v.get("created_at")) or 0.0, str(v.get("id"))))

    def resolve_version_id(self, file_id: str, version_no: int) -> str | None:
        """Map a 1-based version number to a version id.

        Number 1 is the oldest version; the number after the last previous
        version is the current one, for which ``None`` is returned.
        """
        versions = self.list_versions(file_id)
        number = int(version_no)
        if 1 <= number <= len(versions):
            return str(versions[number - 1]["id"])
        if number == len(versions) + 1:
            return None
        raise DownloadError(f"version_not_found: file={file_id} version_no={number} available={len(versions) + 1}")

    def download(
        self,
        file_id: str,
        dest_path: str,
        version_id: str | None = None,
        version_no: int | None = None,
    ) -> dict[str, Any]:
        """Stream a file to ``dest_path``; a version id or number selects an older version."""
        if version_id and version_no is not None:
            raise DownloadError("version_id_and_version_no_both_set")
        try:
            if version_no is not None:
                version_id = self.resolve_version_id(file_id, version_no)
            with self.authenticated_request(
                "GET",
                f"/files/{file_id}/content",
                params={"version": version_id} if version_id else None,
                stream=True,
                allow_redirects=True,
            ) as res:
                path = Path(dest_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("wb") as fp:
                    for chunk in res.iter_content(chunk_size=1024 * 64):
                        if chunk:
                            fp.write(chunk)
                return {
                    "content_type": (res.headers.get("Content-Type") or "").split(";")[0].strip(),
                    "filename": _filename_from_disposition(res.headers.get("Content-Disposition", "")),
                }
        except (BoxAPIError, requests.RequestException) as e:
            raise DownloadError(f"download_failed: file={file_id} {e}") from e

    def delete(self, item_id: str, kind: str = "file", recursive: bool = False) -> None:
        if kind == "folder":
            url = f"/folders/{item_id}"
            params = {"recursive": "true" if recursive else "false"}
        else:
            url = f"/files/{item_id}"
            params = None
        try:
            self.authenticated_request("DELETE", url, params=params).close()
        except (BoxAPIError, requests.RequestException) as e:
            raise DeleteError(f"delete_failed: {kind}={item_id} {e}") from e

    def search(
        self,
        query: str,
        ancestor_folder_id: str | None = None,
        file_extensions: list[str] | None = None,
        item_type: str = "file",
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        offset = 0
        while len(out) < limit:
            params: dict[str, Any] = {
                "query": query,
                "type": item_type,
                "fields": ITEM_FIELDS,
                "limit": min(200, limit - len(out)),
                "offset": offset,
            }
            if ancestor_folder_id:
                params["ancestor_folder_ids"] = ancestor_folder_id
            if file_extensions:
                params["file_extensions"] = ",".join(e.lstrip(".") for e in file_extensions)
            body = self._json(self.authenticated_request("GET", "/search", params=params))
            entries = [e for e in body.get("entries") or [] if isinstance(e, dict)]
            out.extend(entries)
            offset += len(entries)
            if not entries or offset >= int(body.get("total_count") or 0):
                break
        return out[:limit]
