"""Google Drive v3 REST client on httpx.

Only what the cloud store needs: folder queries, folder creation, streamed
upload/download and deletion.  Requests carry a bearer token; a 401 triggers
one silent token refresh and one retry.
"""

from __future__ import annotations

import json
import mimetypes
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import httpx
from loguru import logger

from cloudsave.exceptions import CloudAuthError, CloudSaveError, DriveApiError
from cloudsave.models.backup_record import CloudFolder

DRIVE_API = "https://www.googleapis.com/drive/v3"
UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
TOKEN_URI = "https://oauth2.googleapis.com/token"

FOLDER_MIME = CloudFolder.FOLDER_MIME
_FILE_FIELDS = "id, name, mimeType, createdTime, modifiedTime, parents"
_CHUNK_SIZE = 1024 * 1024


def escape_query(value: str) -> str:
    """Escape a literal for use inside a single-quoted Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


@dataclass
class OAuthCredentials:
    """OAuth client identity plus the current token pair."""

    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_uri: str = TOKEN_URI

    @classmethod
    def from_files(
        cls,
        credentials_path: Path | None,
        token_path: Path | None = None,
        access_token: str = "",
        refresh_token: str = "",
    ) -> OAuthCredentials:
        """Read the provider's client JSON and saved tokens; explicit tokens win."""
        creds = cls()
        if credentials_path and credentials_path.is_file():
            with open(credentials_path, encoding="utf-8") as f:
                raw = json.load(f)
            client = raw.get("installed") or raw.get("web") or raw
            creds.client_id = client.get("client_id", "")
            creds.client_secret = client.get("client_secret", "")
            creds.token_uri = client.get("token_uri") or TOKEN_URI

        if token_path and token_path.is_file():
            try:
                with open(token_path, encoding="utf-8") as f:
                    tokens = json.load(f)
                creds.access_token = tokens.get("access_token", "") or ""
                creds.refresh_token = tokens.get("refresh_token", "") or ""
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Ignoring unreadable token file {token_path}: {e}")

        if access_token:
            creds.access_token = access_token
        if refresh_token:
            creds.refresh_token = refresh_token
        return creds

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token or self.refresh_token)


@dataclass
class FilePage:
    """One page of a file listing."""

    files: list[CloudFolder] = field(default_factory=list)
    next_page_token: str | None = None


class DriveClient:
    """Thin authenticated wrapper around the Drive v3 endpoints."""

    def __init__(
        self,
        credentials: OAuthCredentials,
        http: httpx.Client | None = None,
        token_path: Path | None = None,
    ) -> None:
        self._creds = credentials
        self._http = http or httpx.Client(timeout=httpx.Timeout(30.0, read=120.0))
        self._token_path = token_path

    @property
    def credentials(self) -> OAuthCredentials:
        return self._creds

    def close(self) -> None:
        self._http.close()

    # ── Auth ──

    def _auth_headers(self) -> dict[str, str]:
        if not self._creds.access_token:
            self._refresh()
        return {"Authorization": f"Bearer {self._creds.access_token}"}

    def _refresh(self) -> None:
        """Exchange the refresh token for a new access token."""
        creds = self._creds
        if not creds.refresh_token or not creds.client_id:
            raise CloudAuthError()
        try:
            resp = self._http.post(
                creds.token_uri,
                data={
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "refresh_token": creds.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"Token refresh failed: {e}")
            raise CloudAuthError() from e
        if resp.is_error:
            logger.error(f"Token refresh rejected: {resp.status_code}")
            raise CloudAuthError()

        try:
            data = resp.json()
            creds.access_token = data["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Token refresh returned no access token: {e}")
            raise CloudAuthError() from e
        if data.get("refresh_token"):
            creds.refresh_token = data["refresh_token"]
        logger.debug("Refreshed cloud access token")
        self._save_tokens()

    def _save_tokens(self) -> None:
        if not self._token_path:
            return
        try:
            self._token_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._token_path, "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "access_token": self._creds.access_token,
                        "refresh_token": self._creds.refresh_token,
                        "token_type": "Bearer",
                    },
                    f,
                    indent=2,
                )
        except OSError as e:
            logger.warning(f"Could not persist cloud token: {e}")

    def clear_auth(self) -> None:
        """Forget the tokens and delete the saved token file."""
        self._creds.access_token = ""
        self._creds.refresh_token = ""
        if self._token_path:
            self._token_path.unlink(missing_ok=True)
        logger.info("Cloud authentication cleared")

    # ── Transport ──

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {**kwargs.pop("headers", {}), **self._auth_headers()}
        try:
            return self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise DriveApiError(f"{method} {url} failed: {e}") from e

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        body = kwargs.pop("body_file", None)
        if body is not None:
            kwargs["content"] = body
        resp = self._send(method, url, **dict(kwargs))
        if resp.status_code == 401:
            self._refresh()
            if body is not None:
                body.seek(0)
            resp = self._send(method, url, **dict(kwargs))
            if resp.status_code == 401:
                raise CloudAuthError()
        self._raise_for_status(resp)
        return resp

    @contextmanager
    def _stream(self, method: str, url: str, **kwargs: Any) -> Iterator[httpx.Response]:
        for attempt in range(2):
            try:
                with self._http.stream(method, url, headers=self._auth_headers(), **kwargs) as resp:
                    if resp.status_code == 401:
                        if attempt:
                            raise CloudAuthError()
                    else:
                        if resp.is_error:
                            resp.read()
                        self._raise_for_status(resp)
                        yield resp
                        return
            except httpx.TransportError as e:
                raise DriveApiError(f"{method} {url} failed: {e}") from e
            self._refresh()

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code == 401:
            raise CloudAuthError()
        if resp.is_error:
            try:
                detail = resp.json().get("error", {}).get("message", "")
            except (json.JSONDecodeError, AttributeError, ValueError):
                detail = resp.text[:200]
            raise DriveApiError(
                f"Cloud request failed ({resp.status_code}): {detail}",
                status_code=resp.status_code,
            )

    # ── Files ──

    def query_files(
        self,
        parent_id: str | None = None,
        name: str | None = None,
        folders: bool | None = None,
        order_by: str | None = None,
        page_size: int = 1000,
        page_token: str | None = None,
    ) -> FilePage:
        """List non-trashed files matching the given filters (one page)."""
        clauses = ["trashed=false"]
        if parent_id:
            clauses.append(f"'{escape_query(parent_id)}' in parents")
        if name is not None:
            clauses.append(f"name='{escape_query(name)}'")
        if folders is True:
            clauses.append(f"mimeType='{FOLDER_MIME}'")
        elif folders is False:
            clauses.append(f"mimeType!='{FOLDER_MIME}'")

        params: dict[str, Any] = {
            "q": " and ".join(clauses),
            "fields": f"nextPageToken, files({_FILE_FIELDS})",
            "pageSize": page_size,
            "spaces": "drive",
        }
        if order_by:
            params["orderBy"] = order_by
        if page_token:
            params["pageToken"] = page_token

        data = self._request("GET", f"{DRIVE_API}/files", params=params).json()
        return FilePage(
            files=[CloudFolder.from_api(f) for f in data.get("files", [])],
            next_page_token=data.get("nextPageToken"),
        )

    def get_file(self, file_id: str) -> CloudFolder | None:
        """Metadata of a file, or None if it does not exist."""
        try:
            resp = self._request(
                "GET", f"{DRIVE_API}/files/{file_id}", params={"fields": _FILE_FIELDS}
            )
        except DriveApiError as e:
            if e.status_code == 404:
                return None
            raise
        return CloudFolder.from_api(resp.json())

    def create_folder(self, name: str, parent_id: str | None = None) -> CloudFolder:
        body: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            body["parents"] = [parent_id]
        resp = self._request(
            "POST", f"{DRIVE_API}/files", params={"fields": _FILE_FIELDS}, json=body
        )
        folder = CloudFolder.from_api(resp.json())
        logger.debug(f"Created cloud folder {name} ({folder.id})")
        return folder

    def upload_file(self, path: Path, name: str, parent_id: str) -> CloudFolder:
        """Upload *path* through a resumable session, streaming the file body."""
        mime = mimetypes.guess_type(name)[0] or "application/octet-stream"
        size = path.stat().st_size
        session = self._request(
            "POST",
            f"{UPLOAD_API}/files",
            params={"uploadType": "resumable", "fields": _FILE_FIELDS},
            json={"name": name, "parents": [parent_id]},
            headers={"X-Upload-Content-Type": mime, "X-Upload-Content-Length": str(size)},
        )
        location = session.headers.get("Location")
        if not location:
            raise DriveApiError("Upload session was not created", status_code=session.status_code)

        with open(path, "rb") as f:
            resp = self._request(
                "PUT",
                location,
                body_file=f,
                headers={"Content-Type": mime, "Content-Length": str(size)},
            )
        logger.debug(f"Uploaded {path} ({size} bytes)")
        return CloudFolder.from_api(resp.json())

    def download_file(self, file_id: str, dest: Path) -> None:
        """Stream a file's content into *dest*."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        with self._stream("GET", f"{DRIVE_API}/files/{file_id}", params={"alt": "media"}) as resp:
            with open(dest, "wb") as f:
                for chunk in resp.iter_bytes(_CHUNK_SIZE):
                    f.write(chunk)
        logger.debug(f"Downloaded {file_id} -> {dest}")

    def delete_file(self, file_id: str) -> None:
        self._request("DELETE", f"{DRIVE_API}/files/{file_id}")

    def trash_file(self, file_id: str) -> None:
        self._request("PATCH", f"{DRIVE_API}/files/{file_id}", json={"trashed": True})

    def about(self) -> dict[str, Any]:
        return self._request("GET", f"{DRIVE_API}/about", params={"fields": "user"}).json()

    def is_authenticated(self) -> bool:
        if not self._creds.has_tokens:
            return False
        try:
            self.about()
            return True
        except CloudSaveError as e:
            logger.debug(f"Cloud auth probe failed: {e}")
            return False
