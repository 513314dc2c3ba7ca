"""GitHub Gist backend for the remote command library.

One private gist holds one file, ``cmdvault-commands.json``, whose content
is the sync payload. The gist id is the remote handle.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from cmdvault.config import DEFAULT_API_URL, DEFAULT_GIST_FILENAME, load_github_token
from cmdvault.protocols import HandleNotFound, InvalidPayload, TransportError

from .payload import SyncPayload, parse_payload

logger = logging.getLogger(__name__)

GIST_DESCRIPTION = "cmdvault - Synced Commands"
GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"

# Pages scanned when searching for an existing gist
MAX_SEARCH_PAGES = 10


class GistClient:
    """Remote blob client backed by the GitHub Gists REST API."""

    def __init__(
        self,
        token: Optional[str] = None,
        handle: Optional[str] = None,
        api_url: str = DEFAULT_API_URL,
        filename: str = DEFAULT_GIST_FILENAME,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self._token = token
        self.handle = handle
        self.filename = filename
        self._client = http_client or httpx.Client(base_url=api_url.rstrip("/"), timeout=timeout)
        self._owns_client = http_client is None

    def close(self):
        if self._owns_client:
            self._client.close()

    # === Handle ===

    def has_handle(self) -> bool:
        return bool(self.handle)

    def adopt_handle(self, handle: Optional[str]) -> None:
        self.handle = handle or None

    def clear_handle(self) -> None:
        self.handle = None

    # === Auth ===

    def authenticate(self) -> Optional[str]:
        """Return the configured token, or None when there is none."""
        if self._token is None:
            self._token = load_github_token()
        return self._token or None

    def _headers(self, credential: str) -> Dict[str, str]:
        return {
            "Accept": GITHUB_ACCEPT,
            "Authorization": f"Bearer {credential}",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }

    # === HTTP ===

    def _request(self, method: str, path: str, credential: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, headers=self._headers(credential), **kwargs)
        except httpx.HTTPError as e:
            logger.debug("Gist %s %s failed: %s", method, path, e)
            raise TransportError(f"Could not reach GitHub: {e}") from e

        if response.status_code == 404:
            raise HandleNotFound(f"Gist not found ({method} {path})")
        if not response.is_success:
            raise TransportError(
                f"GitHub returned {response.status_code} for {method} {path}: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response

    def _body(self, payload: SyncPayload) -> Dict[str, Any]:
        return {"files": {self.filename: {"content": payload.to_json()}}}

    # === Operations ===

    def find_existing(self, credential: str) -> bool:
        """Scan the user's gists for one holding our file and adopt it."""
        for page in range(1, MAX_SEARCH_PAGES + 1):
            response = self._request("GET", "/gists", credential, params={"per_page": 100, "page": page})
            gists = response.json()
            for gist in gists:
                if self.filename in (gist.get("files") or {}):
                    self.adopt_handle(gist["id"])
                    logger.info("Found existing gist %s", gist["id"])
                    return True
            if len(gists) < 100:
                break
        return False

    def create(self, credential: str, payload: SyncPayload) -> str:
        body = self._body(payload)
        body["description"] = GIST_DESCRIPTION
        body["public"] = False
        try:
            response = self._request("POST", "/gists", credential, json=body)
        except HandleNotFound as e:
            # A 404 on create is not about our handle
            raise TransportError(str(e), status_code=404) from e
        gist_id = response.json().get("id")
        if not gist_id:
            raise TransportError("GitHub did not return a gist id")
        self.adopt_handle(gist_id)
        logger.info("Created gist %s", gist_id)
        return gist_id

    def update(self, credential: str, payload: SyncPayload) -> None:
        if not self.handle:
            raise HandleNotFound("No gist handle to update")
        self._request("PATCH", f"/gists/{self.handle}", credential, json=self._body(payload))

    def fetch(self, credential: str) -> Optional[SyncPayload]:
        """Download and decode the payload. None when the gist lacks our file."""
        if not self.handle:
            return None
        response = self._request("GET", f"/gists/{self.handle}", credential)
        file_info = (response.json().get("files") or {}).get(self.filename)
        if not file_info:
            return None

        content = file_info.get("content")
        if file_info.get("truncated") and file_info.get("raw_url"):
            content = self._fetch_raw(file_info["raw_url"], credential)
        if content is None:
            raise InvalidPayload("Gist file has no content")
        return parse_payload(content)

    def _fetch_raw(self, raw_url: str, credential: str) -> str:
        try:
            response = self._client.get(raw_url, headers={"Authorization": f"Bearer {credential}"})
        except httpx.HTTPError as e:
            raise TransportError(f"Could not download gist content: {e}") from e
        if not response.is_success:
            raise TransportError(
                f"GitHub returned {response.status_code} for gist content", status_code=response.status_code
            )
        return response.text


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message") or response.reason_phrase
    except (ValueError, AttributeError):
        return response.text[:200] or response.reason_phrase
