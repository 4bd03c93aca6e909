import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests import Session, Response

from drivefs.config.sync_config import SIMPLE_UPLOAD_LIMIT
from drivefs.graph_client.errors import GraphAPIError, NotFoundError

LOGGER = logging.getLogger(__name__)

GRAPH_API_ROOT = "https://graph.microsoft.com/v1.0"


def _escape(path: str) -> str:
    return quote(path, safe="/")


def children_path(path: str) -> str:
    """Resource path listing the children of the folder at an absolute drive path."""
    if path in ("", "/"):
        return "/me/drive/root/children"
    return f"/me/drive/root:{_escape(path.rstrip('/'))}:/children"


def item_path(item_id: str) -> str:
    return f"/me/drive/items/{item_id}"


def content_path(item_id: str) -> str:
    return f"/me/drive/items/{item_id}/content"


def new_content_path(parent_id: str, name: str) -> str:
    """Path-addressed upload target for an item that has no id yet."""
    return f"/me/drive/items/{parent_id}:/{_escape(name)}:/content"


class GraphDrive:
    """
    Manages interactions with a OneDrive account through Microsoft Graph.
    """
    def __init__(self, auth, api_root: str = GRAPH_API_ROOT, session: Optional[Session] = None,
                 timeout: Optional[float] = 60):
        if auth is None:
            raise ValueError("A GraphAuth instance is required.")
        self._auth = auth
        self._api_root = api_root.rstrip('/')
        self._session = session or requests.Session()
        self._timeout = timeout

    def _raise_if_error(self, response: Response) -> None:
        """Helper to raise an exception if the response indicates an error."""
        if response.ok:
            return
        error_message = response.reason or "Unknown Graph API error"
        try:
            error_message = response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            pass
        LOGGER.error(f"Graph API Error {response.status_code}: {error_message}")
        if response.status_code == 404:
            raise NotFoundError(error_message)
        raise GraphAPIError(f"Graph API Error {response.status_code}: {error_message}", response.status_code)

    def _request(self, method: str, resource: str, **kwargs) -> Response:
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"bearer {self._auth.token()}"
        try:
            response = self._session.request(
                method,
                self._api_root + resource,
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            LOGGER.error(f"{method} {resource} failed: {e}")
            raise GraphAPIError(f"{method} {resource} failed: {e}") from e
        self._raise_if_error(response)
        return response

    # --- Raw helpers ---

    def get(self, resource: str) -> bytes:
        return self._request("GET", resource).content

    def post(self, resource: str, payload: Dict[str, Any]) -> bytes:
        return self._request("POST", resource, json=payload).content

    def put(self, resource: str, data: bytes) -> bytes:
        return self._request("PUT", resource, data=data,
                             headers={"Content-Type": "application/octet-stream"}).content

    def delete(self, resource: str) -> None:
        self._request("DELETE", resource)

    # --- Item operations ---

    def list_children(self, path: str) -> List[Dict[str, Any]]:
        LOGGER.info(f"Listing children of {path}")
        items: List[Dict[str, Any]] = []
        response = self._request("GET", children_path(path)).json()
        items.extend(response.get("value", []))

        # Large folders are paged
        next_link = response.get("@odata.nextLink")
        while next_link:
            response = self._request("GET", next_link[len(self._api_root):]).json()
            items.extend(response.get("value", []))
            next_link = response.get("@odata.nextLink")
        return items

    def get_item(self, path: str) -> Dict[str, Any]:
        if path in ("", "/"):
            return self._request("GET", "/me/drive/root").json()
        return self._request("GET", f"/me/drive/root:{_escape(path.rstrip('/'))}").json()

    def fetch_content(self, item_id: str) -> bytes:
        LOGGER.info(f"Downloading content of item {item_id}")
        return self.get(content_path(item_id))

    def create_item(self, parent_path: str, name: str, kind: str = "folder") -> Dict[str, Any]:
        LOGGER.info(f"Creating {kind} '{name}' in {parent_path}")
        if kind != "folder":
            raise ValueError(f"Unsupported item kind: {kind}")
        payload = {
            "name": name,
            "folder": {},
            "@microsoft.graph.conflictBehavior": "fail",
        }
        return json.loads(self.post(children_path(parent_path), payload))

    def delete_item(self, item_id: str) -> None:
        LOGGER.info(f"Deleting item {item_id}")
        self.delete(item_path(item_id))

    def upload_content(self, data: bytes, item_id: Optional[str] = None,
                       parent_id: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
        if item_id:
            target = content_path(item_id)
        elif parent_id and name:
            target = new_content_path(parent_id, name)
        else:
            raise ValueError("Either item_id or both parent_id and name are required.")

        if len(data) > SIMPLE_UPLOAD_LIMIT:
            # TODO: switch to upload sessions (createUploadSession) above 4 MiB
            LOGGER.warning(f"Uploading {len(data)} bytes in a single request; the API may reject it.")

        LOGGER.info(f"Uploading {len(data)} bytes to {target}")
        return json.loads(self.put(target, data))
