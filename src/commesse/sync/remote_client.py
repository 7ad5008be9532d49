"""HTTP client for the remote record mirror."""

import logging
from typing import Optional
from urllib.parse import quote

import requests

from .. import __version__
from .records import (
    PreconditionFailed,
    QueryPage,
    RecordNotFound,
    RecordOutcome,
    RemoteAuthError,
    RemoteMirrorError,
    RemoteNotProvisioned,
    RemoteRecord,
)

__all__ = ["RemoteMirrorClient"]

logger = logging.getLogger(__name__)

# Error codes the mirror uses for a record type or index that does not exist yet
NOT_PROVISIONED_CODES = {"unknown_record_type", "not_queryable"}


class RemoteMirrorClient:
    """Talks to the remote mirror's record API.

    Handles:
    - Session management
    - Authentication headers
    - Error classification into RemoteMirrorError subclasses

    Requests are never retried; the next push or pull is the retry.
    """

    USER_AGENT = f"Commesse/{__version__}"

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        device_id: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            api_url: Mirror API base URL
            token: API token for authentication
            device_id: Identifier of this device
            timeout: Request timeout in seconds
            session: Optional requests session (for dependency injection/testing)
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.device_id = device_id
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None

    def _get_headers(self) -> dict:
        """Get request headers with authentication."""
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.device_id:
            headers["X-Device-ID"] = self.device_id
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """Make a request to the mirror API.

        Raises:
            RemoteAuthError: For 401/403 responses
            RecordNotFound: For 404 on a record
            RemoteNotProvisioned: When the record type or index is missing
            PreconditionFailed: For 412 responses
            RemoteMirrorError: For other errors
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        request_headers = self._get_headers()
        if headers:
            request_headers.update(headers)
        kwargs: dict = {"timeout": self.timeout, "headers": request_headers}
        if data is not None:
            kwargs["json"] = data
        if params:
            kwargs["params"] = params

        try:
            response = self._session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise RemoteMirrorError("Cannot connect to the remote mirror") from e
        except requests.exceptions.Timeout as e:
            raise RemoteMirrorError("Request timed out") from e

        if response.status_code in (401, 403):
            raise RemoteAuthError("Invalid or expired API token")

        if response.status_code >= 400:
            code, message = self._error_detail(response)
            if code in NOT_PROVISIONED_CODES:
                raise RemoteNotProvisioned(message or code)
            if response.status_code == 404:
                raise RecordNotFound(message or f"Not found: {endpoint}")
            if response.status_code == 412:
                raise PreconditionFailed(message or "Record changed remotely")
            raise RemoteMirrorError(
                f"API error ({response.status_code}): {message or response.reason}"
            )

        return response.json() if response.content else {}

    @staticmethod
    def _error_detail(response: requests.Response) -> tuple[Optional[str], str]:
        try:
            body = response.json()
        except ValueError:
            return None, ""
        if not isinstance(body, dict):
            return None, ""
        return body.get("error"), body.get("message", "")

    @staticmethod
    def _record_path(key: str) -> str:
        return f"records/{quote(key, safe='')}"

    def get_record(self, key: str) -> RemoteRecord:
        """Fetch the current remote version of a record.

        Raises:
            RecordNotFound: If no record exists under the key
        """
        return RemoteRecord.from_dict(self._request("GET", self._record_path(key)))

    def batch_write(
        self,
        records_to_save: list[RemoteRecord],
        keys_to_delete: Optional[list[str]] = None,
        atomic: bool = False,
    ) -> list[RecordOutcome]:
        """Save and delete records in one call; outcomes are per record."""
        payload = {
            "save": [r.to_dict() for r in records_to_save],
            "delete": list(keys_to_delete or []),
            "atomic": atomic,
        }
        response = self._request("POST", "records/batch", data=payload)

        outcomes = []
        for item in response.get("results", []):
            record = item.get("record")
            outcomes.append(
                RecordOutcome(
                    key=item.get("key", ""),
                    success=bool(item.get("ok")),
                    record=RemoteRecord.from_dict(record) if record else None,
                    error=item.get("error"),
                )
            )
        return outcomes

    def query_page(
        self,
        record_type: str,
        cursor: Optional[str] = None,
        page_size: int = 200,
    ) -> QueryPage:
        """Fetch one page of records, oldest modification first."""
        params = {"type": record_type, "order": "modified_asc", "limit": page_size}
        if cursor:
            params["cursor"] = cursor
        response = self._request("GET", "records", params=params)
        return QueryPage(
            records=[RemoteRecord.from_dict(r) for r in response.get("records", [])],
            next_cursor=response.get("next_cursor"),
        )

    def delete_record(self, key: str, if_change_tag: Optional[str] = None) -> None:
        """Delete a record, only if unchanged since ``if_change_tag`` when given.

        Raises:
            PreconditionFailed: If the remote record has a newer change tag
            RecordNotFound: If the record is already gone
        """
        headers = {"If-Match": if_change_tag} if if_change_tag else None
        self._request("DELETE", self._record_path(key), headers=headers)

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None
