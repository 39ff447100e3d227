"""
Tableau Relay - Remote API Client
===================================
Async client for the Tableau REST API, built on a single pooled
httpx.AsyncClient.

Every call:
    - carries the caller's Credential as the X-Tableau-Auth header
    - is bounded by a deadline (httpx transport timeout + asyncio.wait_for)
    - raises RemoteUnavailable on transport errors, non-2xx status or
      deadline expiry, and UpstreamShapeError when the body lacks an
      expected field

Paginated listings (projects, views) are resolved internally; callers
always receive the complete list.

Usage:
    async with TableauClient("https://example.online.tableau.com") as client:
        nodes = await client.fetch_nodes(None, credential, root_filter="Sales")
"""

import asyncio
import json
import logging
from typing import Any

import httpx

from relay.errors import InvalidFilter, RemoteUnavailable, UpstreamShapeError
from relay.models import Credential, Node, ViewRef

logger = logging.getLogger(__name__)


DEFAULT_API_VERSION = "3.22"
DEFAULT_TIMEOUT = 30.0
DEFAULT_PAGE_SIZE = 100


class TableauClient:
    """
    Stateless REST client; the only shared resource is the connection pool.

    Attributes:
        server_url:  Base URL of the Tableau server / Tableau Cloud pod.
        api_version: REST API version segment, e.g. "3.22".
        timeout:     Per-call deadline in seconds.
        page_size:   Page size used for paginated listings.
    """

    def __init__(
        self,
        server_url: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_connections: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            server_url:      Tableau server URL (no trailing /api).
            api_version:     REST API version.
            timeout:         Per-call deadline in seconds.
            page_size:       Records requested per page.
            max_connections: Connection pool cap across all operations.
            transport:       Optional httpx transport (tests use MockTransport).
        """
        self.server_url = server_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.page_size = page_size
        self.max_connections = max_connections
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return f"{self.server_url}/api/{self.api_version}"

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=self.max_connections),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TableauClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -- Authentication --------------------------------------------------------

    async def sign_in(
        self,
        site_content_url: str,
        name: str | None = None,
        password: str | None = None,
        pat_name: str | None = None,
        pat_secret: str | None = None,
    ) -> dict:
        """
        Exchange user credentials or a personal access token for a REST token.

        Exactly one pair (name/password or pat_name/pat_secret) is expected;
        the personal access token wins when both are given.

        Returns:
            {"token": ..., "siteId": ..., "userId": ...}

        Raises:
            ValueError: If neither credential pair is complete.
            RemoteUnavailable: If the platform rejects the sign-in.
            UpstreamShapeError: If the response has no credentials block.
        """
        if pat_name and pat_secret:
            credentials = {
                "personalAccessTokenName": pat_name,
                "personalAccessTokenSecret": pat_secret,
            }
        elif name and password:
            credentials = {"name": name, "password": password}
        else:
            raise ValueError("Missing username/password or personal access token")

        credentials["site"] = {"contentUrl": site_content_url}
        response = await self._request(
            "POST", "/auth/signin", json={"credentials": credentials}
        )
        data = self._json(response)

        block = data.get("credentials")
        if not isinstance(block, dict) or not block.get("token"):
            raise UpstreamShapeError("Sign-in response has no credentials token")

        site = block.get("site") or {}
        user = block.get("user") or {}
        if not site.get("id"):
            raise UpstreamShapeError("Sign-in response has no site id")

        return {"token": block["token"], "siteId": site["id"], "userId": user.get("id")}

    async def sign_out(self, credential: Credential) -> None:
        """Invalidate the REST token held by the credential."""
        await self._request("POST", "/auth/signout", credential)

    # -- Projects --------------------------------------------------------------

    async def fetch_nodes_payload(
        self,
        parent_id: str | None,
        credential: Credential,
        root_filter: str | None = None,
    ) -> dict:
        """
        List projects below parent_id (or the top level) as a raw payload.

        With parent_id None the top level is listed: projects named
        root_filter when given, otherwise all top-level projects.

        Returns:
            {"pagination": {...}, "projects": {"project": [records...]}}
            with every page merged.
        """
        if parent_id is not None:
            filter_expr = f"parentProjectId:eq:{parent_id}"
        elif root_filter:
            filter_expr = f"name:eq:{_filter_value(root_filter)}"
        else:
            filter_expr = "topLevelProject:eq:true"

        records, pagination = await self._list_paged(
            f"/sites/{credential.site_id}/projects",
            credential,
            container="projects",
            item="project",
            filter_expr=filter_expr,
        )
        return {"pagination": pagination, "projects": {"project": records}}

    async def fetch_nodes(
        self,
        parent_id: str | None,
        credential: Credential,
        root_filter: str | None = None,
    ) -> list[Node]:
        """List projects below parent_id (or the top level) as Nodes."""
        payload = await self.fetch_nodes_payload(parent_id, credential, root_filter)
        return nodes_from_payload(payload)

    # -- Views -----------------------------------------------------------------

    async def list_views(
        self,
        credential: Credential,
        root_filter: str | None = None,
    ) -> list[ViewRef]:
        """List the views on the site, limited to one project when filtered."""
        filter_expr = f"projectName:eq:{_filter_value(root_filter)}" if root_filter else None
        records, _ = await self._list_paged(
            f"/sites/{credential.site_id}/views",
            credential,
            container="views",
            item="view",
            filter_expr=filter_expr,
        )
        return [ViewRef.from_record(record) for record in records]

    async def fetch_preview(
        self,
        site_id: str,
        workbook_id: str,
        view_id: str,
        credential: Credential,
    ) -> bytes:
        """Download the PNG preview image of one view."""
        response = await self._request(
            "GET",
            f"/sites/{site_id}/workbooks/{workbook_id}/views/{view_id}/previewImage",
            credential,
            headers={"Accept": "image/png"},
        )
        if not response.content:
            raise UpstreamShapeError(f"Empty preview image for view '{view_id}'")
        return response.content

    async def fetch_view_data(self, credential: Credential, view_id: str) -> str:
        """Download the summary data of one view as CSV text."""
        response = await self._request(
            "GET",
            f"/sites/{credential.site_id}/views/{view_id}/data",
            credential,
            headers={"Accept": "text/csv"},
        )
        return response.content.decode("utf-8-sig")

    # -- Internal helpers ------------------------------------------------------

    async def _list_paged(
        self,
        path: str,
        credential: Credential,
        container: str,
        item: str,
        filter_expr: str | None = None,
    ) -> tuple[list[dict], dict]:
        """
        Walk every page of a listing endpoint.

        Stops once totalAvailable records were collected or a page comes
        back empty. A response without pagination info is a single page.

        Returns:
            (records, pagination block of the last page)
        """
        records: list[dict] = []
        pagination: dict = {}
        page_number = 1

        while True:
            params: dict[str, Any] = {"pageSize": self.page_size, "pageNumber": page_number}
            if filter_expr:
                params["filter"] = filter_expr

            response = await self._request("GET", path, credential, params=params)
            data = self._json(response)
            if container not in data:
                raise UpstreamShapeError(f"Response from {path} has no '{container}' field")

            batch = _records(data[container], item)
            records.extend(batch)

            pagination = data.get("pagination") or {}
            try:
                total = int(pagination.get("totalAvailable", len(records)))
            except (TypeError, ValueError):
                total = len(records)

            if not batch or len(records) >= total:
                return records, pagination
            page_number += 1

    async def _request(
        self,
        method: str,
        path: str,
        credential: Credential | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Issue one request under the per-call deadline.

        Raises:
            RemoteUnavailable: On transport failure, deadline expiry or a
                               non-success status.
        """
        request_headers = dict(headers or {})
        if credential is not None:
            request_headers["X-Tableau-Auth"] = credential.bearer_token

        try:
            response = await asyncio.wait_for(
                self.client.request(method, path, headers=request_headers, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as err:
            raise RemoteUnavailable(f"{method} {path} timed out after {self.timeout}s") from err
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as err:
            raise RemoteUnavailable(f"{method} {path} failed: {err}") from err

        logger.debug("[API] %s %s -> %s", method, path, response.status_code)
        if response.is_error:
            raise RemoteUnavailable(
                f"{method} {path} returned {response.status_code}: {_error_summary(response)}",
                upstream_status=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as err:
            raise UpstreamShapeError("Invalid JSON in response from API") from err
        if not isinstance(data, dict):
            raise UpstreamShapeError("Expected a JSON object from API")
        return data


# -- Helper Functions ---------------------------------------------------------

def nodes_from_payload(payload: dict) -> list[Node]:
    """Parse the merged projects payload into Nodes, preserving order."""
    if "projects" not in payload:
        raise UpstreamShapeError("Payload has no 'projects' field")
    return [Node.from_record(record) for record in _records(payload["projects"], "project")]


def _filter_value(value: str) -> str:
    """
    Validate a filter value for an "eq" expression.

    Tableau separates filter expressions with commas and has no escape for
    them, so a comma inside the value would add a second expression.
    """
    if "," in value:
        raise InvalidFilter(f"Filter value must not contain a comma: {value!r}")
    return value


def _records(container: Any, item: str) -> list[dict]:
    """
    Unwrap Tableau's {"projects": {"project": [...]}} nesting.

    An empty result arrives as {} (no item key) and maps to [].
    """
    if not isinstance(container, dict):
        raise UpstreamShapeError(f"Expected an object wrapping '{item}' records")
    value = container.get(item, [])
    if isinstance(value, dict):
        return [value]
    if not isinstance(value, list):
        raise UpstreamShapeError(f"Expected a list of '{item}' records")
    return value


def _error_summary(response: httpx.Response) -> str:
    """Best-effort human-readable error text from a Tableau error body."""
    try:
        error = response.json().get("error", {})
    except (json.JSONDecodeError, ValueError, AttributeError):
        return response.reason_phrase or "API request failed"
    if isinstance(error, dict):
        parts = [error.get("summary"), error.get("detail")]
        text = ": ".join(p for p in parts if p)
        if text:
            return text
    return response.reason_phrase or "API request failed"
