"""Shared fixtures: an in-memory Tableau REST API behind httpx.MockTransport."""

import json

import httpx
import pytest

from relay.client import TableauClient
from relay.models import Credential


SERVER_URL = "https://tableau.test"
API_PREFIX = "/api/3.22"
SITE_ID = "site-1"
TOKEN = "rest-token"


class FakeTableau:
    """
    Minimal Tableau REST API.

    Projects and views are plain record dicts. Any project id listed in
    failing_children answers its child listing with HTTP 500; any view id
    missing from previews answers its preview with 404.
    """

    def __init__(self):
        self.projects: list[dict] = []
        self.views: list[dict] = []
        self.previews: dict[str, bytes] = {}
        self.view_data: dict[str, str] = {}
        self.failing_children: set[str] = set()
        self.fail_root = False
        self.users = {"alice": "secret"}
        self.requests: list[httpx.Request] = []

    # -- Seeding ---------------------------------------------------------------

    def add_project(self, project_id: str, name: str, parent_id: str | None = None) -> None:
        record = {"id": project_id, "name": name, "description": ""}
        if parent_id is not None:
            record["parentProjectId"] = parent_id
        self.projects.append(record)

    def add_view(self, view_id: str, workbook_id: str, project: str, preview: bytes | None = None) -> None:
        self.views.append({
            "id": view_id,
            "name": f"View {view_id}",
            "contentUrl": f"wb/sheets/{view_id}",
            "workbook": {"id": workbook_id},
            "project": {"name": project},
        })
        if preview is not None:
            self.previews[view_id] = preview

    # -- Transport -------------------------------------------------------------

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(API_PREFIX):]

        if path == "/auth/signin":
            return self._signin(request)

        if request.headers.get("X-Tableau-Auth") != TOKEN:
            return _error(401, "Signin Error", "Invalid authentication credentials")

        if path == "/auth/signout":
            return httpx.Response(204)

        parts = path.strip("/").split("/")
        if parts[:2] != ["sites", SITE_ID]:
            return _error(404, "Resource Not Found", "Site not found")
        rest = parts[2:]

        if rest == ["projects"]:
            return self._projects(request)
        if rest == ["views"]:
            return self._views(request)
        if len(rest) == 5 and rest[0] == "workbooks" and rest[4] == "previewImage":
            data = self.previews.get(rest[3])
            if data is None:
                return _error(404, "Resource Not Found", "View not found")
            return httpx.Response(200, content=data, headers={"Content-Type": "image/png"})
        if len(rest) == 3 and rest[0] == "views" and rest[2] == "data":
            text = self.view_data.get(rest[1])
            if text is None:
                return _error(404, "Resource Not Found", "View not found")
            return httpx.Response(200, content=text.encode("utf-8-sig"), headers={"Content-Type": "text/csv"})

        return _error(404, "Resource Not Found", path)

    def project_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/projects")]

    def _signin(self, request: httpx.Request) -> httpx.Response:
        creds = json.loads(request.content)["credentials"]
        name = creds.get("name") or creds.get("personalAccessTokenName")
        secret = creds.get("password") or creds.get("personalAccessTokenSecret")
        if self.users.get(name) != secret:
            return _error(401, "Signin Error", "Invalid user name or password")
        return httpx.Response(200, json={
            "credentials": {
                "token": TOKEN,
                "site": {"id": SITE_ID, "contentUrl": creds["site"]["contentUrl"]},
                "user": {"id": f"user-{name}"},
            }
        })

    def _projects(self, request: httpx.Request) -> httpx.Response:
        field, value = _parse_filter(request)
        if field == "parentProjectId":
            if value in self.failing_children:
                return _error(500, "Internal Server Error", "boom")
            matches = [p for p in self.projects if p.get("parentProjectId") == value]
        else:
            if self.fail_root:
                return _error(500, "Internal Server Error", "boom")
            if field == "name":
                matches = [p for p in self.projects if p["name"] == value]
            else:
                matches = [p for p in self.projects if "parentProjectId" not in p]
        return _page(request, "projects", "project", matches)

    def _views(self, request: httpx.Request) -> httpx.Response:
        field, value = _parse_filter(request)
        if field == "projectName":
            matches = [v for v in self.views if v["project"]["name"] == value]
        else:
            matches = list(self.views)
        return _page(request, "views", "view", matches)


def _parse_filter(request: httpx.Request) -> tuple[str | None, str | None]:
    expr = request.url.params.get("filter")
    if not expr:
        return None, None
    field, _, value = expr.split(":", 2)
    return field, value


def _page(request: httpx.Request, container: str, item: str, matches: list[dict]) -> httpx.Response:
    size = int(request.url.params.get("pageSize", 100))
    number = int(request.url.params.get("pageNumber", 1))
    page = matches[(number - 1) * size:number * size]
    return httpx.Response(200, json={
        "pagination": {
            "pageNumber": str(number),
            "pageSize": str(size),
            "totalAvailable": str(len(matches)),
        },
        container: {item: page} if page else {},
    })


def _error(status: int, summary: str, detail: str) -> httpx.Response:
    return httpx.Response(status, json={"error": {"summary": summary, "detail": detail, "code": str(status)}})


@pytest.fixture
def fake():
    return FakeTableau()


@pytest.fixture
def client(fake):
    return TableauClient(SERVER_URL, transport=fake.transport)


@pytest.fixture
def credential():
    return Credential(bearer_token=TOKEN, site_id=SITE_ID)
