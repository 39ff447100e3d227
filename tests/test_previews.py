"""
Test the concurrent preview fan-out and its join back to the view list.
"""

import asyncio
import base64

import httpx
import pytest

from relay.errors import RemoteUnavailable
from relay.models import Credential, ViewRef
from relay.previews import PreviewCollector


CREDENTIAL = Credential("token", "site-1")


def view(view_id: str, workbook_id: str = "wb") -> ViewRef:
    return ViewRef(view_id, workbook_id, {"id": view_id, "name": f"View {view_id}"})


class PreviewClient:
    """
    Returns preview bytes per view id. None means the fetch fails with
    RemoteUnavailable; an exception instance is raised as is.
    """

    def __init__(self, previews: dict, delays: dict | None = None, views: list | None = None):
        self.previews = previews
        self.delays = delays or {}
        self.views = views or []
        self.in_flight = 0
        self.max_in_flight = 0
        self.fetched: list[str] = []

    async def list_views(self, credential, root_filter=None):
        if isinstance(self.views, Exception):
            raise self.views
        return self.views

    async def fetch_preview(self, site_id, workbook_id, view_id, credential):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(view_id, 0))
            self.fetched.append(view_id)
            data = self.previews.get(view_id)
            if isinstance(data, Exception):
                raise data
            if data is None:
                raise RemoteUnavailable(f"no preview for {view_id}", upstream_status=404)
            return data
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_one_success_one_failure_scenario():
    client = PreviewClient({"v1": b"png-bytes"})

    images = await PreviewCollector(client).collect([view("v1"), view("v2")], CREDENTIAL)

    encoded = base64.b64encode(b"png-bytes").decode("ascii")
    assert [i.to_dict() for i in images] == [
        {"viewId": "v1", "previewImage": f"data:image/png;base64,{encoded}"},
        {"viewId": "v2", "previewImage": None},
    ]


@pytest.mark.asyncio
async def test_unexpected_fetch_error_only_nulls_its_own_slot():
    client = PreviewClient({"v1": httpx.InvalidURL("bad url"), "v2": b"ok"})

    images = await PreviewCollector(client).collect([view("v1"), view("v2")], CREDENTIAL)

    assert [r.view_id for r in images] == ["v1", "v2"]
    assert images[0].preview_image is None
    assert images[1].preview_image is not None


@pytest.mark.asyncio
async def test_every_view_gets_exactly_one_result():
    views = [view(f"v{i}") for i in range(12)]
    client = PreviewClient({f"v{i}": b"x" for i in range(12) if i % 4})

    images = await PreviewCollector(client).collect(views, CREDENTIAL)

    assert len(images) == len(views)
    for v in views:
        assert sum(1 for r in images if r.view_id == v.view_id) == 1
    assert [r.view_id for r in images if r.preview_image is None] == ["v0", "v4", "v8"]


@pytest.mark.asyncio
async def test_order_follows_views_not_completion():
    views = [view("slow"), view("fast")]
    client = PreviewClient({"slow": b"s", "fast": b"f"}, delays={"slow": 0.05})

    images = await PreviewCollector(client).collect(views, CREDENTIAL)

    assert client.fetched == ["fast", "slow"]
    assert [r.view_id for r in images] == ["slow", "fast"]


@pytest.mark.asyncio
async def test_empty_view_list():
    client = PreviewClient({})

    assert await PreviewCollector(client).collect([], CREDENTIAL) == []
    assert client.fetched == []


@pytest.mark.asyncio
async def test_concurrency_is_capped():
    views = [view(f"v{i}") for i in range(20)]
    client = PreviewClient({f"v{i}": b"x" for i in range(20)}, delays={f"v{i}": 0.01 for i in range(20)})

    images = await PreviewCollector(client, max_concurrency=4).collect(views, CREDENTIAL)

    assert client.max_in_flight <= 4
    assert all(r.preview_image for r in images)


@pytest.mark.asyncio
async def test_batch_deadline_nulls_stragglers():
    views = [view("quick"), view("stuck")]
    client = PreviewClient({"quick": b"q", "stuck": b"s"}, delays={"stuck": 5})

    images = await PreviewCollector(client, batch_timeout=0.1).collect(views, CREDENTIAL)

    assert images[0].preview_image is not None
    assert images[1].to_dict() == {"viewId": "stuck", "previewImage": None}


@pytest.mark.asyncio
async def test_run_returns_parallel_views_and_images():
    views = [view("v1", "wb1"), view("v2", "wb2")]
    client = PreviewClient({"v2": b"2"}, views=views)

    result = await PreviewCollector(client).run(CREDENTIAL, "Sales")

    assert [v["viewId"] for v in result["views"]] == ["v1", "v2"]
    assert [v["workbookId"] for v in result["views"]] == ["wb1", "wb2"]
    assert result["views"][0]["name"] == "View v1"
    assert [i["viewId"] for i in result["images"]] == ["v1", "v2"]
    assert result["images"][0]["previewImage"] is None


@pytest.mark.asyncio
async def test_view_listing_failure_is_fatal():
    client = PreviewClient({}, views=RemoteUnavailable("down", upstream_status=503))

    with pytest.raises(RemoteUnavailable):
        await PreviewCollector(client).run(CREDENTIAL)


def test_invalid_concurrency_is_rejected():
    with pytest.raises(ValueError):
        PreviewCollector(PreviewClient({}), max_concurrency=0)


@pytest.mark.asyncio
async def test_previews_through_rest_client(fake, client, credential):
    fake.add_view("v1", "wb1", "Sales", preview=b"\x89PNG")
    fake.add_view("v2", "wb1", "Sales")
    fake.add_view("v3", "wb9", "Finance", preview=b"other")

    result = await PreviewCollector(client).run(credential, "Sales")

    assert [v["viewId"] for v in result["views"]] == ["v1", "v2"]
    assert result["images"][0]["previewImage"].startswith("data:image/png;base64,")
    assert result["images"][1]["previewImage"] is None
