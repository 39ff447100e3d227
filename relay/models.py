"""
Tableau Relay - Data Model
============================
Value objects passed between the remote client, the tree aggregator and
the preview collector.

    Credential    -> bearer token + site id, supplied per request
    Node          -> one project/folder, children attached after resolution
    ViewRef       -> one view record, keyed by view id + workbook id
    PreviewResult -> data-URI preview (or None) for one view

All of them serialize to the camelCase JSON shapes the browser client
expects via to_dict().
"""

import base64
from typing import Any, NamedTuple

from relay.errors import UpstreamShapeError


PREVIEW_MEDIA_TYPE = "image/png"


class Credential(NamedTuple):
    """Immutable bearer credential for one request. Never cached."""

    bearer_token: str
    site_id: str


class Node:
    """
    One project/folder in the remote hierarchy.

    Attributes:
        id:        Project id.
        name:      Display name.
        parent_id: Parent project id, or None for a top-level project.
        children:  Resolved child projects. Always a list, empty for a leaf.
        extra:     Remaining record fields, passed through on serialization.
    """

    def __init__(
        self,
        id: str,
        name: str,
        parent_id: str | None = None,
        extra: dict[str, Any] | None = None,
    ):
        self.id = id
        self.name = name
        self.parent_id = parent_id
        self.children: list["Node"] = []
        self.extra = extra or {}

    @classmethod
    def from_record(cls, record: dict) -> "Node":
        """
        Build a Node from one upstream project record.

        Raises:
            UpstreamShapeError: If the record has no id.
        """
        if not isinstance(record, dict) or not record.get("id"):
            raise UpstreamShapeError(f"Project record without an id: {record!r}")

        extra = {
            key: value
            for key, value in record.items()
            if key not in ("id", "name", "parentProjectId")
        }
        return cls(
            id=record["id"],
            name=record.get("name", ""),
            parent_id=record.get("parentProjectId"),
            extra=extra,
        )

    def attach_children(self, children: list["Node"]) -> None:
        """Attach the resolved child list (called once per node)."""
        self.children = list(children)

    def to_dict(self) -> dict:
        return {
            **self.extra,
            "id": self.id,
            "name": self.name,
            "parentId": self.parent_id,
            "children": [child.to_dict() for child in self.children],
        }

    def __repr__(self) -> str:
        return f"Node(id={self.id!r}, name={self.name!r}, children={len(self.children)})"


class ViewRef:
    """
    Reference to one view. Only view_id and workbook_id matter to the relay;
    everything else in the upstream record is opaque passthrough.
    """

    def __init__(self, view_id: str, workbook_id: str, extra: dict[str, Any] | None = None):
        self.view_id = view_id
        self.workbook_id = workbook_id
        self.extra = extra or {}

    @classmethod
    def from_record(cls, record: dict) -> "ViewRef":
        """
        Build a ViewRef from one upstream view record.

        Raises:
            UpstreamShapeError: If the view id or its workbook id is missing.
        """
        if not isinstance(record, dict):
            raise UpstreamShapeError(f"View record is not an object: {record!r}")

        view_id = record.get("id")
        workbook = record.get("workbook") or {}
        workbook_id = workbook.get("id") if isinstance(workbook, dict) else None
        if not view_id or not workbook_id:
            raise UpstreamShapeError(f"View record without id or workbook id: {record!r}")

        return cls(view_id=view_id, workbook_id=workbook_id, extra=dict(record))

    def to_dict(self) -> dict:
        return {**self.extra, "viewId": self.view_id, "workbookId": self.workbook_id}


class PreviewResult:
    """Preview image for one view. preview_image is None when the fetch failed."""

    def __init__(self, view_id: str, preview_image: str | None):
        self.view_id = view_id
        self.preview_image = preview_image

    @classmethod
    def from_bytes(cls, view_id: str, data: bytes) -> "PreviewResult":
        return cls(view_id, encode_data_uri(data))

    @classmethod
    def failed(cls, view_id: str) -> "PreviewResult":
        return cls(view_id, None)

    def to_dict(self) -> dict:
        return {"viewId": self.view_id, "previewImage": self.preview_image}


def encode_data_uri(data: bytes, media_type: str = PREVIEW_MEDIA_TYPE) -> str:
    """Encode raw image bytes as a base64 data URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"
