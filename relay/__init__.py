"""
Tableau Relay - Core Package
==============================
Remote API access, project tree aggregation and preview fan-out.

    - client.py   : TableauClient, async REST client (httpx)
    - tree.py     : TreeAggregator, recursive project tree resolution
    - previews.py : PreviewCollector, concurrent preview images per view
    - export.py   : CSV -> .xlsx conversion for view exports
    - models.py   : Credential, Node, ViewRef, PreviewResult
    - errors.py   : RelayError hierarchy

Usage:
    from relay import TableauClient, TreeAggregator, Credential

    async with TableauClient(server_url) as client:
        tree = await TreeAggregator(client).build(Credential(token, site_id), "Sales")
"""

from relay.client import TableauClient
from relay.errors import (
    CycleDetected,
    DepthExceeded,
    InvalidFilter,
    MissingCredential,
    RelayError,
    RemoteUnavailable,
    UpstreamShapeError,
)
from relay.models import Credential, Node, PreviewResult, ViewRef
from relay.previews import PreviewCollector
from relay.tree import TreeAggregator

__all__ = [
    "TableauClient",
    "TreeAggregator",
    "PreviewCollector",
    "Credential",
    "Node",
    "ViewRef",
    "PreviewResult",
    "RelayError",
    "MissingCredential",
    "InvalidFilter",
    "RemoteUnavailable",
    "UpstreamShapeError",
    "CycleDetected",
    "DepthExceeded",
]
