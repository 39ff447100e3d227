"""
Tableau Relay - Project Tree Aggregator
=========================================
Builds the nested project/folder tree for one root filter.

Algorithm:
    1. Fetch the top-level projects (one call). Failure here is fatal.
    2. For every node in the frontier, fetch its direct children
       concurrently (bounded by a semaphore).
    3. Recurse into non-empty child lists; a leaf gets [] and stops.
    4. A failed child listing is logged and treated as "no children".

Each branch carries its depth and the ids of its ancestors, so a cyclic
or runaway hierarchy fails fast with CycleDetected / DepthExceeded
instead of recursing forever. When any branch fails, the branches still
in flight are cancelled before the error propagates.

Order of the roots and of every child list is the order returned by the
remote API.
"""

import asyncio
import logging
from typing import Any

from relay.client import nodes_from_payload
from relay.errors import CycleDetected, DepthExceeded, RemoteUnavailable
from relay.models import Credential, Node

logger = logging.getLogger(__name__)


DEFAULT_MAX_DEPTH = 32
DEFAULT_MAX_CONCURRENCY = 8


class TreeAggregator:
    """
    Resolves a project tree through a remote client.

    The client only needs fetch_nodes_payload(parent_id, credential,
    root_filter) and fetch_nodes(parent_id, credential).

    Attributes:
        client:    Remote API client.
        max_depth: Deepest nesting level allowed (roots are level 1).
    """

    def __init__(
        self,
        client: Any,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client = client
        self.max_depth = max_depth
        self.max_concurrency = max_concurrency

    async def build(self, credential: Credential, root_filter: str | None = None) -> dict:
        """
        Fetch and fully resolve the tree under root_filter.

        Returns:
            {"rawData": <raw top-level payload>, "nestedProjects": [node dicts]}

        Raises:
            RemoteUnavailable: If the top-level listing fails.
            CycleDetected:     If a project is its own ancestor.
            DepthExceeded:     If nesting goes past max_depth.
        """
        payload = await self.client.fetch_nodes_payload(None, credential, root_filter)
        roots = nodes_from_payload(payload)
        await self.resolve(roots, credential)

        logger.info(
            "[TREE] Resolved %d top-level project(s) for filter %r",
            len(roots), root_filter,
        )
        return {
            "rawData": payload,
            "nestedProjects": [node.to_dict() for node in roots],
        }

    async def resolve(self, roots: list[Node], credential: Credential) -> list[Node]:
        """Attach children to every node under roots, in place."""
        semaphore = asyncio.Semaphore(self.max_concurrency)
        await _gather_or_cancel(
            self._resolve_node(node, credential, 1, frozenset(), semaphore)
            for node in roots
        )
        return roots

    async def _resolve_node(
        self,
        node: Node,
        credential: Credential,
        depth: int,
        ancestors: frozenset,
        semaphore: asyncio.Semaphore,
    ) -> None:
        path = ancestors | {node.id}
        children = await self._fetch_children(node, credential, semaphore)

        for child in children:
            if child.id in path:
                raise CycleDetected(child.id)

        if children:
            if depth >= self.max_depth:
                raise DepthExceeded(self.max_depth)
            await _gather_or_cancel(
                self._resolve_node(child, credential, depth + 1, path, semaphore)
                for child in children
            )

        node.attach_children(children)

    async def _fetch_children(
        self,
        node: Node,
        credential: Credential,
        semaphore: asyncio.Semaphore,
    ) -> list[Node]:
        """Direct children of node; [] when the listing fails."""
        try:
            async with semaphore:
                return await self.client.fetch_nodes(node.id, credential)
        except RemoteUnavailable as e:
            logger.warning("[TREE] Children of project %s unavailable: %s", node.id, e)
            return []


async def _gather_or_cancel(coros) -> None:
    """
    Run coros concurrently. If one raises (or the caller is cancelled),
    cancel the rest and wait for them to unwind before re-raising, so no
    branch keeps calling the remote API after the build has failed.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
