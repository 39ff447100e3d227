"""
Tableau Relay - Preview Fan-out Collector
===========================================
Fetches one preview image per view concurrently and joins the results
back to the view list by view id.

    views  = await client.list_views(credential, "Sales")    # fatal on failure
    images = await collector.collect(views, credential)      # never fatal

Guarantees:
    - len(images) == len(views), images[i].view_id == views[i].view_id
    - any failed, timed-out or cancelled fetch yields previewImage None
    - at most max_concurrency preview requests are in flight
    - the whole batch is bounded by batch_timeout; stragglers are
      cancelled and reported as None
"""

import asyncio
import logging
from typing import Any

from relay.errors import RemoteUnavailable
from relay.models import Credential, PreviewResult, ViewRef

logger = logging.getLogger(__name__)


DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_BATCH_TIMEOUT = 60.0


class PreviewCollector:
    """
    Fan-out/fan-in of preview image requests.

    Attributes:
        client:          Remote API client (list_views, fetch_preview).
        max_concurrency: Cap on in-flight preview requests.
        batch_timeout:   Seconds to wait for the whole batch, or None.
    """

    def __init__(
        self,
        client: Any,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        batch_timeout: float | None = DEFAULT_BATCH_TIMEOUT,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client = client
        self.max_concurrency = max_concurrency
        self.batch_timeout = batch_timeout

    async def run(self, credential: Credential, root_filter: str | None = None) -> dict:
        """
        List the views under root_filter and collect their previews.

        Returns:
            {"views": [view dicts], "images": [preview dicts]}

        Raises:
            RemoteUnavailable: If the view listing itself fails.
        """
        views = await self.client.list_views(credential, root_filter)
        images = await self.collect(views, credential)
        return {
            "views": [view.to_dict() for view in views],
            "images": [image.to_dict() for image in images],
        }

    async def collect(self, views: list[ViewRef], credential: Credential) -> list[PreviewResult]:
        """Fetch every preview; results follow the order of views."""
        if not views:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.ensure_future(self._fetch_one(view, credential, semaphore))
            for view in views
        ]
        done, pending = await asyncio.wait(tasks, timeout=self.batch_timeout)

        if pending:
            logger.warning(
                "[PREVIEW] Batch deadline of %ss reached, %d preview(s) cancelled",
                self.batch_timeout, len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for view, task in zip(views, tasks):
            if task in done:
                results.append(task.result())
            else:
                results.append(PreviewResult.failed(view.view_id))

        failed = sum(1 for r in results if r.preview_image is None)
        logger.info("[PREVIEW] Collected %d preview(s), %d failed", len(results), failed)
        return results

    async def _fetch_one(
        self,
        view: ViewRef,
        credential: Credential,
        semaphore: asyncio.Semaphore,
    ) -> PreviewResult:
        try:
            async with semaphore:
                data = await self.client.fetch_preview(
                    credential.site_id, view.workbook_id, view.view_id, credential
                )
        except RemoteUnavailable as e:
            logger.warning("[PREVIEW] Preview for view %s unavailable: %s", view.view_id, e)
            return PreviewResult.failed(view.view_id)
        except Exception:
            logger.exception("[PREVIEW] Unexpected error fetching preview for view %s", view.view_id)
            return PreviewResult.failed(view.view_id)
        return PreviewResult.from_bytes(view.view_id, data)
