"""Bounded-concurrency batch generation with progress reporting and cancellation."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence
from uuid import uuid4

from storybook_observability import observe_batch, track_running_jobs
from storybook_providers import classify_generation_error
from storybook_schemas import BatchProgress, BatchReport, GenerationFailure, GenerationSuccess, Page
from storybook_workflow import NotFoundError

logger = logging.getLogger(__name__)
SERVICE_NAME = "orchestrator"

MAX_CONCURRENT_GENERATIONS = 3

Job = Callable[[Any], Awaitable[GenerationSuccess | GenerationFailure]]
ProgressCallback = Callable[[BatchProgress], Any]


def pages_needing_illustration(pages: Iterable[Page]) -> list[Page]:
    """Pages without an illustration, in page order.

    A page whose illustration exists but whose sketch failed is left out; it is
    retried with a sketch-only job so the persisted illustration is kept.
    """

    return sorted(
        (page for page in pages if not page.has_illustration),
        key=lambda page: page.page_number,
    )


class BatchGenerator:
    """Runs ``job`` over a FIFO queue with at most ``concurrency_limit`` in flight.

    Cancellation stops new items from starting; jobs already running finish
    and their outcomes are reported. A job raising never affects its siblings.
    """

    def __init__(
        self,
        job: Job,
        concurrency_limit: int = MAX_CONCURRENT_GENERATIONS,
        on_progress: Optional[ProgressCallback] = None,
        *,
        batch_id: Optional[str] = None,
        service_name: str = SERVICE_NAME,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.batch_id = batch_id or str(uuid4())
        self._job = job
        self._limit = concurrency_limit
        self._on_progress = on_progress
        self._service_name = service_name
        self._cancelled = False
        self._running: list[str] = []
        self._report = BatchReport(batch_id=self.batch_id, total=0)

    @property
    def cancel_requested(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info("Batch cancellation requested", extra={"batch_id": self.batch_id})
        self._cancelled = True

    def progress(self) -> BatchProgress:
        return BatchProgress(
            total=self._report.total,
            completed=self._report.completed,
            failed=self._report.failed,
            running_ids=list(self._running),
            cancel_requested=self._cancelled,
        )

    @property
    def report(self) -> BatchReport:
        return self._report

    async def _emit_progress(self) -> None:
        if self._on_progress is None:
            return
        try:
            result = self._on_progress(self.progress())
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Progress listener failed", extra={"batch_id": self.batch_id})

    async def _worker(self, queue: deque[Any]) -> None:
        while queue and not self._cancelled:
            item = queue.popleft()
            item_id = str(getattr(item, "id", item))
            self._running.append(item_id)
            track_running_jobs(self._service_name, 1)
            try:
                outcome = await self._job(item)
            except Exception as exc:  # noqa: BLE001 - one failing job never stops the batch
                logger.warning(
                    "Batch job raised",
                    extra={"batch_id": self.batch_id, "entity_id": item_id, "error": str(exc)},
                )
                outcome = classify_generation_error(exc).to_failure(entity_id=item_id)
            finally:
                self._running.remove(item_id)
                track_running_jobs(self._service_name, -1)

            self._report.outcomes[item_id] = outcome
            if isinstance(outcome, GenerationSuccess):
                self._report.completed += 1
            else:
                self._report.failed += 1
            await self._emit_progress()

    async def run(self, items: Sequence[Any]) -> BatchReport:
        queue: deque[Any] = deque(items)
        self._report = BatchReport(batch_id=self.batch_id, total=len(queue))
        logger.info(
            "Batch started",
            extra={"batch_id": self.batch_id, "total": self._report.total, "limit": self._limit},
        )

        workers = [
            asyncio.create_task(self._worker(queue))
            for _ in range(min(self._limit, len(queue)))
        ]
        if workers:
            await asyncio.gather(*workers)

        self._report.cancelled = self._cancelled
        observe_batch(self._report, service_name=self._service_name)
        logger.info(
            "Batch finished",
            extra={
                "batch_id": self.batch_id,
                "completed": self._report.completed,
                "failed": self._report.failed,
                "cancelled": self._report.cancelled,
            },
        )
        return self._report


@dataclass(slots=True)
class BatchHandle:
    generator: BatchGenerator
    project_id: str
    kind: str
    task: Optional[asyncio.Task[BatchReport]] = None
    error: Optional[str] = None

    @property
    def state(self) -> str:
        if self.task is None or not self.task.done():
            return "cancelling" if self.generator.cancel_requested else "running"
        if self.error:
            return "error"
        return "cancelled" if self.generator.report.cancelled else "finished"

    def snapshot(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "batch_id": self.generator.batch_id,
            "project_id": self.project_id,
            "kind": self.kind,
            "state": self.state,
            "progress": self.generator.progress().model_dump(mode="json"),
        }
        if self.task is not None and self.task.done() and not self.error:
            payload["report"] = self.generator.report.model_dump(mode="json")
        if self.error:
            payload["error"] = self.error
        return payload


class BatchRegistry:
    """Tracks background batches by id so callers can poll and cancel them."""

    def __init__(self) -> None:
        self._handles: dict[str, BatchHandle] = {}

    def start(
        self,
        generator: BatchGenerator,
        runner: Awaitable[BatchReport],
        *,
        project_id: str,
        kind: str,
    ) -> BatchHandle:
        handle = BatchHandle(generator=generator, project_id=project_id, kind=kind)
        handle.task = asyncio.ensure_future(runner)
        handle.task.add_done_callback(lambda task: self._finished(handle, task))
        self._handles[generator.batch_id] = handle
        return handle

    def _finished(self, handle: BatchHandle, task: asyncio.Task[BatchReport]) -> None:
        if task.cancelled():
            handle.error = "Batch task was cancelled"
            return
        exc = task.exception()
        if exc is not None:
            handle.error = str(exc) or type(exc).__name__
            logger.error(
                "Batch task crashed",
                extra={"batch_id": handle.generator.batch_id, "error": handle.error},
            )

    def get(self, batch_id: str) -> BatchHandle:
        handle = self._handles.get(batch_id)
        if handle is None:
            raise NotFoundError("Batch", batch_id)
        return handle

    def cancel(self, batch_id: str) -> BatchHandle:
        handle = self.get(batch_id)
        handle.generator.cancel()
        return handle

    def active_for(self, project_id: str) -> list[BatchHandle]:
        return [
            handle
            for handle in self._handles.values()
            if handle.project_id == project_id and handle.state in {"running", "cancelling"}
        ]


__all__ = [
    "BatchGenerator",
    "BatchHandle",
    "BatchRegistry",
    "MAX_CONCURRENT_GENERATIONS",
    "pages_needing_illustration",
]
