"""Asynchronous batched deletion pipeline.

Delete requests are accepted on the request path without touching storage.
A single collector task groups them per user and hands whole batches to a
pool of processor tasks, which tombstone the keys in bounded chunks.

Pipeline Diagram
================
::
    submit(DeleteTask)            ┌──────────────┐
    ─────────────────────────────▶│ ingress      │  bounded, put_nowait
      QueueFull → OverloadedError │ asyncio.Queue│
                                  └──────┬───────┘
                                         ▼
                                  ┌──────────────┐
                                  │ collector    │  user_id → [short_key, …]
                                  │ (one task)   │  flush on batch_size users
                                  └──────┬───────┘  or every batch_window
                                         ▼
                                  ┌──────────────┐
                                  │ flush queue  │  bounded
                                  └──────┬───────┘
                       ┌─────────────────┼─────────────────┐
                       ▼                 ▼                 ▼
                ┌────────────┐    ┌────────────┐    ┌────────────┐
                │ processor 1│    │ processor 2│ …  │ processor N│
                └─────┬──────┘    └─────┬──────┘    └─────┬──────┘
                      ▼                 ▼                 ▼
              storage.batch_mark_deleted(user_id, chunk ≤ sub_batch_size)

State Machine
=============
::
    IDLE ──start()──▶ RUNNING ──stop()──▶ STOPPING ──drained / timeout──▶ STOPPED

Key Behaviours
===============
- ``submit`` never awaits: a full ingress queue fails fast with OverloadedError.
- Once ``stop`` is called, ``submit`` fails with ShuttingDownError.
- Per user, keys keep their submission order; nothing is promised across users.
- Users of one batch run concurrently, at most ``worker_count * 2`` at a time.
- A processor finishes its whole batch before taking the next one.
- A failing chunk is logged and counted, never retried, and never stops other chunks.
- On shutdown the collector drains what is already queued, flushes it and
  closes the flush queue once. Work still pending when ``timeout`` expires
  is abandoned.

How to Use
===========
::
    pipeline = DeletionPipeline(storage, worker_count=4, batch_window=2.0)
    pipeline.start()
    pipeline.submit(DeleteTask(user_id="u1", short_keys=("aB3dE5fG",)))
    ...
    await pipeline.stop(timeout=5.0)
"""

import asyncio
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from prometheus_client import Counter, Gauge

from shortener.config import Settings
from shortener.enums import FlushReason, PipelineState
from shortener.exceptions import OverloadedError, ShuttingDownError
from shortener.storage.base import URLRepository

__all__ = ["DeleteTask", "DeletionPipeline"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

DELETE_TASKS_TOTAL = Counter(
    "shortener_delete_tasks_total",
    "Delete tasks offered to the pipeline",
    ["outcome"],
)
DELETE_CHUNKS_TOTAL = Counter(
    "shortener_delete_chunks_total",
    "Tombstone chunks applied to storage",
    ["status"],
)
DELETE_BATCHES_FLUSHED_TOTAL = Counter(
    "shortener_delete_batches_flushed_total",
    "Batches handed from the collector to the processors",
    ["reason"],
)
DELETE_INGRESS_DEPTH = Gauge(
    "shortener_delete_ingress_depth",
    "Delete tasks waiting in the ingress queue",
)


@dataclass(frozen=True, slots=True)
class DeleteTask:
    """Keys one user asked to delete in a single request."""

    user_id: str
    short_keys: tuple[str, ...]


def _chunks(keys: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(keys), size):
        yield keys[start : start + size]


class DeletionPipeline:
    def __init__(
        self,
        storage: URLRepository,
        *,
        worker_count: int = 4,
        batch_size: int = 100,
        batch_window: float = 2.0,
        sub_batch_size: int = 50,
        ingress_capacity: int = 10_000,
        flush_capacity: int = 100,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        for name, value in (
            ("worker_count", worker_count),
            ("batch_size", batch_size),
            ("sub_batch_size", sub_batch_size),
            ("ingress_capacity", ingress_capacity),
            ("flush_capacity", flush_capacity),
        ):
            if value < 1:
                raise ValueError(f"{name} must be >= 1, got {value}")
        if batch_window <= 0:
            raise ValueError(f"batch_window must be positive, got {batch_window}")

        self._storage = storage
        self._worker_count = worker_count
        self._batch_size = batch_size
        self._batch_window = batch_window
        self._sub_batch_size = sub_batch_size
        self._logger = logger or logging.getLogger("shortener.deletion")

        self._ingress: asyncio.Queue[DeleteTask] = asyncio.Queue(maxsize=ingress_capacity)
        self._flush_queue: asyncio.Queue[dict[str, list[str]] | None] = asyncio.Queue(maxsize=flush_capacity)
        self._stop_event = asyncio.Event()
        self._flush_closed = False
        self._collector: asyncio.Task[None] | None = None
        self._processors: list[asyncio.Task[None]] = []
        self._stopping: asyncio.Task[bool] | None = None
        self._state = PipelineState.IDLE

    @classmethod
    def from_settings(
        cls,
        storage: URLRepository,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> "DeletionPipeline":
        return cls(
            storage,
            worker_count=settings.DELETE_WORKER_COUNT,
            batch_size=settings.DELETE_BATCH_SIZE,
            batch_window=settings.DELETE_BATCH_WINDOW_SECONDS,
            sub_batch_size=settings.DELETE_SUB_BATCH_SIZE,
            ingress_capacity=settings.DELETE_INGRESS_CAPACITY,
            flush_capacity=settings.DELETE_FLUSH_CAPACITY,
            logger=logger,
        )

    @property
    def state(self) -> PipelineState:
        return self._state

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        """Spawn the collector and the processors. Must run inside an event loop."""
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"Cannot start pipeline in state '{self._state}'")

        self._collector = asyncio.create_task(self._collect(), name="delete-collector")
        self._processors = [
            asyncio.create_task(self._process(worker_id), name=f"delete-processor-{worker_id}")
            for worker_id in range(self._worker_count)
        ]
        self._state = PipelineState.RUNNING
        self._logger.info(
            f"Deletion pipeline started: workers={self._worker_count} batch_size={self._batch_size} "
            f"window={self._batch_window}s sub_batch={self._sub_batch_size}"
        )

    async def stop(self, timeout: float) -> bool:
        """Stop accepting tasks and wait up to ``timeout`` seconds for in-flight work.

        Concurrent and repeated calls share the first call's shutdown and its result.

        Returns:
            bool: True when every queued batch was applied before the deadline.
        """
        if self._state is PipelineState.IDLE:
            self._state = PipelineState.STOPPED
            return True
        if self._stopping is None:
            if self._state is PipelineState.STOPPED:
                return True
            self._state = PipelineState.STOPPING
            self._stop_event.set()
            self._stopping = asyncio.create_task(self._shutdown(timeout), name="delete-shutdown")
        return await asyncio.shield(self._stopping)

    async def _shutdown(self, timeout: float) -> bool:
        tasks = [task for task in (self._collector, *self._processors) if task is not None]
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self._logger.warning(
                f"Deletion pipeline stop timed out after {timeout}s; "
                f"abandoned {self._flush_queue.qsize()} queued batches"
            )

        self._state = PipelineState.STOPPED
        DELETE_INGRESS_DEPTH.set(0)
        self._logger.info("Deletion pipeline stopped")
        return not pending

    # ========================================================================
    # INGRESS
    # ========================================================================

    def submit(self, task: DeleteTask) -> None:
        """Enqueue ``task`` without waiting.

        Raises:
            ShuttingDownError: the pipeline is not running.
            OverloadedError: the ingress queue is full.
        """
        if self._state is not PipelineState.RUNNING:
            DELETE_TASKS_TOTAL.labels(outcome="shutting_down").inc()
            raise ShuttingDownError("Deletion pipeline is not accepting tasks")
        try:
            self._ingress.put_nowait(task)
        except asyncio.QueueFull as exc:
            DELETE_TASKS_TOTAL.labels(outcome="overloaded").inc()
            raise OverloadedError("Deletion queue is full, retry later") from exc
        DELETE_TASKS_TOTAL.labels(outcome="accepted").inc()
        DELETE_INGRESS_DEPTH.set(self._ingress.qsize())

    # ========================================================================
    # COLLECTOR
    # ========================================================================

    async def _collect(self) -> None:
        loop = asyncio.get_running_loop()
        pending: dict[str, list[str]] = {}
        deadline = loop.time() + self._batch_window
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        getter: asyncio.Future[DeleteTask] | None = None

        try:
            while not stop_waiter.done():
                if getter is None:
                    getter = asyncio.ensure_future(self._ingress.get())
                done, _ = await asyncio.wait(
                    {getter, stop_waiter},
                    timeout=max(deadline - loop.time(), 0),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if getter in done:
                    self._accumulate(pending, getter.result())
                    getter = None
                    if len(pending) >= self._batch_size:
                        await self._flush(pending, FlushReason.SIZE)
                        pending = {}
                        deadline = loop.time() + self._batch_window
                    continue

                if not done:
                    if pending:
                        await self._flush(pending, FlushReason.TICK)
                        pending = {}
                    deadline = loop.time() + self._batch_window

            # Shutdown: take whatever was accepted before stop() and hand it over.
            if getter is not None:
                getter.cancel()
                getter = None
            while True:
                try:
                    self._accumulate(pending, self._ingress.get_nowait())
                except asyncio.QueueEmpty:
                    break
            if pending:
                await self._flush(pending, FlushReason.SHUTDOWN)
            await self._close_flush_queue()
        finally:
            if getter is not None:
                getter.cancel()
            stop_waiter.cancel()

    def _accumulate(self, pending: dict[str, list[str]], task: DeleteTask) -> None:
        pending.setdefault(task.user_id, []).extend(task.short_keys)
        DELETE_INGRESS_DEPTH.set(self._ingress.qsize())

    async def _flush(self, pending: dict[str, list[str]], reason: FlushReason) -> None:
        keys = sum(len(items) for items in pending.values())
        self._logger.debug(f"Flushing delete batch: users={len(pending)} keys={keys} reason={reason}")
        DELETE_BATCHES_FLUSHED_TOTAL.labels(reason=reason.value).inc()
        await self._flush_queue.put(pending)

    async def _close_flush_queue(self) -> None:
        if self._flush_closed:
            return
        self._flush_closed = True
        for _ in range(self._worker_count):
            await self._flush_queue.put(None)

    # ========================================================================
    # PROCESSORS
    # ========================================================================

    async def _process(self, worker_id: int) -> None:
        while True:
            batch = await self._flush_queue.get()
            if batch is None:
                self._logger.debug(f"Delete processor {worker_id} exiting")
                return
            await self._apply(batch)

    async def _apply(self, batch: dict[str, list[str]]) -> None:
        semaphore = asyncio.Semaphore(self._worker_count * 2)

        async def run(user_id: str, short_keys: list[str]) -> None:
            async with semaphore:
                await self._delete_for_user(user_id, short_keys)

        await asyncio.gather(*(run(user_id, keys) for user_id, keys in batch.items()))

    async def _delete_for_user(self, user_id: str, short_keys: list[str]) -> None:
        for chunk in _chunks(short_keys, self._sub_batch_size):
            try:
                await self._storage.batch_mark_deleted(user_id, chunk)
            except Exception as exc:
                DELETE_CHUNKS_TOTAL.labels(status="error").inc()
                self._logger.error(f"Failed to delete {len(chunk)} URLs for user {user_id}: {exc}")
                continue
            DELETE_CHUNKS_TOTAL.labels(status="ok").inc()
