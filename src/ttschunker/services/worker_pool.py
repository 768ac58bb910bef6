"""Bounded fan-out of synthesis tasks with ordered results.

A fixed set of ``max_concurrency`` worker coroutines pulls tasks from a
queue, so as soon as one call finishes the next queued task starts; there
are no fixed-size waves. Each outcome is written to the slot matching the
task's input position, so the result list needs no lock and no sort.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from ttschunker.errors import ErrorKind, ProviderError
from ttschunker.models import SynthesisFailure, SynthesisOutcome, SynthesisSuccess, SynthesisTask
from ttschunker.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

SynthesisCall = Callable[[SynthesisTask], Awaitable[bytes]]
OutcomeCallback = Callable[[SynthesisOutcome, int, int], None]


class BoundedWorkerPool:
    def __init__(
        self,
        max_concurrency: int = 3,
        *,
        abort_on_failure: bool = False,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.abort_on_failure = abort_on_failure
        self.retry_policy = retry_policy
        self.completed = 0
        self.total = 0
        self.in_flight = 0

    async def run(
        self,
        tasks: Sequence[SynthesisTask],
        call: SynthesisCall,
        on_outcome: OutcomeCallback | None = None,
    ) -> list[SynthesisOutcome]:
        """Run every task through *call* and return outcomes in input order.

        Per-task failures become ``SynthesisFailure`` entries and never stop
        siblings, unless ``abort_on_failure`` is set, in which case tasks not
        yet started are reported as cancelled. Cancelling this coroutine
        cancels all in-flight calls and drops the queue.
        """
        self.completed = 0
        self.total = len(tasks)
        self.in_flight = 0
        results: list[SynthesisOutcome | None] = [None] * len(tasks)
        if not tasks:
            return []

        queue: asyncio.Queue[tuple[int, SynthesisTask]] = asyncio.Queue()
        for position, task in enumerate(tasks):
            queue.put_nowait((position, task))
        aborted = asyncio.Event()

        async def worker(worker_id: int) -> None:
            while not aborted.is_set():
                try:
                    position, task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                self.in_flight += 1
                try:
                    outcome = await self._execute(task, call)
                finally:
                    self.in_flight -= 1
                results[position] = outcome
                self.completed += 1
                if not outcome.ok:
                    logger.warning(
                        f"Worker {worker_id}: segment {task.index} failed "
                        f"({outcome.error_kind.value}): {outcome.message}"
                    )
                    if self.abort_on_failure:
                        aborted.set()
                if on_outcome:
                    on_outcome(outcome, self.completed, self.total)

        workers = [
            asyncio.create_task(worker(i)) for i in range(min(self.max_concurrency, len(tasks)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        for position, task in enumerate(tasks):
            if results[position] is None:
                results[position] = SynthesisFailure(
                    index=task.index,
                    error_kind=ErrorKind.CANCELLED,
                    message="Not started: aborted after an earlier segment failed",
                )
        return results  # type: ignore[return-value]

    async def _execute(self, task: SynthesisTask, call: SynthesisCall) -> SynthesisOutcome:
        try:
            if self.retry_policy is not None:
                audio = await self.retry_policy.run(
                    lambda: call(task), description=f"synthesize segment {task.index}"
                )
            else:
                audio = await call(task)
        except ProviderError as e:
            return SynthesisFailure(index=task.index, error_kind=e.kind, message=e.message)
        except Exception as e:
            logger.error(f"Unexpected error for segment {task.index}: {e!s}", exc_info=True)
            return SynthesisFailure(
                index=task.index, error_kind=ErrorKind.PROVIDER_ERROR, message=str(e)
            )
        return SynthesisSuccess(index=task.index, audio=audio, byte_count=len(audio))
