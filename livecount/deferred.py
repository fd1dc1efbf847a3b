"""
Deferred execution.

A Deferrer receives DeferredJob objects for create/update work and runs the
given handler later, somewhere else. Delivery is at-least-once with no
ordering guarantee; retries belong to the facility, never to livecount.

ThreadPoolDeferrer is the in-process implementation. An external task queue
adapter would serialize job.model_dump_json() and, on the worker, call
Counters.perform(payload).
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Protocol, Set, runtime_checkable

from prometheus_client import Counter

from livecount.events import DeferredJob

logger = logging.getLogger(__name__)

# Prometheus metrics
deferred_jobs_submitted = Counter(
    'livecount_deferred_jobs_total',
    'Total counter executions handed to a deferrer',
    ['counter']
)

deferred_failures = Counter(
    'livecount_deferred_failures_total',
    'Total deferred counter executions that raised',
    ['counter']
)

JobHandler = Callable[[DeferredJob], Any]


@runtime_checkable
class Deferrer(Protocol):
    def submit(self, job: DeferredJob, handler: JobHandler) -> Any:
        ...


class ThreadPoolDeferrer:
    """
    Runs deferred jobs on a thread pool

    Failures are logged and counted; they are not retried. Only pending
    futures are kept; each one is released by its done callback.
    """

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "livecount"):
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Number of submitted jobs not finished yet"""
        with self._lock:
            return len(self._pending)

    def submit(self, job: DeferredJob, handler: JobHandler) -> Future:
        future = self.executor.submit(handler, job)
        with self._lock:
            self._pending.add(future)
        # Runs immediately if the job already finished
        future.add_done_callback(lambda f: self._on_done(job, f))
        deferred_jobs_submitted.labels(counter=job.counter).inc()
        return future

    def _on_done(self, job: DeferredJob, future: Future):
        with self._lock:
            self._pending.discard(future)

        if future.cancelled():
            logger.warning(f"Deferred job for '{job.counter}' cancelled")
            return

        error = future.exception()
        if error is not None:
            deferred_failures.labels(counter=job.counter).inc()
            logger.error(
                f"Deferred job for '{job.counter}' failed "
                f"(entity {job.event.entity_type}#{job.event.attributes.get('id')}): {error}",
                exc_info=error
            )

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted jobs; True if none is left pending"""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)
