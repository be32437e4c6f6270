"""Controller runtime driving a reconciler from store events.

A controller feeds the keys produced by its watches into a work queue and runs
a bounded pool of workers that pass each key to the reconciler. The outcome of
a pass decides when the key is seen again:

- An exception requeues the key under the rate limiter (exponential backoff
  combined with a global token bucket), forever.
- A `TransientError` requeues the key after the fixed delay it carries.
- A `Result` with `requeue_after` requeues the key after that delay.
- Otherwise the key is dropped until the next event.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import logging

from kyma_inventory.config import ControllerConfig
from kyma_inventory.exceptions import TransientError
from kyma_inventory.manifest import NamedResource
from kyma_inventory.store import Store
from kyma_inventory.task import get_task_service
from kyma_inventory.workqueue import QueueShutDown, WorkQueue, default_rate_limiter

from .source import Watch

__all__ = ["Controller", "Reconciler", "Result"]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Result:
    """Outcome of a successful reconcile pass."""

    requeue_after: float = 0.0
    """Seconds until the key should be reconciled again, zero for never."""


class Reconciler(ABC):
    """Moves the state of one object closer to its desired state."""

    @abstractmethod
    async def reconcile(self, resource_id: NamedResource) -> Result:
        """Run one reconcile pass for the object."""


class Controller:
    """Runs a reconciler for the keys produced by a set of watches."""

    def __init__(
        self,
        name: str,
        store: Store,
        reconciler: Reconciler,
        watches: list[Watch],
        config: ControllerConfig,
    ) -> None:
        """Initialize the controller.

        Args:
            name: Name of the controller used in logs and task names
            store: The store to watch for changes
            reconciler: The reconciler invoked for each key
            watches: Sources of keys to reconcile
            config: The configuration for the controller
        """
        if config.max_concurrent_reconciles < 1:
            raise ValueError("max_concurrent_reconciles must be at least 1")
        self.name = name
        self._store = store
        self._reconciler = reconciler
        self._watches = watches
        self._config = config
        self._queue: WorkQueue[NamedResource] = WorkQueue(
            default_rate_limiter(config.rate_limiter), name=name
        )
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def queue(self) -> WorkQueue[NamedResource]:
        return self._queue

    def is_idle(self) -> bool:
        """Return True if no key is queued, in progress or scheduled."""
        return self._queue.is_idle()

    def enqueue(self, resource_id: NamedResource) -> None:
        """Request a reconcile pass for the key."""
        self._queue.add(resource_id)

    async def start(self) -> None:
        """Start the watches and the workers."""
        if self._tasks:
            return
        _LOGGER.info(
            "Starting controller %s with %d workers",
            self.name,
            self._config.max_concurrent_reconciles,
        )
        task_service = get_task_service()
        for watch in self._watches:
            self._tasks.append(
                task_service.create_background_task(
                    self._watch(watch), name=f"{self.name} watch {watch.kind}"
                )
            )
        for i in range(self._config.max_concurrent_reconciles):
            self._tasks.append(
                task_service.create_background_task(
                    self._worker(), name=f"{self.name} worker {i}"
                )
            )

    async def close(self) -> None:
        """Stop the watches and workers, cancelling any pass in progress."""
        _LOGGER.info("Closing controller %s, cancelling tasks", self.name)
        self._queue.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _watch(self, watch: Watch) -> None:
        _LOGGER.debug("Controller %s watching %s objects", self.name, watch.kind)
        async for event in self._store.watch(watch.kind):
            for resource_id in watch.requests(event):
                _LOGGER.debug(
                    "Controller %s enqueue %s for %s %s",
                    self.name,
                    resource_id,
                    event.type,
                    event.resource_id,
                )
                self._queue.add(resource_id)

    async def _worker(self) -> None:
        while True:
            try:
                resource_id = await self._queue.get()
            except QueueShutDown:
                return
            try:
                await self.process(resource_id)
            finally:
                self._queue.done(resource_id)

    async def process(self, resource_id: NamedResource) -> None:
        """Run one reconcile pass for the key and schedule what comes next."""
        try:
            if self._config.reconcile_timeout is not None:
                async with asyncio.timeout(self._config.reconcile_timeout):
                    result = await self._reconciler.reconcile(resource_id)
            else:
                result = await self._reconciler.reconcile(resource_id)
        except TransientError as err:
            _LOGGER.warning(
                "Reconcile %s failed, retry in %ss: %s",
                resource_id,
                err.requeue_after,
                err,
            )
            self._queue.forget(resource_id)
            self._queue.add_after(resource_id, err.requeue_after)
            return
        except TimeoutError:
            _LOGGER.error(
                "Reconcile %s timed out after %ss",
                resource_id,
                self._config.reconcile_timeout,
            )
            self._queue.add_rate_limited(resource_id)
            return
        except Exception as err:
            _LOGGER.error(
                "Reconcile %s failed (attempt %d): %s: %s",
                resource_id,
                self._queue.num_requeues(resource_id) + 1,
                type(err).__name__,
                err,
            )
            self._queue.add_rate_limited(resource_id)
            return

        self._queue.forget(resource_id)
        if result.requeue_after > 0:
            _LOGGER.debug(
                "Reconcile %s requeue after %ss", resource_id, result.requeue_after
            )
            self._queue.add_after(resource_id, result.requeue_after)
