"""Task tracking service for kyma-inventory.

Controllers run their watches and workers as long running background tasks.
This service keeps track of them so they can be cancelled together.
"""

import asyncio
import logging
from typing import Any, Coroutine, Set
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking long running asynchronous tasks."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new long running background task.

        Args:
            coro: The coroutine to run as a task
            name: Optional name of the task used in logs

        Returns:
            The created task
        """

    @abstractmethod
    async def cancel_background_tasks(self) -> None:
        """Cancel all background tasks and wait for them to finish."""

    @abstractmethod
    def get_num_background_tasks(self) -> int:
        """Get the number of running background tasks."""


class TaskServiceImpl(TaskService):
    """Service for tracking long running asynchronous tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._background_tasks: Set[asyncio.Task[Any]] = set()

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        """Callback when a task is done."""
        try:
            # This will raise any exception that occurred in the task
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)
        finally:
            self._background_tasks.discard(task)

    async def cancel_background_tasks(self) -> None:
        tasks = list(self._background_tasks)
        if not tasks:
            return
        _LOGGER.debug("Cancelling %d background tasks", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def get_num_background_tasks(self) -> int:
        return len(self._background_tasks)
