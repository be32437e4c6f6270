"""Tests for the TaskServiceImpl."""

import asyncio
from typing import Any

import pytest

from kyma_inventory.task import task_service_context, get_task_service
from kyma_inventory.task.service import TaskServiceImpl


@pytest.fixture(name="service")
def service_fixture() -> TaskServiceImpl:
    """Fixture for creating a TaskServiceImpl instance."""
    return TaskServiceImpl()


async def test_background_task_completes(service: TaskServiceImpl) -> None:
    """Test that a finished task is no longer tracked."""

    async def work() -> Any:
        await asyncio.sleep(0.01)
        return "done"

    task = service.create_background_task(work(), name="work")
    assert service.get_num_background_tasks() == 1

    assert await task == "done"
    assert service.get_num_background_tasks() == 0


async def test_background_task_failure(service: TaskServiceImpl) -> None:
    """Test that a failed task is no longer tracked."""

    async def failing() -> Any:
        await asyncio.sleep(0.01)
        raise ValueError("Test error")

    task = service.create_background_task(failing())
    with pytest.raises(ValueError, match="Test error"):
        await task
    assert service.get_num_background_tasks() == 0


async def test_cancel_background_tasks(service: TaskServiceImpl) -> None:
    """Test that running background tasks are cancelled together."""

    async def forever() -> Any:
        await asyncio.sleep(100)

    tasks = [
        service.create_background_task(forever(), name=f"forever {i}")
        for i in range(3)
    ]
    assert service.get_num_background_tasks() == 3

    await service.cancel_background_tasks()
    assert all(task.cancelled() for task in tasks)
    assert service.get_num_background_tasks() == 0


async def test_cancel_without_background_tasks(service: TaskServiceImpl) -> None:
    await service.cancel_background_tasks()
    assert service.get_num_background_tasks() == 0


def test_task_service_context() -> None:
    """Test that a context installs its own service instance."""
    with task_service_context() as task_service:
        service1 = get_task_service()
        assert isinstance(service1, TaskServiceImpl)
        assert service1 is task_service
        assert get_task_service() is service1

        # Nested contexts restore the outer service on exit
        with task_service_context() as inner:
            assert get_task_service() is inner
        assert get_task_service() is service1

    with task_service_context() as task_service:
        assert get_task_service() is not service1
