"""Test fixtures shared by all tests."""

from collections.abc import Generator

import pytest

from kyma_inventory.task import TaskService, task_service_context


@pytest.fixture(name="task_service", autouse=True)
def task_service_fixture() -> Generator[TaskService, None, None]:
    """Install a task service for each test."""
    with task_service_context() as service:
        yield service
