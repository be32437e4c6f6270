"""Task tracking module for kyma-inventory.

This module provides a task tracking service that controllers use to run and
stop their watches and workers.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
