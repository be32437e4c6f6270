"""Controller runtime package.

This package contains the machinery shared by all controllers: watches that
turn store events into keys, and a worker pool that reconciles those keys.
"""

from .controller import Controller, Reconciler, Result
from .source import Watch, for_kind, generation_changed, owned_by

__all__ = [
    "Controller",
    "Reconciler",
    "Result",
    "Watch",
    "for_kind",
    "generation_changed",
    "owned_by",
]
