"""Kyma controller package.

This package contains the controller that creates, deletes and aggregates the
HelmComponents of each Kyma.
"""

from .controller import KymaController, KymaReconciler, construct_component

__all__ = ["KymaController", "KymaReconciler", "construct_component"]
