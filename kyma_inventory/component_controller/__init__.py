"""HelmComponent controller package.

This package contains the controller that advances each HelmComponent
through its provisioning lifecycle.
"""

from .controller import HelmComponentController, HelmComponentReconciler

__all__ = ["HelmComponentController", "HelmComponentReconciler"]
