"""
.. include:: ../README.md
"""

__all__ = [
    "manifest",
    "store",
    "controller",
    "kyma_controller",
    "component_controller",
    "manager",
    "helm",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
