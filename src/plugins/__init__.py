"""
Plugin system for the Analysis Services reconciler.

This package provides the reconciler plugin contract, the plugin registry,
and the Analysis Services server reconciler.
"""

from plugins.reconcilers.base import (
    ReconcilerPlugin,
    ReconcilerContext,
    ReconcileResult,
)
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "ReconcilerPlugin",
    "ReconcilerContext",
    "ReconcileResult",
    "PluginRegistry",
    "get_registry",
]
