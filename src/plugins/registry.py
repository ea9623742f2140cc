"""
Plugin Registry - Discovery and registration of reconciler plugins.

This module provides the central registry for reconciler plugins, handling
discovery, registration, and instantiation.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Optional, Type

from plugins.reconcilers.base import ReconcilerPlugin
from validation import validate_openapi_schema

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "no8s.reconcilers"


class PluginRegistry:
    """
    Central registry for reconciler plugins.

    Maps each resource type to the single reconciler that owns it.
    """

    def __init__(self):
        # Registered plugin classes (not instantiated)
        self._reconciler_plugins: Dict[str, Type[ReconcilerPlugin]] = {}

        # Cached plugin metadata to avoid repeated instantiation
        self._reconciler_plugin_info: Dict[str, Dict[str, Any]] = {}

        # Instantiated plugin instances
        self._reconciler_instances: Dict[str, ReconcilerPlugin] = {}

        # Mapping from resource type name to reconciler plugin name
        self._resource_type_to_reconciler: Dict[str, str] = {}

    def register_reconciler_plugin(self, plugin_class: Type[ReconcilerPlugin]) -> None:
        """
        Register a reconciler plugin class.

        Args:
            plugin_class: The ReconcilerPlugin subclass to register

        Raises:
            ValueError: If a resource type is already claimed by another
                reconciler, or a declared schema is invalid
        """
        temp_instance = plugin_class()
        name = temp_instance.name
        resource_types = temp_instance.resource_types
        schemas = temp_instance.resource_type_schemas()

        if name in self._reconciler_plugins:
            logger.warning(f"Overwriting existing reconciler plugin: {name}")

        # Check for resource type conflicts
        for rt in resource_types:
            existing = self._resource_type_to_reconciler.get(rt)
            if existing and existing != name:
                raise ValueError(
                    f"Resource type '{rt}' is already claimed by "
                    f"reconciler '{existing}'. Cannot register '{name}'."
                )

        for rt, schema in schemas.items():
            is_valid, error = validate_openapi_schema(schema)
            if not is_valid:
                raise ValueError(
                    f"Reconciler '{name}' declares an invalid schema for "
                    f"resource type '{rt}': {error}"
                )

        self._reconciler_plugins[name] = plugin_class
        self._reconciler_plugin_info[name] = {
            "name": name,
            "resource_types": resource_types,
        }

        for rt in resource_types:
            self._resource_type_to_reconciler[rt] = name

        logger.info(
            f"Registered reconciler plugin: {name} "
            f"(resource types: {', '.join(resource_types)})"
        )

    def get_reconciler_plugin(self, name: str) -> ReconcilerPlugin:
        """
        Get a reconciler plugin instance.

        Args:
            name: The reconciler plugin name

        Returns:
            A ReconcilerPlugin instance

        Raises:
            ValueError: If the reconciler name is not registered
        """
        if name not in self._reconciler_plugins:
            available = ", ".join(self._reconciler_plugins.keys()) or "none"
            raise ValueError(
                f"Unknown reconciler plugin: {name}. "
                f"Available reconcilers: {available}"
            )

        if name not in self._reconciler_instances:
            self._reconciler_instances[name] = self._reconciler_plugins[name]()
            logger.info(f"Instantiated reconciler plugin: {name}")

        return self._reconciler_instances[name]

    def list_reconciler_plugins(self) -> List[str]:
        """List all registered reconciler plugin names."""
        return list(self._reconciler_plugins.keys())

    def has_reconciler_for_resource_type(self, resource_type_name: str) -> bool:
        """Check if any reconciler handles the given resource type."""
        return resource_type_name in self._resource_type_to_reconciler

    def get_reconciler_for_resource_type(
        self, resource_type_name: str
    ) -> Optional[ReconcilerPlugin]:
        """
        Get the reconciler instance for a resource type.

        Args:
            resource_type_name: The resource type name

        Returns:
            A ReconcilerPlugin instance, or None if no reconciler handles it
        """
        reconciler_name = self._resource_type_to_reconciler.get(resource_type_name)
        if reconciler_name is None:
            return None
        return self.get_reconciler_plugin(reconciler_name)

    def get_reconciler_plugin_info(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Get information about a registered reconciler plugin.

        Args:
            name: The reconciler plugin name

        Returns:
            Dictionary with 'name' and 'resource_types', or None if not found
        """
        return self._reconciler_plugin_info.get(name)


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_plugins() -> None:
    """
    Register the built-in reconciler and discover any others installed
    via entry points.
    """
    registry = get_registry()

    from plugins.reconcilers.analysis_services import AnalysisServicesReconcilerPlugin

    registry.register_reconciler_plugin(AnalysisServicesReconcilerPlugin)

    discovered = entry_points(group=ENTRY_POINT_GROUP)
    for ep in discovered:
        try:
            reconciler_class = ep.load()
        except Exception as e:
            logger.warning(f"Could not load reconciler plugin {ep.name}: {e}")
            continue
        if reconciler_class is AnalysisServicesReconcilerPlugin:
            continue
        registry.register_reconciler_plugin(reconciler_class)
