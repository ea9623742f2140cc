"""
Property translation between ServerState and the Resource Manager models.

Expand builds request bodies from local state; flatten maps a remote server
back onto local state. The two are not perfectly symmetric:

* the backup container URI is write-only, so flatten keeps the local value;
* a missing firewall block flattens to "Power BI disabled, no rules", while
  expand always sends a firewall block, even an empty one.
"""

from dataclasses import replace
from typing import FrozenSet, Optional, Tuple, Type, TypeVar

from plugins.reconcilers.analysis_services.models import (
    FirewallRule,
    IPv4FirewallRule,
    IPv4FirewallSettings,
    ResourceSku,
    Server,
    ServerAdministrators,
    ServerMutableProperties,
    ServerProperties,
    ServerState,
    ServerUpdateParameters,
)
from plugins.reconcilers.analysis_services.parse import parse_server_id
from validation import normalize_location

PropertiesT = TypeVar("PropertiesT", bound=ServerMutableProperties)


def expand_admin_users(state: ServerState) -> ServerAdministrators:
    return ServerAdministrators(members=sorted(state.admin_users))


def expand_firewall_settings(state: ServerState) -> IPv4FirewallSettings:
    rules = [
        IPv4FirewallRule(
            firewall_rule_name=rule.name,
            range_start=rule.range_start,
            range_end=rule.range_end,
        )
        for rule in sorted(state.ipv4_firewall_rules, key=lambda r: r.name)
    ]
    return IPv4FirewallSettings(
        firewall_rules=rules,
        enable_power_bi_service=state.enable_power_bi_service,
    )


def _expand_properties(
    state: ServerState, model: Type[PropertiesT]
) -> PropertiesT:
    properties = model(
        as_administrators=expand_admin_users(state),
        ipv4_firewall_settings=expand_firewall_settings(state),
    )
    # Unset optional values are omitted so the remote defaults apply
    if state.querypool_connection_mode:
        properties.querypool_connection_mode = state.querypool_connection_mode
    if state.backup_blob_container_uri:
        properties.backup_blob_container_uri = state.backup_blob_container_uri
    return properties


def expand_server_properties(state: ServerState) -> ServerProperties:
    return _expand_properties(state, ServerProperties)


def expand_server_mutable_properties(state: ServerState) -> ServerMutableProperties:
    return _expand_properties(state, ServerMutableProperties)


def expand_server(state: ServerState) -> Server:
    """Build the PUT body used to create a server."""
    return Server(
        name=state.name,
        location=normalize_location(state.location),
        sku=ResourceSku(name=state.sku),
        properties=expand_server_properties(state),
        tags=dict(state.tags),
    )


def expand_server_update(state: ServerState) -> ServerUpdateParameters:
    """Build the PATCH body used to update a server; never carries its address."""
    return ServerUpdateParameters(
        sku=ResourceSku(name=state.sku),
        properties=expand_server_mutable_properties(state),
        tags=dict(state.tags),
    )


def flatten_firewall_settings(
    properties: Optional[ServerMutableProperties],
) -> Tuple[bool, FrozenSet[FirewallRule]]:
    """Return (enable_power_bi_service, rules) for a server's properties."""
    if properties is None or properties.ipv4_firewall_settings is None:
        return False, frozenset()

    settings = properties.ipv4_firewall_settings
    enable_power_bi = bool(settings.enable_power_bi_service)

    rules = frozenset(
        FirewallRule(
            name=rule.firewall_rule_name or "",
            range_start=rule.range_start or "",
            range_end=rule.range_end or "",
        )
        for rule in settings.firewall_rules or []
    )
    return enable_power_bi, rules


def flatten_server(server: Server, prior: ServerState) -> ServerState:
    """
    Map a remote server onto local state.

    Args:
        server: The server as returned by Resource Manager.
        prior: The local state before the read. Supplies the write-only
            backup container URI and any field the remote omits.

    Returns:
        A new ServerState reflecting the remote server.
    """
    server_id = parse_server_id(server.id) if server.id else None

    state = replace(
        prior,
        name=server_id.name if server_id else prior.name,
        resource_group_name=(
            server_id.resource_group if server_id else prior.resource_group_name
        ),
        resource_id=server.id or prior.resource_id,
        tags=dict(server.tags or {}),
    )

    if server.location:
        state.location = normalize_location(server.location)

    if server.sku is not None:
        state.sku = server.sku.name

    properties = server.properties
    if properties is not None:
        administrators = properties.as_administrators
        if administrators is None or administrators.members is None:
            state.admin_users = frozenset()
        else:
            state.admin_users = frozenset(administrators.members)

        enable_power_bi, rules = flatten_firewall_settings(properties)
        state.enable_power_bi_service = enable_power_bi
        state.ipv4_firewall_rules = rules

        state.querypool_connection_mode = properties.querypool_connection_mode
        state.server_full_name = properties.server_full_name or ""

    return state
