"""
Analysis Services Models - Local desired state and Resource Manager wire models.

ServerState is the typed configuration record the reconciler works on. The
pydantic models mirror the JSON exchanged with the Resource Manager API.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from plugins.reconcilers.analysis_services.errors import ConfigurationError
from plugins.reconcilers.analysis_services.parse import parse_server_id
from validation import normalize_location, validate_server_config

# Fields that address the remote server; changing any of them forces a new server
IMMUTABLE_FIELDS = ("name", "resource_group_name", "location")

MUTABLE_FIELDS = (
    "sku",
    "admin_users",
    "enable_power_bi_service",
    "ipv4_firewall_rules",
    "querypool_connection_mode",
    "tags",
)


@dataclass(frozen=True)
class FirewallRule:
    """An IPv4 range allowed through the server firewall."""

    name: str
    range_start: str
    range_end: str

    def to_config(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "range_start": self.range_start,
            "range_end": self.range_end,
        }


@dataclass
class ServerState:
    """
    Desired (and last observed) state of an Analysis Services server.

    Collections that the remote side treats as unordered are frozensets, so
    their iteration order is not meaningful.
    """

    name: str
    resource_group_name: str
    location: str
    sku: str
    admin_users: FrozenSet[str] = frozenset()
    enable_power_bi_service: bool = False
    ipv4_firewall_rules: FrozenSet[FirewallRule] = frozenset()
    querypool_connection_mode: Optional[str] = None
    backup_blob_container_uri: Optional[str] = field(default=None, repr=False)
    tags: Dict[str, str] = field(default_factory=dict)

    # Computed by the remote system
    server_full_name: str = ""
    resource_id: str = ""

    @property
    def exists(self) -> bool:
        """Whether the state refers to a server known to exist remotely."""
        return bool(self.resource_id)

    @classmethod
    def for_resource_id(
        cls, resource_id: str, backup_blob_container_uri: Optional[str] = None
    ) -> "ServerState":
        """A state addressing an existing server, with unknown configuration."""
        server_id = parse_server_id(resource_id)
        return cls(
            name=server_id.name,
            resource_group_name=server_id.resource_group,
            location="",
            sku="",
            backup_blob_container_uri=backup_blob_container_uri,
            resource_id=resource_id,
        )

    @classmethod
    def from_config(cls, raw: Dict[str, Any]) -> "ServerState":
        """
        Build a ServerState from raw configuration input.

        Args:
            raw: Untyped configuration using the snake_case field names of
                the configuration surface.

        Returns:
            A validated ServerState with empty computed fields.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        is_valid, error = validate_server_config(raw)
        if not is_valid:
            raise ConfigurationError(
                f"Invalid Analysis Services Server configuration: {error}",
                name=raw.get("name") if isinstance(raw, dict) else None,
                resource_group=(
                    raw.get("resource_group_name") if isinstance(raw, dict) else None
                ),
            )

        return cls(
            name=raw["name"],
            resource_group_name=raw["resource_group_name"],
            location=normalize_location(raw["location"]),
            sku=raw["sku"],
            admin_users=frozenset(raw.get("admin_users", [])),
            enable_power_bi_service=raw.get("enable_power_bi_service", False),
            ipv4_firewall_rules=frozenset(
                FirewallRule(
                    name=rule["name"],
                    range_start=rule["range_start"],
                    range_end=rule["range_end"],
                )
                for rule in raw.get("ipv4_firewall_rule", [])
            ),
            querypool_connection_mode=raw.get("querypool_connection_mode"),
            backup_blob_container_uri=raw.get("backup_blob_container_uri"),
            tags=dict(raw.get("tags", {})),
        )

    def to_config(self) -> Dict[str, Any]:
        """Render the configurable fields back into raw configuration form."""
        result: Dict[str, Any] = {
            "name": self.name,
            "resource_group_name": self.resource_group_name,
            "location": self.location,
            "sku": self.sku,
            "admin_users": sorted(self.admin_users),
            "enable_power_bi_service": self.enable_power_bi_service,
            "ipv4_firewall_rule": [
                rule.to_config()
                for rule in sorted(self.ipv4_firewall_rules, key=lambda r: r.name)
            ],
            "tags": dict(self.tags),
        }
        if self.querypool_connection_mode:
            result["querypool_connection_mode"] = self.querypool_connection_mode
        if self.backup_blob_container_uri:
            result["backup_blob_container_uri"] = self.backup_blob_container_uri
        return result

    def to_outputs(self) -> Dict[str, Any]:
        """Computed fields, as persisted alongside the configuration."""
        return {"id": self.resource_id, "server_full_name": self.server_full_name}

    def with_outputs(self, outputs: Optional[Dict[str, Any]]) -> "ServerState":
        """Return a copy carrying previously persisted computed fields."""
        if not outputs:
            return self
        return replace(
            self,
            resource_id=outputs.get("id") or "",
            server_full_name=outputs.get("server_full_name") or "",
        )

    def requires_replacement(self, other: "ServerState") -> List[str]:
        """Names of immutable fields that differ between two states."""
        return [f for f in IMMUTABLE_FIELDS if getattr(self, f) != getattr(other, f)]

    def drift_from(self, observed: "ServerState") -> List[str]:
        """
        Names of mutable fields where the observed state differs from this one.

        An unset query pool connection mode accepts whatever the remote side
        defaulted it to.
        """
        drifted = []
        for name in MUTABLE_FIELDS:
            desired = getattr(self, name)
            if name == "querypool_connection_mode" and desired is None:
                continue
            if desired != getattr(observed, name):
                drifted.append(name)
        return drifted


# Resource Manager wire models


class WireModel(BaseModel):
    """Base for Resource Manager JSON bodies."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ResourceSku(WireModel):
    name: str
    tier: Optional[str] = None
    capacity: Optional[int] = None


class ServerAdministrators(WireModel):
    members: Optional[List[str]] = None


class IPv4FirewallRule(WireModel):
    firewall_rule_name: Optional[str] = Field(None, alias="firewallRuleName")
    range_start: Optional[str] = Field(None, alias="rangeStart")
    range_end: Optional[str] = Field(None, alias="rangeEnd")


class IPv4FirewallSettings(WireModel):
    firewall_rules: Optional[List[IPv4FirewallRule]] = Field(
        None, alias="firewallRules"
    )
    enable_power_bi_service: Optional[bool] = Field(
        None, alias="enablePowerBIService"
    )


class ServerMutableProperties(WireModel):
    """Properties that may be changed on an existing server."""

    as_administrators: Optional[ServerAdministrators] = Field(
        None, alias="asAdministrators"
    )
    backup_blob_container_uri: Optional[str] = Field(
        None, alias="backupBlobContainerUri"
    )
    ipv4_firewall_settings: Optional[IPv4FirewallSettings] = Field(
        None, alias="ipV4FirewallSettings"
    )
    querypool_connection_mode: Optional[str] = Field(
        None, alias="querypoolConnectionMode"
    )


class ServerProperties(ServerMutableProperties):
    """Full server properties, including read-only fields."""

    state: Optional[str] = None
    provisioning_state: Optional[str] = Field(None, alias="provisioningState")
    server_full_name: Optional[str] = Field(None, alias="serverFullName")


class Server(WireModel):
    """An Analysis Services server as known to Resource Manager."""

    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    sku: Optional[ResourceSku] = None
    tags: Optional[Dict[str, str]] = None
    properties: Optional[ServerProperties] = None


class ServerUpdateParameters(WireModel):
    """PATCH body for an existing server."""

    sku: Optional[ResourceSku] = None
    tags: Optional[Dict[str, str]] = None
    properties: Optional[ServerMutableProperties] = None
