"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

import config
from config import FeaturesConfig, TimeoutsConfig
from plugins.reconcilers.analysis_services.errors import (
    ApiError,
    ResourceNotFoundError,
)
from plugins.reconcilers.analysis_services.models import (
    Server,
    ServerProperties,
    ServerUpdateParameters,
)
from plugins.reconcilers.analysis_services.parse import ServerId
from plugins.reconcilers.analysis_services.reconciler import ServerReconciler

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"


def server_resource_id(resource_group: str, name: str) -> str:
    return str(ServerId(SUBSCRIPTION_ID, resource_group, name))


class FakeOperation:
    """Long-running operation that completes after an optional delay."""

    def __init__(self, delay: float = 0):
        self.delay = delay

    async def wait(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)


class FakeServerClient:
    """
    In-memory stand-in for AnalysisServicesClient.

    Behaves like Resource Manager: the backup container URI is accepted but
    never returned, and an unset query pool mode defaults to "All".
    """

    def __init__(self):
        self.subscription_id = SUBSCRIPTION_ID
        self.servers: Dict[Tuple[str, str], Server] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.bodies: List[Dict[str, Any]] = []
        self.operation_delay = 0.0
        self.get_error: Optional[ApiError] = None
        self.omit_id = False

    def server_id(self, resource_group: str, name: str) -> ServerId:
        return ServerId(SUBSCRIPTION_ID, resource_group, name)

    def add_server(self, resource_group: str, name: str, **wire: Any) -> str:
        """Seed a server as if created out of band; returns its ID."""
        resource_id = server_resource_id(resource_group, name)
        body = {
            "id": resource_id,
            "name": name,
            "type": "Microsoft.AnalysisServices/servers",
            "location": "westeurope",
            "sku": {"name": "S0", "tier": "Standard"},
            "properties": {
                "provisioningState": "Succeeded",
                "serverFullName": f"asazure://westeurope.asazure.windows.net/{name}",
                "querypoolConnectionMode": "All",
            },
        }
        body.update(wire)
        self.servers[(resource_group, name)] = Server.model_validate(body)
        return resource_id

    def write_count(self) -> int:
        return len([c for c in self.calls if c[0] != "get"])

    async def get_details(self, resource_group: str, name: str) -> Server:
        self.calls.append(("get", resource_group, name))
        if self.get_error is not None:
            raise self.get_error
        server = self.servers.get((resource_group, name))
        if server is None:
            raise ResourceNotFoundError(
                f"Analysis Services Server {name!r} (Resource Group "
                f"{resource_group!r}) was not found",
                name=name,
                resource_group=resource_group,
            )
        result = server.model_copy(deep=True)
        if self.omit_id:
            result.id = None
        return result

    async def create(
        self, resource_group: str, name: str, server: Server
    ) -> FakeOperation:
        self.calls.append(("create", resource_group, name))
        self.bodies.append(server.to_wire())

        stored = server.model_copy(deep=True)
        stored.id = server_resource_id(resource_group, name)
        properties = stored.properties or ServerProperties()
        properties.backup_blob_container_uri = None
        properties.provisioning_state = "Succeeded"
        properties.server_full_name = (
            f"asazure://{stored.location}.asazure.windows.net/{name}"
        )
        if properties.querypool_connection_mode is None:
            properties.querypool_connection_mode = "All"
        stored.properties = properties
        self.servers[(resource_group, name)] = stored
        return FakeOperation(self.operation_delay)

    async def update(
        self, resource_group: str, name: str, parameters: ServerUpdateParameters
    ) -> FakeOperation:
        self.calls.append(("update", resource_group, name))
        self.bodies.append(parameters.to_wire())

        stored = self.servers[(resource_group, name)]
        if parameters.sku is not None:
            stored.sku = parameters.sku
        if parameters.tags is not None:
            stored.tags = dict(parameters.tags)
        changes = parameters.properties
        if changes is not None:
            properties = stored.properties or ServerProperties()
            if changes.as_administrators is not None:
                properties.as_administrators = changes.as_administrators
            if changes.ipv4_firewall_settings is not None:
                properties.ipv4_firewall_settings = changes.ipv4_firewall_settings
            if changes.querypool_connection_mode is not None:
                properties.querypool_connection_mode = (
                    changes.querypool_connection_mode
                )
            stored.properties = properties
        return FakeOperation(self.operation_delay)

    async def delete(self, resource_group: str, name: str) -> FakeOperation:
        self.calls.append(("delete", resource_group, name))
        self.servers.pop((resource_group, name), None)
        return FakeOperation(self.operation_delay)


@pytest.fixture(autouse=True)
def fresh_config():
    """Keep the configuration singleton from leaking between tests."""
    config.reset_config()
    yield
    config.reset_config()


@pytest.fixture
def fake_client():
    return FakeServerClient()


@pytest.fixture
def reconciler(fake_client):
    return ServerReconciler(
        fake_client, timeouts=TimeoutsConfig(), features=FeaturesConfig()
    )


@pytest.fixture
def server_config():
    """Minimal valid server configuration."""
    return {
        "name": "analysisservicestest",
        "resource_group_name": "acctestRG-aas",
        "location": "West Europe",
        "sku": "S0",
        "admin_users": ["alice@example.com"],
    }


@pytest.fixture
def sample_resource(server_config):
    """Sample operator resource record for an Analysis Services server."""
    return {
        "id": 1,
        "name": "test-server",
        "resource_type_name": "AnalysisServicesServer",
        "resource_type_version": "v1",
        "spec": dict(server_config),
        "metadata": {},
        "outputs": {},
        "status": "pending",
        "status_message": None,
        "generation": 1,
        "observed_generation": 0,
        "retry_count": 0,
        "last_reconcile_time": None,
        "next_reconcile_time": None,
        "deleted_at": None,
    }
