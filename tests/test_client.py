"""Unit tests for the Analysis Services Resource Manager client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from config import AzureConfig
from plugins.reconcilers.analysis_services.client import AnalysisServicesClient
from plugins.reconcilers.analysis_services.errors import (
    ApiError,
    RemoteOperationError,
    ResourceNotFoundError,
)
from plugins.reconcilers.analysis_services.models import (
    ResourceSku,
    Server,
    ServerUpdateParameters,
)

RG = "acctestRG-aas"
NAME = "analysisservicestest"
SERVER_URL = (
    "https://management.azure.com/subscriptions/sub/resourceGroups/acctestRG-aas"
    "/providers/Microsoft.AnalysisServices/servers/analysisservicestest"
)
OPERATION_URL = "https://management.azure.com/operations/op-1"


def make_response(status, body=None, headers=None):
    """Async context manager yielding a fake aiohttp response."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.text = AsyncMock(return_value=json.dumps(body) if body is not None else "")
    context = MagicMock()
    context.__aenter__.return_value = response
    return context


def server_body(provisioning_state="Succeeded"):
    return {
        "id": SERVER_URL[len("https://management.azure.com") :],
        "name": NAME,
        "location": "westeurope",
        "sku": {"name": "S0"},
        "properties": {
            "provisioningState": provisioning_state,
            "serverFullName": "asazure://westeurope.asazure.windows.net/srv",
        },
    }


@pytest.fixture
def session():
    with patch(
        "plugins.reconcilers.analysis_services.client.aiohttp.ClientSession"
    ) as mock_session_cls:
        mock_session = MagicMock()
        mock_session_cls.return_value.__aenter__.return_value = mock_session
        yield mock_session


@pytest.fixture
def client():
    return AnalysisServicesClient(
        subscription_id="sub", access_token="token-abc", poll_interval=0
    )


class TestClientConstruction:
    """Tests for client construction and addressing."""

    def test_from_config(self):
        client = AnalysisServicesClient.from_config(
            AzureConfig(
                subscription_id="sub",
                access_token="t",
                resource_manager_endpoint="https://management.example.com/",
                api_version="2017-07-14",
                poll_interval=3,
            )
        )
        assert client.endpoint == "https://management.example.com"
        assert client.api_version == "2017-07-14"
        assert client.poll_interval == 3

    def test_server_url(self, client):
        assert client.server_url(RG, NAME) == SERVER_URL

    def test_headers_carry_bearer_token(self, client):
        assert client._get_headers()["Authorization"] == "Bearer token-abc"

    def test_no_token_no_authorization_header(self):
        client = AnalysisServicesClient(subscription_id="sub")
        assert "Authorization" not in client._get_headers()


@pytest.mark.asyncio
class TestGetDetails:
    """Tests for AnalysisServicesClient.get_details()."""

    async def test_get_details(self, client, session):
        session.request.return_value = make_response(200, server_body())

        server = await client.get_details(RG, NAME)

        assert isinstance(server, Server)
        assert server.sku.name == "S0"
        assert server.properties.server_full_name.startswith("asazure://")
        args, kwargs = session.request.call_args
        assert args == ("GET", SERVER_URL)
        assert kwargs["params"] == {"api-version": "2017-08-01"}
        assert kwargs["headers"]["Authorization"] == "Bearer token-abc"

    async def test_not_found(self, client, session):
        session.request.return_value = make_response(
            404,
            {"error": {"code": "ResourceNotFound", "message": "gone"}},
        )

        with pytest.raises(ResourceNotFoundError) as exc_info:
            await client.get_details(RG, NAME)

        assert exc_info.value.not_found
        assert exc_info.value.name == NAME
        assert exc_info.value.resource_group == RG

    async def test_api_error(self, client, session):
        session.request.return_value = make_response(
            403,
            {"error": {"code": "AuthorizationFailed", "message": "denied"}},
        )

        with pytest.raises(ApiError) as exc_info:
            await client.get_details(RG, NAME)

        assert exc_info.value.status == 403
        assert exc_info.value.code == "AuthorizationFailed"
        assert not exc_info.value.not_found
        assert "AuthorizationFailed: denied" in exc_info.value.message

    async def test_transport_error(self, client, session):
        session.request.side_effect = aiohttp.ClientConnectionError("refused")

        with pytest.raises(ApiError) as exc_info:
            await client.get_details(RG, NAME)

        assert exc_info.value.status == 0

    async def test_request_timeout(self, client, session):
        session.request.side_effect = asyncio.TimeoutError()

        with pytest.raises(ApiError) as exc_info:
            await client.get_details(RG, NAME)

        assert exc_info.value.status == 0
        assert "timed out" in exc_info.value.message

    async def test_non_json_body(self, client, session):
        response = make_response(502)
        response.__aenter__.return_value.text = AsyncMock(return_value="Bad Gateway")
        session.request.return_value = response

        with pytest.raises(ApiError) as exc_info:
            await client.get_details(RG, NAME)

        assert exc_info.value.status == 502


@pytest.mark.asyncio
class TestLongRunningOperations:
    """Tests for LongRunningOperation polling."""

    async def test_create_follows_async_operation(self, client, session):
        session.request.side_effect = [
            make_response(
                201,
                server_body("Provisioning"),
                {"Azure-AsyncOperation": OPERATION_URL},
            ),
            make_response(200, {"status": "InProgress"}),
            make_response(200, {"status": "Succeeded"}),
        ]
        server = Server(name=NAME, location="westeurope", sku=ResourceSku(name="S0"))

        operation = await client.create(RG, NAME, server)
        await operation.wait()

        calls = session.request.call_args_list
        assert calls[0].args == ("PUT", SERVER_URL)
        assert calls[0].kwargs["json"] == {
            "name": NAME,
            "location": "westeurope",
            "sku": {"name": "S0"},
        }
        assert [c.args for c in calls[1:]] == [
            ("GET", OPERATION_URL),
            ("GET", OPERATION_URL),
        ]

    async def test_async_operation_failure(self, client, session):
        session.request.side_effect = [
            make_response(201, {}, {"Azure-AsyncOperation": OPERATION_URL}),
            make_response(
                200,
                {
                    "status": "Failed",
                    "error": {"code": "QuotaExceeded", "message": "no capacity"},
                },
            ),
        ]
        operation = await client.create(RG, NAME, Server(name=NAME))

        with pytest.raises(RemoteOperationError) as exc_info:
            await operation.wait()

        assert exc_info.value.status == "Failed"
        assert "QuotaExceeded: no capacity" in exc_info.value.message
        assert exc_info.value.name == NAME

    async def test_update_follows_location(self, client, session):
        session.request.side_effect = [
            make_response(202, None, {"Location": OPERATION_URL}),
            make_response(202),
            make_response(200, server_body()),
        ]
        parameters = ServerUpdateParameters(sku=ResourceSku(name="S1"))

        operation = await client.update(RG, NAME, parameters)
        await operation.wait()

        calls = session.request.call_args_list
        assert calls[0].args == ("PATCH", SERVER_URL)
        assert calls[0].kwargs["json"] == {"sku": {"name": "S1"}}
        assert len(calls) == 3

    async def test_location_poll_failure(self, client, session):
        session.request.side_effect = [
            make_response(202, None, {"Location": OPERATION_URL}),
            make_response(500, {"error": {"code": "InternalError", "message": "x"}}),
        ]
        operation = await client.update(RG, NAME, ServerUpdateParameters())

        with pytest.raises(RemoteOperationError, match="InternalError"):
            await operation.wait()

    async def test_create_polls_provisioning_state(self, client, session):
        session.request.side_effect = [
            make_response(200, server_body("Provisioning")),
            make_response(200, server_body("Succeeded")),
        ]

        operation = await client.create(RG, NAME, Server(name=NAME))
        await operation.wait()

        assert session.request.call_args_list[1].args == ("GET", SERVER_URL)

    async def test_provisioning_failure(self, client, session):
        session.request.side_effect = [
            make_response(200, server_body("Provisioning")),
            make_response(200, server_body("Failed")),
        ]
        operation = await client.create(RG, NAME, Server(name=NAME))

        with pytest.raises(RemoteOperationError, match="'Failed'"):
            await operation.wait()

    async def test_delete_already_gone(self, client, session):
        session.request.return_value = make_response(404)

        operation = await client.delete(RG, NAME)
        await operation.wait()

        assert session.request.call_count == 1

    async def test_delete_location_not_found_is_done(self, client, session):
        session.request.side_effect = [
            make_response(202, None, {"Location": OPERATION_URL}),
            make_response(404),
        ]

        operation = await client.delete(RG, NAME)
        await operation.wait()

        assert session.request.call_args_list[0].args == ("DELETE", SERVER_URL)

    async def test_retry_after_honoured(self, client, session):
        session.request.side_effect = [
            make_response(
                202,
                None,
                {"Azure-AsyncOperation": OPERATION_URL, "Retry-After": "7"},
            ),
            make_response(200, {"status": "Succeeded"}),
        ]
        operation = await client.delete(RG, NAME)

        with patch(
            "plugins.reconcilers.analysis_services.client.asyncio.sleep",
            new=AsyncMock(),
        ) as mock_sleep:
            await operation.wait()

        mock_sleep.assert_awaited_once_with(7.0)
