"""
Analysis Services Client - Resource Manager REST client for servers.

Issues server requests against the Resource Manager API and tracks
asynchronous writes with a long-running-operation poller.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from config import AzureConfig
from plugins.reconcilers.analysis_services.errors import (
    ApiError,
    RemoteOperationError,
    ResourceNotFoundError,
)
from plugins.reconcilers.analysis_services.models import Server, ServerUpdateParameters
from plugins.reconcilers.analysis_services.parse import ServerId

logger = logging.getLogger(__name__)

TERMINAL_SUCCESS = "succeeded"
TERMINAL_FAILURE = ("failed", "canceled", "cancelled")

Response = Tuple[int, Dict[str, str], Any]


def _error_details(body: Any) -> Tuple[Optional[str], Optional[str]]:
    """Extract (code, message) from a Resource Manager error body."""
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        return error.get("code"), error.get("message")
    return None, None


class LongRunningOperation:
    """
    Handle on an asynchronous Resource Manager write.

    Follows the Azure-AsyncOperation header when present, then the
    Location header, and finally the resource's own provisioning state.
    """

    def __init__(
        self,
        client: "AnalysisServicesClient",
        operation: str,
        resource_url: str,
        response: Response,
        name: str,
        resource_group: str,
    ):
        self._client = client
        self.operation = operation
        self.resource_url = resource_url
        self.status, self.headers, self.body = response
        self.name = name
        self.resource_group = resource_group

    @property
    def async_operation_url(self) -> Optional[str]:
        return self.headers.get("azure-asyncoperation")

    @property
    def location_url(self) -> Optional[str]:
        return self.headers.get("location")

    def _retry_after(self, headers: Dict[str, str]) -> float:
        try:
            return float(headers.get("retry-after", self._client.poll_interval))
        except ValueError:
            return self._client.poll_interval

    async def wait(self) -> None:
        """
        Block until the operation reaches a terminal state.

        Raises:
            RemoteOperationError: If the operation fails or is cancelled.
            ApiError: If polling itself fails.
        """
        if self.async_operation_url:
            await self._poll_async_operation(self.async_operation_url)
        elif self.location_url and self.status == 202:
            await self._poll_location(self.location_url)
        elif self.operation != "delete":
            await self._poll_provisioning_state(self.body)

        logger.info(
            f"{self.operation.capitalize()} of Analysis Services Server "
            f"{self.name!r} (Resource Group {self.resource_group!r}) completed"
        )

    def _failed(self, status: str, body: Any) -> RemoteOperationError:
        code, message = _error_details(body)
        detail = f": {code}: {message}" if code or message else ""
        return RemoteOperationError(
            f"{self.operation.capitalize()} of Analysis Services Server "
            f"{self.name!r} (Resource Group {self.resource_group!r}) "
            f"finished with status {status!r}{detail}",
            status=status,
            name=self.name,
            resource_group=self.resource_group,
        )

    async def _poll_async_operation(self, url: str) -> None:
        headers = self.headers
        while True:
            await asyncio.sleep(self._retry_after(headers))
            status, headers, body = await self._client._request("GET", url)
            self._client._raise_for_status(
                status, body, self.name, self.resource_group
            )

            op_status = (body or {}).get("status", "")
            if op_status.lower() == TERMINAL_SUCCESS:
                return
            if op_status.lower() in TERMINAL_FAILURE:
                raise self._failed(op_status, body)

            logger.debug(
                f"{self.operation.capitalize()} of {self.name!r} status: "
                f"{op_status}, waiting..."
            )

    async def _poll_location(self, url: str) -> None:
        headers = self.headers
        while True:
            await asyncio.sleep(self._retry_after(headers))
            status, headers, body = await self._client._request("GET", url)

            if status == 202:
                logger.debug(f"{self.operation.capitalize()} of {self.name!r} pending")
                continue
            if status == 404 and self.operation == "delete":
                return
            if status >= 400:
                raise self._failed(str(status), body)
            return

    async def _poll_provisioning_state(self, body: Any) -> None:
        headers = self.headers
        while True:
            properties = (body or {}).get("properties") or {}
            state = properties.get("provisioningState") or TERMINAL_SUCCESS
            if state.lower() == TERMINAL_SUCCESS:
                return
            if state.lower() in TERMINAL_FAILURE:
                raise self._failed(state, body)

            logger.debug(
                f"Analysis Services Server {self.name!r} provisioning state: {state}"
            )
            await asyncio.sleep(self._retry_after(headers))
            status, headers, body = await self._client._request(
                "GET", self.resource_url, params=self._client._params()
            )
            self._client._raise_for_status(
                status, body, self.name, self.resource_group
            )


class AnalysisServicesClient:
    """
    Client for the Microsoft.AnalysisServices/servers Resource Manager API.

    A new HTTP session is opened per request; the client holds no
    connection state between calls.
    """

    def __init__(
        self,
        subscription_id: str,
        access_token: str = "",
        endpoint: str = "https://management.azure.com",
        api_version: str = "2017-08-01",
        poll_interval: float = 10,
        request_timeout: int = 60,
    ):
        self.subscription_id = subscription_id
        self.access_token = access_token
        self.endpoint = endpoint.rstrip("/")
        self.api_version = api_version
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout

        if not self.access_token:
            logger.warning(
                "Azure access token not configured. Set AZURE_ACCESS_TOKEN "
                "environment variable."
            )

    @classmethod
    def from_config(cls, azure: AzureConfig) -> "AnalysisServicesClient":
        return cls(
            subscription_id=azure.subscription_id,
            access_token=azure.access_token,
            endpoint=azure.resource_manager_endpoint,
            api_version=azure.api_version,
            poll_interval=azure.poll_interval,
            request_timeout=azure.request_timeout,
        )

    def server_id(self, resource_group: str, name: str) -> ServerId:
        return ServerId(
            subscription_id=self.subscription_id,
            resource_group=resource_group,
            name=name,
        )

    def server_url(self, resource_group: str, name: str) -> str:
        return f"{self.endpoint}{self.server_id(resource_group, name)}"

    async def get_details(self, resource_group: str, name: str) -> Server:
        """
        Get a server.

        Raises:
            ResourceNotFoundError: If the server does not exist.
            ApiError: On any other failure.
        """
        status, _, body = await self._request(
            "GET", self.server_url(resource_group, name), params=self._params()
        )
        self._raise_for_status(status, body, name, resource_group)
        return Server.model_validate(body or {})

    async def create(
        self, resource_group: str, name: str, server: Server
    ) -> LongRunningOperation:
        """Start creating (or replacing) a server."""
        url = self.server_url(resource_group, name)
        response = await self._request(
            "PUT", url, params=self._params(), payload=server.to_wire()
        )
        self._raise_for_status(response[0], response[2], name, resource_group)
        return LongRunningOperation(self, "create", url, response, name, resource_group)

    async def update(
        self, resource_group: str, name: str, parameters: ServerUpdateParameters
    ) -> LongRunningOperation:
        """Start updating the mutable properties of a server."""
        url = self.server_url(resource_group, name)
        response = await self._request(
            "PATCH", url, params=self._params(), payload=parameters.to_wire()
        )
        self._raise_for_status(response[0], response[2], name, resource_group)
        return LongRunningOperation(self, "update", url, response, name, resource_group)

    async def delete(self, resource_group: str, name: str) -> LongRunningOperation:
        """Start deleting a server. A server that is already gone counts as deleted."""
        url = self.server_url(resource_group, name)
        response = await self._request("DELETE", url, params=self._params())
        if response[0] != 404:
            self._raise_for_status(response[0], response[2], name, resource_group)
        return LongRunningOperation(self, "delete", url, response, name, resource_group)

    # Private helper methods

    def _params(self) -> Dict[str, str]:
        return {"api-version": self.api_version}

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Resource Manager requests."""
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _raise_for_status(
        self, status: int, body: Any, name: str, resource_group: str
    ) -> None:
        if status < 400:
            return

        code, message = _error_details(body)
        detail = f"{code}: {message}" if code or message else f"HTTP {status}"
        if status == 404:
            raise ResourceNotFoundError(
                f"Analysis Services Server {name!r} (Resource Group "
                f"{resource_group!r}) was not found: {detail}",
                name=name,
                resource_group=resource_group,
            )
        raise ApiError(
            f"Request for Analysis Services Server {name!r} (Resource Group "
            f"{resource_group!r}) failed with HTTP {status}: {detail}",
            status=status,
            code=code,
            name=name,
            resource_group=resource_group,
        )

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Response:
        """Send a request and return (status, lower-cased headers, decoded body)."""
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method,
                    url,
                    headers=self._get_headers(),
                    params=params,
                    json=payload,
                ) as response:
                    headers = {k.lower(): v for k, v in response.headers.items()}
                    text = await response.text()
                    status = response.status
        except aiohttp.ClientError as e:
            raise ApiError(f"{method} {url} failed: {e}", status=0) from e
        except asyncio.TimeoutError as e:
            raise ApiError(
                f"{method} {url} timed out after {self.request_timeout}s", status=0
            ) from e

        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"{method} {url} returned a non-JSON body")
                body = {"raw": text}

        logger.debug(f"{method} {url} -> {status}")
        return status, headers, body
