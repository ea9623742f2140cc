"""
Server Reconciler - Create, Read, Update, Delete and Import for
Analysis Services servers.

Every verb runs under its own deadline. Create and Update finish with a Read
so the returned state always reflects the authoritative remote server.
States passed in are never mutated; each verb returns a new state.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, List, Optional, TypeVar

from config import FeaturesConfig, TimeoutsConfig
from plugins.reconcilers.analysis_services.client import AnalysisServicesClient
from plugins.reconcilers.analysis_services.errors import (
    ApiError,
    ImportAsExistsError,
    MissingIdentifierError,
    OperationTimeoutError,
    ResourceNotFoundError,
    RetrievalError,
)
from plugins.reconcilers.analysis_services.expand import (
    expand_server,
    expand_server_update,
    flatten_server,
)
from plugins.reconcilers.analysis_services.models import ServerState
from plugins.reconcilers.analysis_services.parse import parse_server_id

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "azurerm_analysis_services_server"

T = TypeVar("T")

CreateHook = Callable[[str], Awaitable[None]]


@dataclass
class ApplyResult:
    """Outcome of ServerReconciler.apply()."""

    state: ServerState
    action: str
    drifted: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.action == "unchanged":
            return "No changes"
        return f"{self.action.capitalize()} {self.state.resource_id}"


class ServerReconciler:
    """Reconciles ServerState records against Resource Manager."""

    def __init__(
        self,
        client: AnalysisServicesClient,
        timeouts: Optional[TimeoutsConfig] = None,
        features: Optional[FeaturesConfig] = None,
    ):
        self.client = client
        self.timeouts = timeouts or TimeoutsConfig()
        self.features = features or FeaturesConfig()

    async def _with_deadline(
        self,
        operation: str,
        coro: Awaitable[T],
        state: ServerState,
        timeouts: Optional[TimeoutsConfig],
    ) -> T:
        seconds = (timeouts or self.timeouts).seconds(operation)
        try:
            return await asyncio.wait_for(coro, timeout=seconds)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"Timed out after {seconds:.0f}s waiting for {operation} of "
                f"Analysis Services Server {state.name!r} (Resource Group "
                f"{state.resource_group_name!r})",
                name=state.name,
                resource_group=state.resource_group_name,
                cause=e,
            ) from e

    # Create

    def expected_id(self, state: ServerState) -> str:
        """The resource ID a server created from state will have."""
        return str(self.client.server_id(state.resource_group_name, state.name))

    async def create(
        self,
        state: ServerState,
        prevent_import: Optional[bool] = None,
        adopt_existing: bool = False,
        timeouts: Optional[TimeoutsConfig] = None,
    ) -> ServerState:
        """
        Create the server described by state and return the refreshed state.

        Args:
            state: Desired state with an empty resource_id.
            prevent_import: Fail instead of adopting a server that already
                exists. Defaults to the configured feature switch.
            adopt_existing: The caller previously submitted a create for
                this server without seeing it finish. An existing server is
                then updated to the desired state instead of rejected.
            timeouts: Per-call deadline overrides.

        Raises:
            ImportAsExistsError: If a server with the same key already exists.
            RetrievalError: If the existence check or the final lookup fails.
            MissingIdentifierError: If the created server has no ID.
            OperationTimeoutError: If the create deadline elapses.
            RemoteOperationError: If the create operation fails remotely.
        """
        if prevent_import is None:
            prevent_import = self.features.prevent_accidental_import
        return await self._with_deadline(
            "create",
            self._create(state, prevent_import, adopt_existing),
            state,
            timeouts,
        )

    async def _create(
        self, state: ServerState, prevent_import: bool, adopt_existing: bool
    ) -> ServerState:
        name = state.name
        resource_group = state.resource_group_name

        logger.info(
            f"Preparing arguments for Analysis Services Server {name!r} "
            f"(Resource Group {resource_group!r}) creation"
        )

        if (prevent_import or adopt_existing) and not state.exists:
            existing_id = await self._find_existing(state)
            if existing_id and adopt_existing:
                logger.warning(
                    f"Adopting Analysis Services Server {existing_id} left by an "
                    f"interrupted create"
                )
                return await self._update(replace(state, resource_id=existing_id))
            if existing_id:
                raise ImportAsExistsError(RESOURCE_TYPE, existing_id)

        operation = await self.client.create(
            resource_group, name, expand_server(state)
        )
        await operation.wait()

        try:
            server = await self.client.get_details(resource_group, name)
        except ApiError as e:
            raise RetrievalError(
                f"Error retrieving Analysis Services Server {name!r} "
                f"(Resource Group {resource_group!r}) after creation: {e}",
                name=name,
                resource_group=resource_group,
                cause=e,
            ) from e

        if not server.id:
            raise MissingIdentifierError(
                f"Cannot read ID for Analysis Services Server {name!r} "
                f"(Resource Group {resource_group!r})",
                name=name,
                resource_group=resource_group,
            )

        logger.info(f"Created Analysis Services Server {server.id}")
        return await self._read(replace(state, resource_id=server.id))

    async def _find_existing(self, state: ServerState) -> Optional[str]:
        try:
            existing = await self.client.get_details(
                state.resource_group_name, state.name
            )
        except ResourceNotFoundError:
            return None
        except ApiError as e:
            raise RetrievalError(
                f"Error checking for presence of existing Analysis Services "
                f"Server {state.name!r} (Resource Group "
                f"{state.resource_group_name!r}): {e}",
                name=state.name,
                resource_group=state.resource_group_name,
                cause=e,
            ) from e

        return existing.id or None

    # Read

    async def read(
        self, state: ServerState, timeouts: Optional[TimeoutsConfig] = None
    ) -> ServerState:
        """
        Refresh state from the remote server.

        Returns:
            The refreshed state. If the server no longer exists the returned
            state has an empty resource_id (``exists`` is False).

        Raises:
            ResourceIdError: If state.resource_id cannot be parsed.
            RetrievalError: If the lookup fails for another reason.
            OperationTimeoutError: If the read deadline elapses.
        """
        return await self._with_deadline("read", self._read(state), state, timeouts)

    async def _read(self, state: ServerState) -> ServerState:
        server_id = parse_server_id(state.resource_id)

        try:
            server = await self.client.get_details(
                server_id.resource_group, server_id.name
            )
        except ResourceNotFoundError:
            logger.warning(
                f"Analysis Services Server {server_id.name!r} (Resource Group "
                f"{server_id.resource_group!r}) was not found - removing from state"
            )
            return replace(state, resource_id="", server_full_name="")
        except ApiError as e:
            raise RetrievalError(
                f"Error retrieving Analysis Services Server {server_id.name!r} "
                f"(Resource Group {server_id.resource_group!r}): {e}",
                name=server_id.name,
                resource_group=server_id.resource_group,
                cause=e,
            ) from e

        if not server.id:
            server.id = state.resource_id
        return flatten_server(server, state)

    # Update

    async def update(
        self, state: ServerState, timeouts: Optional[TimeoutsConfig] = None
    ) -> ServerState:
        """
        Apply the mutable fields of state to the existing server.

        Name, resource group and location are never sent; they are taken
        from the resource ID.

        Raises:
            ResourceIdError: If state.resource_id cannot be parsed.
            OperationTimeoutError: If the update deadline elapses.
            RemoteOperationError: If the update operation fails remotely.
        """
        return await self._with_deadline(
            "update", self._update(state), state, timeouts
        )

    async def _update(self, state: ServerState) -> ServerState:
        server_id = parse_server_id(state.resource_id)

        logger.info(
            f"Preparing arguments for Analysis Services Server "
            f"{server_id.name!r} (Resource Group {server_id.resource_group!r}) "
            f"update"
        )

        operation = await self.client.update(
            server_id.resource_group, server_id.name, expand_server_update(state)
        )
        await operation.wait()

        return await self._read(state)

    # Delete

    async def delete(
        self, state: ServerState, timeouts: Optional[TimeoutsConfig] = None
    ) -> None:
        """
        Delete the server and wait for the deletion to finish.

        Raises:
            ResourceIdError: If state.resource_id cannot be parsed.
            OperationTimeoutError: If the delete deadline elapses.
            RemoteOperationError: If the delete operation fails remotely.
        """
        await self._with_deadline("delete", self._delete(state), state, timeouts)

    async def _delete(self, state: ServerState) -> None:
        server_id = parse_server_id(state.resource_id)

        logger.info(
            f"Deleting Analysis Services Server {server_id.name!r} "
            f"(Resource Group {server_id.resource_group!r})"
        )

        operation = await self.client.delete(server_id.resource_group, server_id.name)
        await operation.wait()

    # Import

    async def import_resource(
        self,
        resource_id: str,
        backup_blob_container_uri: Optional[str] = None,
        timeouts: Optional[TimeoutsConfig] = None,
    ) -> ServerState:
        """
        Bring an existing server under management.

        The ID is validated before any remote call is made.

        Args:
            resource_id: The server's resource ID.
            backup_blob_container_uri: The write-only backup URI, if known,
                since it cannot be read back.
            timeouts: Per-call deadline overrides.

        Raises:
            ResourceIdError: If the ID is not a server resource ID.
            ResourceNotFoundError: If the server does not exist.
        """
        placeholder = ServerState.for_resource_id(
            resource_id, backup_blob_container_uri=backup_blob_container_uri
        )

        state = await self.read(placeholder, timeouts=timeouts)
        if not state.exists:
            raise ResourceNotFoundError(
                f"Cannot import non-existent Analysis Services Server "
                f"{placeholder.name!r} (Resource Group "
                f"{placeholder.resource_group_name!r})",
                name=placeholder.name,
                resource_group=placeholder.resource_group_name,
            )

        logger.info(f"Imported Analysis Services Server {resource_id}")
        return state

    # Apply

    async def apply(
        self,
        desired: ServerState,
        pending_id: Optional[str] = None,
        force_update: bool = False,
        prevent_import: Optional[bool] = None,
        timeouts: Optional[TimeoutsConfig] = None,
        before_create: Optional[CreateHook] = None,
    ) -> ApplyResult:
        """
        Converge the remote server on desired using the four verbs.

        * no resource_id: Create;
        * server gone: Create again;
        * name, resource group or location changed: Delete, then Create;
        * mutable fields drifted, or force_update: Update;
        * otherwise nothing is written.

        Args:
            desired: Desired state, carrying the last known resource_id.
            pending_id: ID of a create submitted earlier without being seen
                to finish. A server with that ID is adopted, not rejected.
            force_update: Update even if no drift is visible, e.g. because
                the write-only backup container URI changed.
            prevent_import: Passed to create; see create().
            timeouts: Per-call deadline overrides.
            before_create: Awaited with the expected ID before each create
                is submitted, so callers can record it.

        Returns:
            ApplyResult with the refreshed state and the action taken.
        """
        if not desired.exists:
            state = await self._submit_create(
                desired, pending_id, prevent_import, timeouts, before_create
            )
            return ApplyResult(state=state, action="created")

        current = await self.read(desired, timeouts=timeouts)

        if not current.exists:
            logger.warning(
                f"Analysis Services Server {desired.name!r} (Resource Group "
                f"{desired.resource_group_name!r}) disappeared; creating it again"
            )
            state = await self._submit_create(
                _detached(desired), pending_id, prevent_import, timeouts, before_create
            )
            return ApplyResult(state=state, action="recreated")

        changed = desired.requires_replacement(current)
        if changed:
            logger.info(
                f"{', '.join(changed)} changed; replacing Analysis Services "
                f"Server {current.resource_id}"
            )
            await self.delete(current, timeouts=timeouts)
            state = await self._submit_create(
                _detached(desired), pending_id, prevent_import, timeouts, before_create
            )
            return ApplyResult(state=state, action="replaced")

        drifted = desired.drift_from(current)
        if not drifted and not force_update:
            return ApplyResult(state=current, action="unchanged")

        if drifted:
            logger.info(
                f"Drift detected for Analysis Services Server "
                f"{current.resource_id}: {', '.join(drifted)}"
            )
        state = await self.update(desired, timeouts=timeouts)
        return ApplyResult(state=state, action="updated", drifted=drifted)

    async def _submit_create(
        self,
        desired: ServerState,
        pending_id: Optional[str],
        prevent_import: Optional[bool],
        timeouts: Optional[TimeoutsConfig],
        before_create: Optional[CreateHook],
    ) -> ServerState:
        expected_id = self.expected_id(desired)
        if before_create is not None:
            await before_create(expected_id)
        return await self.create(
            desired,
            prevent_import=prevent_import,
            adopt_existing=pending_id is not None and pending_id == expected_id,
            timeouts=timeouts,
        )


def _detached(state: ServerState) -> ServerState:
    """Copy of state with its remote identity cleared."""
    return replace(state, resource_id="", server_full_name="")
