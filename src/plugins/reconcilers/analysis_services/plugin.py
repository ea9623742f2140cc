"""
Analysis Services Reconciler Plugin - Drives the server reconciler from
operator resource records.

Each resource's spec is the server configuration; the server's computed
fields are kept in the resource outputs between reconciliations.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from config import Config, get_config
from plugins.reconcilers.analysis_services.client import AnalysisServicesClient
from plugins.reconcilers.analysis_services.errors import AnalysisServicesError
from plugins.reconcilers.analysis_services.models import ServerState
from plugins.reconcilers.analysis_services.reconciler import ServerReconciler
from plugins.reconcilers.base import (
    ReconcilerContext,
    ReconcilerPlugin,
    ReconcileResult,
    ResourceStatus,
)
from validation import SERVER_SCHEMA

logger = logging.getLogger(__name__)

RESOURCE_TYPE_NAME = "AnalysisServicesServer"
FINALIZER = "analysis_services"

# Output key recording a create that was submitted but not seen to finish
PENDING_ID_OUTPUT = "pending_id"


def determine_trigger_reason(resource: Dict[str, Any]) -> str:
    """Determine why this reconciliation was triggered."""
    if resource.get("last_reconcile_time") is None:
        return "initial"
    elif resource.get("generation", 0) > resource.get("observed_generation", 0):
        return "spec_change"
    elif _deletion_requested(resource):
        return "deletion"
    elif resource.get("status") == ResourceStatus.FAILED.value:
        return "retry"
    else:
        return "scheduled"


def _deletion_requested(resource: Dict[str, Any]) -> bool:
    return (
        resource.get("status") == ResourceStatus.DELETING.value
        or resource.get("deleted_at") is not None
    )


class AnalysisServicesReconcilerPlugin(ReconcilerPlugin):
    """
    Reconciler plugin for AnalysisServicesServer resources.

    Creates missing servers, updates drifted ones, replaces servers whose
    name, resource group or location changed, and deletes servers whose
    resource is being deleted.
    """

    def __init__(
        self,
        reconciler: Optional[ServerReconciler] = None,
        config: Optional[Config] = None,
    ):
        self._config = config
        self._reconciler = reconciler
        self._running = False

    @property
    def name(self) -> str:
        return "analysis_services"

    @property
    def resource_types(self) -> List[str]:
        return [RESOURCE_TYPE_NAME]

    def resource_type_schemas(self) -> Dict[str, Dict[str, Any]]:
        return {RESOURCE_TYPE_NAME: SERVER_SCHEMA}

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = get_config()
        return self._config

    @property
    def reconciler(self) -> ServerReconciler:
        if self._reconciler is None:
            self._reconciler = ServerReconciler(
                AnalysisServicesClient.from_config(self.config.azure),
                timeouts=self.config.timeouts,
                features=self.config.features,
            )
        return self._reconciler

    async def start(self, ctx: ReconcilerContext) -> None:
        """Poll the store for servers needing reconciliation until shutdown."""
        self._running = True
        interval = self.config.reconciler.reconcile_interval
        logger.info(f"Starting {self.name} reconciler (interval {interval}s)")

        while self._running and not ctx.shutdown_event.is_set():
            try:
                resources = await ctx.get_resources_needing_reconciliation(
                    self.resource_types, limit=self.config.reconciler.batch_size
                )
                if resources:
                    logger.info(
                        f"Found {len(resources)} Analysis Services Servers "
                        f"needing reconciliation"
                    )
                for resource in resources:
                    await self.reconcile(resource, ctx)
            except Exception as e:
                logger.error(
                    f"Error in {self.name} reconciliation loop: {e}", exc_info=True
                )

            try:
                await asyncio.wait_for(ctx.shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Stopped {self.name} reconciler")

    async def stop(self) -> None:
        self._running = False

    async def reconcile(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        """Reconcile a single AnalysisServicesServer resource."""
        resource_id = resource["id"]
        resource_name = resource["name"]
        start_time = time.monotonic()
        trigger_reason = determine_trigger_reason(resource)
        deleting = _deletion_requested(resource)

        try:
            if deleting:
                result = await self._reconcile_deletion(resource, ctx)
            else:
                await ctx.update_status(
                    resource_id,
                    ResourceStatus.RECONCILING.value,
                    message="Starting reconciliation",
                )
                result = await self._reconcile_server(resource, ctx)
                await ctx.update_status(
                    resource_id,
                    ResourceStatus.READY.value,
                    message=result.message,
                    observed_generation=resource.get("generation"),
                )
                logger.info(
                    f"Successfully reconciled {resource_name}: {result.message}"
                )
        except AnalysisServicesError as e:
            logger.error(f"Reconciliation failed for {resource_name}: {e.message}")
            result = self._failed(e.message)
        except Exception as e:
            logger.error(
                f"Unexpected error reconciling {resource_name}: {e}", exc_info=True
            )
            result = self._failed(str(e))

        if not result.success and not deleting:
            await ctx.update_status(
                resource_id, ResourceStatus.FAILED.value, message=result.message
            )

        await ctx.record_reconciliation(
            resource_id,
            result,
            duration_seconds=time.monotonic() - start_time,
            trigger_reason=trigger_reason,
        )
        return result

    def _failed(self, message: str) -> ReconcileResult:
        return ReconcileResult(
            success=False,
            message=message,
            requeue_after=self.config.reconciler.requeue_after,
        )

    async def _reconcile_server(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        spec = resource.get("spec") or {}
        outputs = resource.get("outputs") or {}
        timeouts = self.config.timeouts.with_overrides(spec.get("timeouts"))
        desired = ServerState.from_config(spec).with_outputs(outputs)
        spec_changed = resource.get("generation", 0) > resource.get(
            "observed_generation", 0
        )

        async def record_pending(expected_id: str) -> None:
            # Recorded before submitting, so an interrupted create is adopted
            await ctx.update_outputs(resource["id"], {PENDING_ID_OUTPUT: expected_id})

        applied = await self.reconciler.apply(
            desired,
            pending_id=outputs.get(PENDING_ID_OUTPUT),
            force_update=spec_changed,
            timeouts=timeouts,
            before_create=record_pending,
        )
        await ctx.update_outputs(resource["id"], applied.state.to_outputs())

        drift_detected = applied.action == "recreated" or (
            bool(applied.drifted) and not spec_changed
        )
        return ReconcileResult(
            success=True, message=applied.message, drift_detected=drift_detected
        )

    async def _reconcile_deletion(
        self, resource: Dict[str, Any], ctx: ReconcilerContext
    ) -> ReconcileResult:
        resource_id = resource["id"]
        outputs = resource.get("outputs") or {}
        # A create that was interrupted may still have left a server behind
        server_id = outputs.get("id") or outputs.get(PENDING_ID_OUTPUT)

        if server_id:
            spec = resource.get("spec") or {}
            timeouts = self.config.timeouts.with_overrides(spec.get("timeouts"))
            state = ServerState.for_resource_id(server_id)
            await self.reconciler.delete(state, timeouts=timeouts)
            await ctx.update_outputs(resource_id, {})
            message = f"Deleted {server_id}"
        else:
            message = "No server to delete"

        await ctx.remove_finalizer(resource_id, FINALIZER)
        remaining = await ctx.get_finalizers(resource_id)
        if not remaining:
            await ctx.hard_delete_resource(resource_id)
            logger.info(f"Destroyed and deleted resource {resource['name']}")
        else:
            logger.info(
                f"Finalizer removed for {resource['name']}, waiting on: {remaining}"
            )

        return ReconcileResult(success=True, message=message)
