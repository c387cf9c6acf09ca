"""Reconciler orchestrator — streams first, then event-source mappings."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from dynamo_stream.config.models import ReconcilerConfig, ServiceConfig, StreamSpec
from dynamo_stream.control_plane.base import (
    ComputeControlPlane,
    PermissionControlPlane,
    TableControlPlane,
)
from dynamo_stream.provisioning.bindings import BindingProvisioner
from dynamo_stream.provisioning.collector import collect_stream_specs
from dynamo_stream.provisioning.streams import StreamProvisioner
from dynamo_stream.provisioning.waiter import PropagationWaiter

logger = structlog.get_logger()

COMMAND_NAME = "dynamo-stream"
CREATE_EVENT = "dynamoStream:create"
CONNECT_EVENT = "dynamoStream:connect"
AFTER_DEPLOY_EVENT = "after:deploy:deploy"


class StreamReconciler:
    """Runs stream and binding reconciliation for one service.

    Control planes are built once per reconciler; pass fakes to test without
    AWS. The two phases can run on their own or together via ``run_all``.
    """

    def __init__(
        self,
        service: ServiceConfig,
        settings: ReconcilerConfig | None = None,
        *,
        tables: TableControlPlane | None = None,
        functions: ComputeControlPlane | None = None,
        permissions: PermissionControlPlane | None = None,
        waiter: PropagationWaiter | None = None,
    ) -> None:
        self._service = service
        self._settings = settings or ReconcilerConfig()

        if tables is None or functions is None or permissions is None:
            from dynamo_stream.control_plane.aws import (
                DynamoDBTableControlPlane,
                IamPermissionControlPlane,
                LambdaComputeControlPlane,
            )

            region = service.provider.region
            tables = tables or DynamoDBTableControlPlane(region)
            functions = functions or LambdaComputeControlPlane(region)
            permissions = permissions or IamPermissionControlPlane(region)

        self._waiter = waiter or PropagationWaiter(
            self._settings.propagation_wait_seconds
        )
        self._streams = StreamProvisioner(tables)
        self._bindings = BindingProvisioner(
            tables,
            functions,
            permissions,
            policy_name_filter=self._settings.policy_name_filter or service.service,
            waiter=self._waiter,
            required_actions=self._settings.required_actions,
            deployed_name=service.deployed_function_name,
        )
        self._hooks: dict[str, Callable[[], Awaitable[None]]] = {
            CREATE_EVENT: self.ensure_streams,
            CONNECT_EVENT: self.ensure_bindings,
            AFTER_DEPLOY_EVENT: self.run_all,
        }

    @property
    def lifecycle_events(self) -> list[str]:
        return list(self._hooks)

    def collect(self) -> dict[str, list[StreamSpec]]:
        return collect_stream_specs(self._service, self._settings.trigger_key)

    async def ensure_streams(self) -> None:
        logger.info("reconciler.create_streams", service=self._service.service)
        await self._streams.ensure_streams(self.collect())

    async def ensure_bindings(self) -> None:
        logger.info("reconciler.connect_streams", service=self._service.service)
        await self._bindings.ensure_bindings(self.collect())

    async def run_all(self) -> None:
        await self.ensure_streams()
        await self.ensure_bindings()
        logger.info("reconciler.done", service=self._service.service)

    async def handle_lifecycle_event(self, event: str) -> None:
        """Run the handler registered for a host lifecycle *event*."""
        handler = self._hooks.get(event)
        if handler is None:
            msg = f"Unknown lifecycle event '{event}'; expected one of {self.lifecycle_events}"
            raise ValueError(msg)
        await handler()

    def cancel(self) -> None:
        """Abort any pending propagation wait."""
        self._waiter.cancel()
