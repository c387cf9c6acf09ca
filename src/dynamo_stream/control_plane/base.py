"""Control-plane protocols — the remote operations the reconciler depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from dynamo_stream.config.models import StartingPosition, StreamViewType


@dataclass(frozen=True)
class TableDescription:
    table_name: str
    stream_enabled: bool = False
    stream_view_type: str | None = None
    latest_stream_arn: str | None = None


@dataclass(frozen=True)
class FunctionDescription:
    function_name: str
    role_arn: str | None = None


@dataclass(frozen=True)
class EventSourceMapping:
    event_source_arn: str | None
    uuid: str | None = None
    state: str | None = None


@runtime_checkable
class TableControlPlane(Protocol):
    """Describes tables and changes their stream settings."""

    async def describe_table(self, table_name: str) -> TableDescription:
        """Return the table's current stream settings."""
        ...

    async def update_stream(
        self, table_name: str, stream_view_type: StreamViewType
    ) -> None:
        """Enable the table's stream with *stream_view_type*."""
        ...


@runtime_checkable
class ComputeControlPlane(Protocol):
    """Reads function configuration and manages event-source mappings."""

    async def get_function(self, function_name: str) -> FunctionDescription: ...

    async def list_event_source_mappings(
        self, function_name: str
    ) -> list[EventSourceMapping]: ...

    async def create_event_source_mapping(
        self,
        event_source_arn: str,
        function_name: str,
        starting_position: StartingPosition,
    ) -> None: ...


@runtime_checkable
class PermissionControlPlane(Protocol):
    """Reads and writes a role's inline policies (serialized JSON documents)."""

    async def list_role_policies(self, role_name: str) -> list[str]: ...

    async def get_role_policy(self, role_name: str, policy_name: str) -> str: ...

    async def put_role_policy(
        self, role_name: str, policy_name: str, document: str
    ) -> None: ...
