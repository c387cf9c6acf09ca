"""In-memory control planes shared by the provisioning tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from dynamo_stream.config.models import StartingPosition, StreamViewType
from dynamo_stream.control_plane.base import (
    EventSourceMapping,
    FunctionDescription,
    TableDescription,
)
from dynamo_stream.provisioning.waiter import PropagationWaiter

ACCOUNT = "123456789012"


def stream_arn_for(table_name: str) -> str:
    return (
        f"arn:aws:dynamodb:us-east-1:{ACCOUNT}:table/{table_name}"
        "/stream/2024-01-01T00:00:00.000"
    )


def role_arn_for(role_name: str) -> str:
    return f"arn:aws:iam::{ACCOUNT}:role/{role_name}"


class FakeTables:
    def __init__(self) -> None:
        self.tables: dict[str, TableDescription] = {}
        self.errors: dict[str, Exception] = {}
        self.describe_calls: list[str] = []
        self.update_calls: list[tuple[str, StreamViewType]] = []

    def add(
        self,
        name: str,
        *,
        view_type: StreamViewType | None = None,
        enabled: bool | None = None,
        stream_arn: str | None = None,
    ) -> None:
        if enabled is None:
            enabled = view_type is not None
        if stream_arn is None and enabled:
            stream_arn = stream_arn_for(name)
        self.tables[name] = TableDescription(
            table_name=name,
            stream_enabled=enabled,
            stream_view_type=view_type.value if view_type else None,
            latest_stream_arn=stream_arn,
        )

    async def describe_table(self, table_name: str) -> TableDescription:
        self.describe_calls.append(table_name)
        await asyncio.sleep(0)
        if table_name in self.errors:
            raise self.errors[table_name]
        if table_name not in self.tables:
            raise RuntimeError(f"Requested resource not found: Table: {table_name}")
        return self.tables[table_name]

    async def update_stream(
        self, table_name: str, stream_view_type: StreamViewType
    ) -> None:
        self.update_calls.append((table_name, stream_view_type))
        await asyncio.sleep(0)
        self.add(table_name, view_type=stream_view_type)


class FakeFunctions:
    def __init__(self) -> None:
        self.roles: dict[str, str | None] = {}
        self.mappings: dict[str, list[EventSourceMapping]] = {}
        self.calls: list[tuple[str, str]] = []
        self.created: list[tuple[str, str, StartingPosition]] = []

    def add(self, name: str, role_arn: str | None) -> None:
        self.roles[name] = role_arn
        self.mappings.setdefault(name, [])

    def bind(self, name: str, stream_arn: str) -> None:
        self.mappings.setdefault(name, []).append(
            EventSourceMapping(event_source_arn=stream_arn, state="Enabled")
        )

    async def get_function(self, function_name: str) -> FunctionDescription:
        self.calls.append(("get_function", function_name))
        await asyncio.sleep(0)
        if function_name not in self.roles:
            raise RuntimeError(f"Function not found: {function_name}")
        return FunctionDescription(
            function_name=function_name, role_arn=self.roles[function_name]
        )

    async def list_event_source_mappings(
        self, function_name: str
    ) -> list[EventSourceMapping]:
        self.calls.append(("list_event_source_mappings", function_name))
        await asyncio.sleep(0)
        return list(self.mappings.get(function_name, []))

    async def create_event_source_mapping(
        self,
        event_source_arn: str,
        function_name: str,
        starting_position: StartingPosition,
    ) -> None:
        self.calls.append(("create_event_source_mapping", function_name))
        await asyncio.sleep(0)
        self.created.append((event_source_arn, function_name, starting_position))
        self.bind(function_name, event_source_arn)


class FakePermissions:
    def __init__(self) -> None:
        self.policies: dict[str, dict[str, str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.puts: list[tuple[str, str, str]] = []
        self.errors: dict[str, Exception] = {}

    def add(self, role_name: str, policy_name: str, document: dict[str, Any]) -> None:
        self.policies.setdefault(role_name, {})[policy_name] = json.dumps(document)

    def document(self, role_name: str, policy_name: str) -> dict[str, Any]:
        return json.loads(self.policies[role_name][policy_name])

    async def list_role_policies(self, role_name: str) -> list[str]:
        self.calls.append(("list_role_policies", role_name))
        await asyncio.sleep(0)
        return list(self.policies.get(role_name, {}))

    async def get_role_policy(self, role_name: str, policy_name: str) -> str:
        self.calls.append(("get_role_policy", role_name))
        await asyncio.sleep(0)
        if "get_role_policy" in self.errors:
            raise self.errors["get_role_policy"]
        return self.policies[role_name][policy_name]

    async def put_role_policy(
        self, role_name: str, policy_name: str, document: str
    ) -> None:
        self.calls.append(("put_role_policy", role_name))
        await asyncio.sleep(0)
        self.puts.append((role_name, policy_name, document))
        self.policies.setdefault(role_name, {})[policy_name] = document


class RecordingWaiter(PropagationWaiter):
    """Zero-length waiter that counts waits and can run a hook mid-wait."""

    def __init__(self, on_wait: Callable[[], None] | None = None) -> None:
        super().__init__(0)
        self.waits = 0
        self.on_wait = on_wait

    async def wait(self) -> None:
        self.waits += 1
        if self.on_wait is not None:
            self.on_wait()
        await super().wait()


@pytest.fixture
def tables() -> FakeTables:
    return FakeTables()


@pytest.fixture
def functions() -> FakeFunctions:
    return FakeFunctions()


@pytest.fixture
def permissions() -> FakePermissions:
    return FakePermissions()


@pytest.fixture
def waiter() -> RecordingWaiter:
    return RecordingWaiter()
