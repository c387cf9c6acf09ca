"""boto3-backed control planes for DynamoDB, Lambda and IAM."""

from __future__ import annotations

import asyncio
import json
from functools import partial
from typing import Any

import structlog

from dynamo_stream.config.models import StartingPosition, StreamViewType
from dynamo_stream.control_plane.base import (
    EventSourceMapping,
    FunctionDescription,
    TableDescription,
)

logger = structlog.get_logger()

DYNAMODB_API_VERSION = "2012-08-10"


class _BotoControlPlane:
    """Lazily builds one boto3 client and runs its blocking calls in an executor."""

    service_name: str = ""
    api_version: str | None = None

    def __init__(self, region: str, client: Any | None = None) -> None:
        self._region = region
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import boto3

            kwargs: dict[str, Any] = {"region_name": self._region}
            if self.api_version is not None:
                kwargs["api_version"] = self.api_version
            self._client = boto3.client(self.service_name, **kwargs)
        return self._client

    async def _call(self, method: str, **kwargs: Any) -> Any:
        client = self._get_client()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(getattr(client, method), **kwargs))

    async def _paginate(self, operation: str, key: str, **kwargs: Any) -> list[Any]:
        client = self._get_client()
        loop = asyncio.get_running_loop()

        def _collect() -> list[Any]:
            items: list[Any] = []
            for page in client.get_paginator(operation).paginate(**kwargs):
                items.extend(page.get(key, []))
            return items

        return await loop.run_in_executor(None, _collect)


class DynamoDBTableControlPlane(_BotoControlPlane):
    service_name = "dynamodb"
    api_version = DYNAMODB_API_VERSION

    async def describe_table(self, table_name: str) -> TableDescription:
        resp = await self._call("describe_table", TableName=table_name)
        table = resp["Table"]
        stream = table.get("StreamSpecification") or {}
        return TableDescription(
            table_name=table.get("TableName", table_name),
            stream_enabled=bool(stream.get("StreamEnabled")),
            stream_view_type=stream.get("StreamViewType"),
            latest_stream_arn=table.get("LatestStreamArn"),
        )

    async def update_stream(
        self, table_name: str, stream_view_type: StreamViewType
    ) -> None:
        await self._call(
            "update_table",
            TableName=table_name,
            StreamSpecification={
                "StreamEnabled": True,
                "StreamViewType": stream_view_type.value,
            },
        )


class LambdaComputeControlPlane(_BotoControlPlane):
    service_name = "lambda"

    async def get_function(self, function_name: str) -> FunctionDescription:
        resp = await self._call("get_function_configuration", FunctionName=function_name)
        return FunctionDescription(
            function_name=resp.get("FunctionName", function_name),
            role_arn=resp.get("Role"),
        )

    async def list_event_source_mappings(
        self, function_name: str
    ) -> list[EventSourceMapping]:
        mappings = await self._paginate(
            "list_event_source_mappings",
            "EventSourceMappings",
            FunctionName=function_name,
        )
        return [
            EventSourceMapping(
                event_source_arn=m.get("EventSourceArn"),
                uuid=m.get("UUID"),
                state=m.get("State"),
            )
            for m in mappings
        ]

    async def create_event_source_mapping(
        self,
        event_source_arn: str,
        function_name: str,
        starting_position: StartingPosition,
    ) -> None:
        resp = await self._call(
            "create_event_source_mapping",
            EventSourceArn=event_source_arn,
            FunctionName=function_name,
            StartingPosition=starting_position.value,
        )
        logger.debug(
            "lambda.event_source_mapping_created",
            function=function_name,
            uuid=resp.get("UUID"),
        )


class IamPermissionControlPlane(_BotoControlPlane):
    service_name = "iam"

    async def list_role_policies(self, role_name: str) -> list[str]:
        return await self._paginate(
            "list_role_policies", "PolicyNames", RoleName=role_name
        )

    async def get_role_policy(self, role_name: str, policy_name: str) -> str:
        resp = await self._call(
            "get_role_policy", RoleName=role_name, PolicyName=policy_name
        )
        document = resp["PolicyDocument"]
        # botocore already decodes the URL-encoded JSON into a dict.
        if isinstance(document, dict):
            return json.dumps(document)
        return document  # type: ignore[no-any-return]

    async def put_role_policy(
        self, role_name: str, policy_name: str, document: str
    ) -> None:
        await self._call(
            "put_role_policy",
            RoleName=role_name,
            PolicyName=policy_name,
            PolicyDocument=document,
        )
