"""BindingProvisioner — connects DynamoDB streams to Lambda functions.

For every (function, stream spec) pair:

1. resolve the table's latest stream ARN;
2. resolve the function's execution role name;
3. pick the role's inline policy whose name contains the policy filter;
4. append a stream-read statement to that policy unless one already covers
   the stream;
5. if no event-source mapping exists yet, wait for IAM to propagate, verify
   the grant again and create the mapping.

Steps 3-5 hold a per-role lock: a policy is rewritten in full on every
change, so writers to the same role must not interleave.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

import structlog

from dynamo_stream.config.models import REQUIRED_STREAM_ACTIONS, StreamSpec
from dynamo_stream.control_plane.base import (
    ComputeControlPlane,
    PermissionControlPlane,
    TableControlPlane,
)
from dynamo_stream.provisioning.errors import (
    MissingResourceError,
    PermissionNotPropagatedError,
)
from dynamo_stream.provisioning.policy import PolicyDocument
from dynamo_stream.provisioning.waiter import PropagationWaiter

logger = structlog.get_logger()


@dataclass
class BindingProgress:
    """What one binding attempt has discovered so far."""

    function_name: str
    deployed_name: str
    table_name: str
    stream_arn: str | None = None
    role_name: str | None = None
    policy_name: str | None = None


def role_name_from_arn(role_arn: str) -> str:
    """``arn:aws:iam::123:role/path/name`` -> ``name``."""
    return role_arn.split(":")[-1].split("/")[-1]


class BindingProvisioner:
    """Grants stream access to function roles and creates event-source mappings."""

    def __init__(
        self,
        tables: TableControlPlane,
        functions: ComputeControlPlane,
        permissions: PermissionControlPlane,
        *,
        policy_name_filter: str,
        waiter: PropagationWaiter,
        required_actions: Sequence[str] = REQUIRED_STREAM_ACTIONS,
        deployed_name: Callable[[str], str] | None = None,
    ) -> None:
        self._tables = tables
        self._functions = functions
        self._permissions = permissions
        self._policy_name_filter = policy_name_filter
        self._waiter = waiter
        self._required_actions = list(required_actions)
        self._deployed_name = deployed_name or (lambda name: name)

    async def ensure_bindings(self, specs: Mapping[str, Sequence[StreamSpec]]) -> None:
        if not specs:
            logger.info("bindings.nothing_to_do")
            return

        logger.info("bindings.functions_found", functions=list(specs))
        # One lock per role, scoped to this call.
        role_locks: dict[str, asyncio.Lock] = {}
        results = await asyncio.gather(
            *(
                self._bind(function_name, spec, role_locks)
                for function_name, function_specs in specs.items()
                for spec in function_specs
            ),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(
                "bindings.ensure_failed", failed=len(failures), total=len(results)
            )
            raise failures[0]

    async def _bind(
        self,
        function_name: str,
        spec: StreamSpec,
        role_locks: dict[str, asyncio.Lock],
    ) -> None:
        progress = BindingProgress(
            function_name=function_name,
            deployed_name=self._deployed_name(function_name),
            table_name=spec.table_name,
        )
        try:
            progress.stream_arn = await self._resolve_stream_arn(progress)
            progress.role_name = await self._resolve_role_name(progress)
            async with role_locks.setdefault(progress.role_name, asyncio.Lock()):
                progress.policy_name = await self._resolve_policy_name(
                    progress.role_name, progress.deployed_name
                )
                await self._ensure_grant(
                    progress.role_name, progress.policy_name, progress.stream_arn
                )
                await self._ensure_mapping(progress, spec)
        except Exception as exc:
            logger.error(
                "bindings.connect_failed",
                function=function_name,
                table=spec.table_name,
                stream_arn=progress.stream_arn,
                role=progress.role_name,
                policy=progress.policy_name,
                error=str(exc),
            )
            raise

    async def _resolve_stream_arn(self, progress: BindingProgress) -> str:
        table = await self._tables.describe_table(progress.table_name)
        if not table.latest_stream_arn:
            msg = (
                f"Table {progress.table_name} has no stream ARN to connect "
                f"function {progress.function_name} to"
            )
            raise MissingResourceError(msg)
        logger.info(
            "bindings.stream_found",
            table=progress.table_name,
            stream_arn=table.latest_stream_arn,
        )
        return table.latest_stream_arn

    async def _resolve_role_name(self, progress: BindingProgress) -> str:
        function = await self._functions.get_function(progress.deployed_name)
        if not function.role_arn:
            msg = (
                f"Function {progress.deployed_name} has no execution role. "
                "Make sure the service is deployed before connecting streams."
            )
            raise MissingResourceError(msg)
        role_name = role_name_from_arn(function.role_arn)
        if not role_name:
            msg = (
                f"Role ARN {function.role_arn} of function "
                f"{progress.deployed_name} has no role name"
            )
            raise MissingResourceError(msg)
        logger.info("bindings.role_found", function=progress.deployed_name, role=role_name)
        return role_name

    async def _resolve_policy_name(self, role_name: str, function_name: str) -> str:
        policy_names = await self._permissions.list_role_policies(role_name)
        policy_name = next(
            (name for name in policy_names if self._policy_name_filter in name), None
        )
        if policy_name is None:
            msg = (
                f"Role {role_name} has no inline policy containing "
                f"'{self._policy_name_filter}'. Deploy the service first, "
                "since deployment creates this policy."
            )
            raise MissingResourceError(msg)
        logger.info(
            "bindings.policy_found",
            function=function_name,
            role=role_name,
            policy=policy_name,
        )
        return policy_name

    async def _get_policy(self, role_name: str, policy_name: str) -> PolicyDocument:
        document = await self._permissions.get_role_policy(role_name, policy_name)
        return PolicyDocument.parse(document)

    async def _ensure_grant(
        self, role_name: str, policy_name: str, stream_arn: str
    ) -> None:
        document = await self._get_policy(role_name, policy_name)
        if document.grants(stream_arn, self._required_actions):
            logger.info("bindings.policy_up_to_date", role=role_name, stream_arn=stream_arn)
            return

        updated = document.with_grant(stream_arn, self._required_actions)
        logger.info(
            "bindings.policy_writing",
            role=role_name,
            policy=policy_name,
            stream_arn=stream_arn,
        )
        await self._permissions.put_role_policy(role_name, policy_name, updated.to_json())
        logger.info("bindings.policy_written", role=role_name, policy=policy_name)

    async def _is_mapped(self, function_name: str, stream_arn: str) -> bool:
        mappings = await self._functions.list_event_source_mappings(function_name)
        return any(m.event_source_arn == stream_arn for m in mappings)

    async def _ensure_mapping(self, progress: BindingProgress, spec: StreamSpec) -> None:
        assert progress.stream_arn is not None
        assert progress.role_name is not None
        assert progress.policy_name is not None

        if await self._is_mapped(progress.deployed_name, progress.stream_arn):
            logger.info(
                "bindings.mapping_exists",
                function=progress.function_name,
                table=progress.table_name,
            )
            return

        logger.info(
            "bindings.waiting_for_propagation",
            role=progress.role_name,
            seconds=self._waiter.seconds,
        )
        await self._waiter.wait()

        # TODO: replace the single re-check with bounded exponential backoff.
        document = await self._get_policy(progress.role_name, progress.policy_name)
        if not document.grants(progress.stream_arn, self._required_actions):
            msg = (
                f"Policy {progress.policy_name} of role {progress.role_name} still "
                f"does not grant access to {progress.stream_arn}. "
                "Make sure the policy is in place and retry."
            )
            raise PermissionNotPropagatedError(msg)
        logger.info(
            "bindings.policy_confirmed",
            role=progress.role_name,
            stream_arn=progress.stream_arn,
        )

        if await self._is_mapped(progress.deployed_name, progress.stream_arn):
            logger.info(
                "bindings.mapping_appeared",
                function=progress.function_name,
                table=progress.table_name,
            )
            return

        logger.info(
            "bindings.mapping_creating",
            function=progress.function_name,
            table=progress.table_name,
            starting_position=spec.starting_position.value,
        )
        await self._functions.create_event_source_mapping(
            progress.stream_arn, progress.deployed_name, spec.starting_position
        )
        logger.info(
            "bindings.mapping_created",
            function=progress.function_name,
            table=progress.table_name,
        )
