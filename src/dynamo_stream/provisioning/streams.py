"""StreamProvisioner — enables DynamoDB streams with the desired view type."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence

import structlog

from dynamo_stream.config.models import StreamSpec
from dynamo_stream.control_plane.base import TableControlPlane

logger = structlog.get_logger()


class StreamProvisioner:
    """Ensures every declared table streams with the declared view type.

    Each table is reconciled once, with the first declared spec, even when
    several functions declare it. Tables are handled concurrently; a failure
    on one table does not stop the others, but the call still fails once all
    of them have settled.
    """

    def __init__(self, tables: TableControlPlane) -> None:
        self._tables = tables

    async def ensure_streams(self, specs: Mapping[str, Sequence[StreamSpec]]) -> None:
        if not specs:
            logger.info("streams.nothing_to_do")
            return

        logger.info("streams.functions_found", functions=list(specs))
        by_table = self._unique_tables(specs)
        results = await asyncio.gather(
            *(
                self._ensure_stream(function_name, spec)
                for function_name, spec in by_table.values()
            ),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error("streams.ensure_failed", failed=len(failures), total=len(results))
            raise failures[0]

    @staticmethod
    def _unique_tables(
        specs: Mapping[str, Sequence[StreamSpec]],
    ) -> dict[str, tuple[str, StreamSpec]]:
        by_table: dict[str, tuple[str, StreamSpec]] = {}
        for function_name, function_specs in specs.items():
            for spec in function_specs:
                first = by_table.setdefault(spec.table_name, (function_name, spec))
                if first[1].stream_view_type != spec.stream_view_type:
                    logger.warning(
                        "streams.conflicting_view_type",
                        table=spec.table_name,
                        kept=first[1].stream_view_type.value,
                        kept_for=first[0],
                        ignored=spec.stream_view_type.value,
                        ignored_for=function_name,
                    )
        return by_table

    async def _ensure_stream(self, function_name: str, spec: StreamSpec) -> None:
        table_name = spec.table_name
        try:
            table = await self._tables.describe_table(table_name)
            if table.stream_enabled and table.stream_view_type == spec.stream_view_type:
                logger.info(
                    "streams.up_to_date",
                    function=function_name,
                    table=table_name,
                    stream_view_type=spec.stream_view_type.value,
                )
                return

            logger.info(
                "streams.updating",
                function=function_name,
                table=table_name,
                current=table.stream_view_type if table.stream_enabled else None,
                stream_view_type=spec.stream_view_type.value,
            )
            await self._tables.update_stream(table_name, spec.stream_view_type)
            logger.info(
                "streams.updated",
                table=table_name,
                stream_view_type=spec.stream_view_type.value,
            )
        except Exception as exc:
            logger.error(
                "streams.update_failed",
                function=function_name,
                table=table_name,
                error=str(exc),
            )
            raise
