"""Collect declared stream triggers from the service configuration."""

from __future__ import annotations

from pydantic import ValidationError

from dynamo_stream.config.models import ServiceConfig, StreamSpec


def collect_stream_specs(
    service: ServiceConfig, trigger_key: str = "existingDynamoStream"
) -> dict[str, list[StreamSpec]]:
    """Map each function name to the stream specs declared on it.

    Functions without a ``trigger_key`` event are left out entirely.
    """
    function_to_specs: dict[str, list[StreamSpec]] = {}
    for function_name, function in service.functions.items():
        specs: list[StreamSpec] = []
        for event in function.events:
            if not isinstance(event, dict) or trigger_key not in event:
                continue
            try:
                specs.append(StreamSpec.model_validate(event[trigger_key]))
            except ValidationError as exc:
                msg = f"Invalid {trigger_key} event on function '{function_name}':\n{exc}"
                raise ValueError(msg) from exc
        if specs:
            function_to_specs[function_name] = specs
    return function_to_specs
