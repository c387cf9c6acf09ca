"""Pydantic configuration models for stream triggers and the host service."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

REQUIRED_STREAM_ACTIONS = (
    "dynamodb:GetRecords",
    "dynamodb:GetShardIterator",
    "dynamodb:DescribeStream",
    "dynamodb:ListStreams",
)


class StreamViewType(StrEnum):
    """Which parts of a modified item are written to the stream."""

    NEW_IMAGE = "NEW_IMAGE"
    OLD_IMAGE = "OLD_IMAGE"
    NEW_AND_OLD_IMAGES = "NEW_AND_OLD_IMAGES"
    KEYS_ONLY = "KEYS_ONLY"


class StartingPosition(StrEnum):
    """Where a new event-source mapping starts reading the stream."""

    TRIM_HORIZON = "TRIM_HORIZON"
    LATEST = "LATEST"
    AT_TIMESTAMP = "AT_TIMESTAMP"


class StreamSpec(BaseModel):
    """Desired stream trigger declared on a function.

    Built from the ``existingDynamoStream`` event attribute::

        tableName: Orders
        streamType: NEW_AND_OLD_IMAGES
        startingPosition: LATEST
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table_name: str = Field(alias="tableName", min_length=1)
    stream_view_type: StreamViewType = Field(
        default=StreamViewType.NEW_AND_OLD_IMAGES,
        validation_alias=AliasChoices("streamType", "captureMode", "stream_view_type"),
    )
    starting_position: StartingPosition = Field(
        default=StartingPosition.LATEST, alias="startingPosition"
    )

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        if not v.strip():
            msg = "tableName must not be blank"
            raise ValueError(msg)
        return v


class ProviderConfig(BaseModel):
    """Cloud provider settings from the ``provider`` block."""

    name: str = "aws"
    region: str = "us-east-1"
    stage: str = "dev"


class FunctionConfig(BaseModel):
    """A single entry under ``functions``."""

    handler: str | None = None
    # Deployed Lambda name; the host derives one when this is unset.
    name: str | None = None
    events: list[Any] = Field(default_factory=list)

    @field_validator("events", mode="before")
    @classmethod
    def coerce_missing_events(cls, v: Any) -> Any:
        return [] if v is None else v


class ServiceConfig(BaseModel):
    """Host service configuration (``serverless.yml``-style).

    Only the keys needed for stream reconciliation are modelled; everything
    else in the file is ignored.
    """

    service: str = Field(min_length=1)
    provider: ProviderConfig = ProviderConfig()
    functions: dict[str, FunctionConfig] = Field(default_factory=dict)
    custom: dict[str, Any] = Field(default_factory=dict)

    @field_validator("service", mode="before")
    @classmethod
    def unwrap_service_name(cls, v: Any) -> Any:
        """Accept both ``service: name`` and ``service: {name: name}``."""
        if isinstance(v, dict):
            return v.get("name")
        return v

    @field_validator("functions", "custom", mode="before")
    @classmethod
    def coerce_missing_mapping(cls, v: Any) -> Any:
        return {} if v is None else v

    def deployed_function_name(self, function: str) -> str:
        """Return the Lambda name the host deploys *function* under."""
        fn = self.functions[function]
        if fn.name:
            return fn.name
        return f"{self.service}-{self.provider.stage}-{function}"


class ReconcilerConfig(BaseModel):
    """Reconciler tuning, read from ``custom.dynamoStream``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    trigger_key: str = Field(default="existingDynamoStream", min_length=1)
    propagation_wait_seconds: float = Field(default=60.0, ge=0)
    required_actions: list[str] = Field(
        default_factory=lambda: list(REQUIRED_STREAM_ACTIONS), min_length=1
    )
    # Substring that selects the role's inline policy; the service name if unset.
    policy_name_filter: str | None = None
