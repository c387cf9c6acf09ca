"""IAM inline policy documents and the stream-read grant check."""

from __future__ import annotations

import copy
import json
from collections.abc import Sequence
from typing import Any
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOW = "Allow"


class PolicyStatement(BaseModel):
    """Read-only view of one statement, with Action/Resource normalised to lists."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    effect: str = Field(default="", alias="Effect")
    action: list[str] = Field(default_factory=list, alias="Action")
    resource: list[str] = Field(default_factory=list, alias="Resource")

    @field_validator("action", "resource", mode="before")
    @classmethod
    def coerce_to_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    def allows(self, resource: str, actions: Sequence[str]) -> bool:
        return (
            self.effect == ALLOW
            and resource in self.resource
            and all(action in self.action for action in actions)
        )


class PolicyDocument:
    """An IAM policy document as read from the control plane.

    Statements are kept exactly as read so a write-back never alters
    existing grants; parsing only happens for the grant check.
    """

    def __init__(self, raw: dict[str, Any]) -> None:
        self._raw = raw

    @classmethod
    def parse(cls, document: str | dict[str, Any]) -> PolicyDocument:
        """Parse a URL-encoded (or plain) JSON policy document.

        Plain JSON is never URL-decoded, so literal `%XX` sequences inside
        existing statements survive a write-back.
        """
        if isinstance(document, dict):
            return cls(copy.deepcopy(document))
        text = document
        if not text.lstrip().startswith(("{", "[")):
            text = unquote(text)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"Policy document is not valid JSON: {exc}"
            raise ValueError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Expected a JSON object policy document, got {type(data).__name__}"
            raise TypeError(msg)
        return cls(data)

    @property
    def raw_statements(self) -> list[dict[str, Any]]:
        statements = self._raw.get("Statement", [])
        if isinstance(statements, dict):
            return [statements]
        return list(statements)

    @property
    def statements(self) -> list[PolicyStatement]:
        return [PolicyStatement.model_validate(s) for s in self.raw_statements]

    def grants(self, resource: str, actions: Sequence[str]) -> bool:
        """True if one Allow statement covers *resource* with every action."""
        return any(s.allows(resource, actions) for s in self.statements)

    def with_grant(self, resource: str, actions: Sequence[str]) -> PolicyDocument:
        """Return a copy with an Allow statement for *actions* on *resource* appended."""
        raw = copy.deepcopy(self._raw)
        raw["Statement"] = [
            *self.raw_statements,
            {"Action": list(actions), "Resource": [resource], "Effect": ALLOW},
        ]
        return PolicyDocument(raw)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._raw)

    def to_json(self) -> str:
        return json.dumps(self._raw)
