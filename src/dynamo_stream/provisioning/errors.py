"""Errors raised while reconciling streams and event-source mappings."""

from __future__ import annotations


class ReconcileError(Exception):
    """Base class for reconciliation failures."""


class MissingResourceError(ReconcileError):
    """A resource the workflow depends on does not exist (yet).

    Raised for a table without a stream ARN, a function without an execution
    role, or a role without a matching inline policy. Never retried.
    """


class PermissionNotPropagatedError(ReconcileError):
    """The stream-read grant was still missing after the propagation wait."""


class WaitCancelledError(ReconcileError):
    """The propagation wait was cancelled before it elapsed."""
