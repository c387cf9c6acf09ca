"""Reconcile DynamoDB streams and their Lambda event-source mappings."""

__version__ = "0.1.0"
