"""HTTP transport for the order service."""

from order_orchestrator.api.app import create_app

__all__ = ["create_app"]
