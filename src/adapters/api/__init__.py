"""Adapter API package."""

from adapters.api.routes import admin_router, fulfillment_router

__all__ = ["fulfillment_router", "admin_router"]
