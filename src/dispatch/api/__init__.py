"""Dispatch API package."""

from dispatch.api.routes import admin_router, fulfillment_router, lifecycle_router

__all__ = ["lifecycle_router", "fulfillment_router", "admin_router"]
