"""Marketplace dispatch FastAPI application.

Receives payment lifecycle events, dispatches fulfillment to upstream
adapters, and exposes the admin surface for routes and outbound credentials.
Every request runs inside the dispatch domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dispatch.domain import dispatch
from shared.admin import get_admin_key
from shared.logging import add_context, clear_context, configure_logging

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# PROTEAN_ENV selects the config overlay; "test" keeps everything in memory.
configure_logging(service_name="market")
dispatch.init()


@asynccontextmanager
async def lifespan(_: FastAPI):
    from dispatch.lifecycle import get_lifecycle_hooks

    get_admin_key()
    hooks = get_lifecycle_hooks()
    await hooks.resolver.gate.store.ensure_schema()
    yield
    await hooks.resolver.dispatcher.aclose()
    await hooks.resolver.gate.store.dispose()


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Market Dispatch API",
    description="Idempotent, trust-bounded fulfillment dispatch to upstream adapters",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the dispatch domain context and tag log events with the request path."""
    add_context(path=request.url.path)
    try:
        with dispatch.domain_context():
            return await call_next(request)
    finally:
        clear_context("path")


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from dispatch.api import admin_router, fulfillment_router, lifecycle_router  # noqa: E402

app.include_router(lifecycle_router)
app.include_router(fulfillment_router)
app.include_router(admin_router)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": dispatch.name})
