"""Upstream adapter FastAPI application.

One process serves one capability, chosen by ADAPTER_KIND (codedispenser or
erp). Callers are authorized by the strategy chosen by ADAPTER_AUTH_MODE.

Usage:
    ADAPTER_KIND=codedispenser uvicorn src.adapter_app:app --port 5680
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from adapters.domain import adapters
from adapters.fulfillment import adapter_kind
from shared.admin import get_admin_key
from shared.logging import add_context, clear_context, configure_logging

configure_logging(service_name=f"adapter-{adapter_kind()}")
adapters.init()


@asynccontextmanager
async def lifespan(_: FastAPI):
    from adapters.ledger import get_run_gate

    get_admin_key()
    gate = get_run_gate()
    await gate.store.ensure_schema()
    yield
    await gate.store.dispose()


app = FastAPI(
    title="Fulfillment Adapter",
    description="Authorized, idempotent fulfillment endpoint for one upstream capability",
    lifespan=lifespan,
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the adapters domain context and tag log events with the request path."""
    add_context(path=request.url.path)
    try:
        with adapters.domain_context():
            return await call_next(request)
    finally:
        clear_context("path")


from adapters.api import admin_router, fulfillment_router  # noqa: E402

app.include_router(fulfillment_router)
app.include_router(admin_router)


@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": adapters.name, "capability": adapter_kind()})
