"""FastAPI application entry point for the e-invoice sync bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from services.document_sync.document_sync import build_sync_service
from server.routers.SyncRouter import router as sync_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts: one engine instance for the whole process
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)

    sync_service, registry_manager = build_sync_service(app.state.helper_config)

    logging.info("Booting registry clients and store...")
    await registry_manager.boot()
    await sync_service.boot()
    logging.info("Sync engine ready.", color="green")

    app.state.registry_manager = registry_manager
    app.state.sync_service = sync_service

    # while the app is running...
    yield

    logging.info("Shutting down, closing sync engine...")
    await sync_service.close()
    await registry_manager.close()
    logging.info("Sync engine closed.")


app = FastAPI(
    title="einvoice_sync_bridge",
    description=(
        "Middleware that keeps a local store of e-invoice documents in sync with the "
        "government e-invoicing registry. Handles pagination, rate limits, retries, "
        "submission polling and caching. Callers always receive live, cached or "
        "last-known-good data tagged with its source."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_router)


if __name__ == "__main__":
    import uvicorn

    logging.info("Starting einvoice_sync_bridge API Server v%s on port 8000...", app_version)
    uvicorn.run(app, host="0.0.0.0", port=8000)
