"""
Idea Board - Main FastAPI Application

Serves the page state for the single implicit user and talks to the idea store
configured by IDEA_BOARD_API_URL.

Run with:
    uvicorn main:app --reload --port 8000
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from adapter.store import IdeaStoreClient
from api import router, set_dependencies
from core import AppShell
from monitoring import monitor

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Global shell (initialized on startup)
shell: AppShell = None


class RequestMonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware to monitor page API requests."""

    async def dispatch(self, request: Request, call_next) -> Response:
        # Skip monitoring for docs
        if request.url.path in ["/", "/docs", "/redoc", "/openapi.json"]:
            return await call_next(request)

        endpoint = request.url.path.replace("/api/v1", "") or "/"
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            monitor.metrics.record_request(endpoint, (time.time() - start_time) * 1000, error=True)
            raise

        latency_ms = (time.time() - start_time) * 1000
        monitor.metrics.record_request(endpoint, latency_ms, error=response.status_code >= 500)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - setup and teardown.
    """
    global shell

    logger.info("Starting Idea Board...")

    client = IdeaStoreClient()
    if client.is_configured:
        logger.info(f"✓ Idea store: {client.base_url}")
    else:
        logger.warning("⚠ Idea store not configured - set IDEA_BOARD_API_URL")

    monitor.set_component_status(
        "idea_store",
        "healthy" if client.is_configured else "error",
        {"configured": client.is_configured, "timeout": client.timeout}
    )

    shell = AppShell(client)
    set_dependencies(shell)

    # First render: fetch the feed
    shell.mount()
    logger.info("Idea Board ready!")

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Idea Board...")
    await shell.unmount()
    set_dependencies(None)
    logger.info("Goodbye!")


# Create FastAPI app
app = FastAPI(
    title="Idea Board API",
    description="Page backend for the idea board: feed, composition and confirmation",
    version="1.0.0",
    lifespan=lifespan,
)

# Request monitoring middleware
app.add_middleware(RequestMonitoringMiddleware)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


# Root endpoint
@app.get("/")
async def root():
    return {"name": "Idea Board API", "version": "1.0.0", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
    )
