"""
Tableau Relay - FastAPI Application
=====================================
Creates and configures the FastAPI web application that relays the
browser client's calls to the Tableau REST API.

Responsibilities:
    - Create the FastAPI app instance with CORS and metadata
    - Build the shared TableauClient (one connection pool per process)
    - Wire the TreeAggregator / PreviewCollector to the client
    - Register API routes
    - Close the HTTP client on shutdown
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gateway.auth import AuthManager
from gateway.config import ConfigManager
from gateway.routes import create_router
from relay.client import TableauClient
from relay.previews import PreviewCollector
from relay.tree import TreeAggregator

logger = logging.getLogger(__name__)


def create_app(
    project_dir: str | None = None,
    client: TableauClient | None = None,
    auth_manager: AuthManager | None = None,
) -> FastAPI:
    """
    Application factory: create and configure the FastAPI instance.

    Args:
        project_dir:  Root directory holding config.yaml and .env.
                      If None, auto-detected from this file's location.
        client:       Pre-built TableauClient (tests inject one backed by
                      httpx.MockTransport). Built from config when None.
        auth_manager: Pre-built AuthManager. Built from config when None.

    Returns:
        Configured FastAPI application ready to run with uvicorn.
    """
    # -- Resolve directories ---------------------------------------------------
    if project_dir is None:
        project_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    # -- Load configuration ----------------------------------------------------
    config_manager = ConfigManager(project_dir)
    config = config_manager.load()
    if "_config_error" in config:
        logger.warning("[CONFIG] config.yaml unreadable, using defaults: %s", config["_config_error"])
    tableau = config["tableau"]
    relay_cfg = config["relay"]

    # -- Initialize collaborators ----------------------------------------------
    if client is None:
        client = TableauClient(
            server_url=tableau["server_url"],
            api_version=str(tableau["api_version"]),
            timeout=float(relay_cfg["request_timeout"]),
            page_size=int(tableau["page_size"]),
        )
    if auth_manager is None:
        auth_manager = AuthManager.from_config(config_manager, config)

    aggregator = TreeAggregator(
        client,
        max_depth=int(relay_cfg["max_depth"]),
        max_concurrency=int(relay_cfg["max_concurrency"]),
    )
    collector = PreviewCollector(
        client,
        max_concurrency=int(relay_cfg["max_concurrency"]),
        batch_timeout=float(relay_cfg["batch_timeout"]),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.close()

    # -- Create FastAPI app ----------------------------------------------------
    app = FastAPI(
        title="Tableau Relay",
        description="Backend relay between a browser client and the Tableau REST API",
        version="1.0.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    # -- CORS middleware -------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config["web"].get("cors_origins") or [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Tableau-Site-Id"],
    )

    # -- Store collaborators on app state --------------------------------------
    app.state.config = config
    app.state.config_manager = config_manager
    app.state.client = client
    app.state.auth_manager = auth_manager

    # -- Register API routes ---------------------------------------------------
    api_router = create_router(
        client=client,
        aggregator=aggregator,
        collector=collector,
        auth_manager=auth_manager,
        config=config,
    )
    app.include_router(api_router)

    return app
