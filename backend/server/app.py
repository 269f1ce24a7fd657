"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (session gateway, camera frame slot)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability import logger
from observability.logger import log_event
from session.camera import LatestFrameCamera
from session.gateway import SessionGateway

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    gateway: SessionGateway | None = None,
    camera: LatestFrameCamera | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations (inject config, gateway, camera)
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    logger.configure(json_output=config.enable_json_logs)
    camera = camera or LatestFrameCamera()
    gateway = gateway or SessionGateway(config=config, camera=camera)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        log_event({"event_type": "SERVER_STARTED", "env": config.env})
        yield
        # Release microphone, speaker and socket on shutdown
        await gateway.close()
        log_event({"event_type": "SERVER_STOPPED", "env": config.env})

    app = FastAPI(title="Realtime Voice Session API", lifespan=lifespan)

    app.state.config = config
    app.state.camera = camera
    app.state.gateway = gateway

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
