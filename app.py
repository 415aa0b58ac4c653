from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from constants import Settings
from logging_config import get_logger
from routers.stats import stats_router
from service import RelayService

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, service: Optional[RelayService] = None) -> FastAPI:
    """Build the relay application.

    Raises ConfigurationError when no authentication mechanism is configured.
    """
    settings = settings or Settings.from_env()
    service = service or RelayService(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.start()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(title="signaling-relay", lifespan=lifespan)
    app.state.service = service

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(stats_router)

    @app.websocket("/ws")
    @app.websocket("/")
    async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
        """Signaling WebSocket.

        Query parameters:
        - token: static shared credential or a signed JWT
        """
        client = websocket.client.host if websocket.client else "unknown"
        logger.info(f"WebSocket connection attempt from {client}")
        await service.serve(websocket, token)

    logger.info("FastAPI application initialized")
    return app
