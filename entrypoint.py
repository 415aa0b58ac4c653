import sys

import uvicorn

from constants import LOG_FILE, LOG_LEVEL, Settings
from logging_config import get_logger, setup_logging

# Setup logging before building the app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import create_app  # noqa: E402
from errors import ConfigurationError  # noqa: E402
from service import RelayService  # noqa: E402

logger = get_logger(__name__)


class RelayServer(uvicorn.Server):
    """uvicorn server that lets the relay notify its clients before uvicorn drops them."""

    def __init__(self, config: uvicorn.Config, service: RelayService):
        super().__init__(config)
        self.service = service

    async def shutdown(self, sockets=None):
        await self.service.shutdown()
        await super().shutdown(sockets=sockets)


def main() -> int:
    try:
        settings = Settings.from_env()
        app = create_app(settings)
    except ConfigurationError as e:
        logger.critical(f"FATAL: {e}")
        return 1

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        ws_max_size=settings.max_payload_bytes,
        ws_ping_interval=settings.heartbeat_interval_s,
        ws_ping_timeout=settings.heartbeat_interval_s,
        log_config=None,
    )
    logger.info(f"Starting signaling relay on {settings.host}:{settings.port}")
    logger.info(f"MAX_PAYLOAD_BYTES={settings.max_payload_bytes}")
    RelayServer(config, app.state.service).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
