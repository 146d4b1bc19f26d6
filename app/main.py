"""Main application entry point for the WebRTC call bridge."""

import asyncio
import logging
import sys
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI

from app.bridge.orchestrator import CallBridge
from app.config import Config, config
from app.core.ice_config import IceConfig
from app.rtc.peer_leg import PeerLeg
from app.server import create_app
from app.signaling.calls_client import CallsClient

__version__ = "0.1.0"


def setup_logging() -> None:
    """Configure structured logging with file output."""
    # Create logs directory
    log_dir = Path(config.system.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Generate log filename with timestamp
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"call-bridge_{timestamp}.log"

    log_level = getattr(logging, config.system.log_level.upper(), logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[console_handler, file_handler]
    )

    # aiortc/aioice are chatty at DEBUG
    for noisy in ("aioice", "aiortc"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.INFO))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.system.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger(__name__)
    logger.info(f"Logging to file: {log_file}")


def build_app(settings: Optional[Config] = None) -> FastAPI:
    """Wire the calls client, peer legs and bridge into the web app.

    Args:
        settings: Configuration (defaults to the module-level config)

    Returns:
        FastAPI application

    Raises:
        ValueError: If required settings are missing or the ICE config is invalid
        FileNotFoundError: If ICE_CONFIG_FILE points nowhere
    """
    settings = settings or config
    settings.validate()
    logger = structlog.get_logger(__name__)

    ice_config = IceConfig.from_yaml_or_default(settings.rtc.ice_config_file, settings.rtc.stun_url)
    calls_client = CallsClient(
        calls_url=settings.calling.calls_url,
        access_token=settings.calling.access_token,
        timeout=settings.calling.request_timeout
    )

    bridge = CallBridge(
        calls_client=calls_client,
        leg_factory=partial(PeerLeg, ice_servers=ice_config.to_rtc_servers()),
        remote_track_timeout=settings.rtc.remote_track_timeout,
        settle_delay=settings.rtc.accept_settle_delay
    )

    if not settings.calling.verify_token:
        logger.warning("VERIFY_TOKEN not set, webhook verification will always fail")

    logger.info(
        "Call bridge configured",
        calls_url=settings.calling.calls_url,
        ice_servers=len(ice_config.servers),
        remote_track_timeout=settings.rtc.remote_track_timeout,
        settle_delay=settings.rtc.accept_settle_delay
    )

    return create_app(
        bridge,
        verify_token=settings.calling.verify_token,
        static_dir=settings.server.static_dir,
        webhook_path=settings.server.webhook_path,
        socket_path=settings.server.socket_path,
        on_shutdown=calls_client.close
    )


async def main(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Main application entry point - serves the webhook and browser socket."""
    logger = structlog.get_logger(__name__)

    host = host or config.server.host
    port = port or config.server.port

    logger.info("WebRTC call bridge starting", version=__version__, host=host, port=port)

    app = build_app()
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=host,
        port=port,
        ws="websockets",
        log_config=None,
        log_level=config.system.log_level.lower()
    ))

    # uvicorn installs its own SIGINT/SIGTERM handlers and runs the lifespan shutdown
    await server.serve()


def cli() -> None:
    """CLI entry point."""
    import argparse

    # Setup logging BEFORE anything else
    setup_logging()

    parser = argparse.ArgumentParser(
        description="WebRTC call bridge: browser <-> calling API audio relay"
    )
    parser.add_argument("--host", help=f"Bind address (default: {config.server.host})")
    parser.add_argument("--port", type=int, help=f"Listen port (default: {config.server.port})")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    args = parser.parse_args()

    logger = structlog.get_logger(__name__)

    try:
        asyncio.run(main(host=args.host, port=args.port))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
        sys.exit(0)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
