"""Embedded uvicorn server running on the bot's event loop."""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from cuidador.api.app import create_app
from cuidador.services import Services

logger = logging.getLogger(__name__)


async def _wait_shutdown_signal(shutdown_event: asyncio.Event, server: uvicorn.Server) -> None:
    await shutdown_event.wait()
    server.should_exit = True


async def serve(services: Services, shutdown_event: asyncio.Event) -> None:
    """Serve the HTTP API until ``shutdown_event`` is set."""
    host = services.config.http_host
    port = services.config.http_port

    config = uvicorn.Config(
        create_app(services),
        host=host,
        port=port,
        log_level=services.config.log_level.lower(),
        access_log=False,
    )
    server = uvicorn.Server(config)
    # Signals are owned by the bot application
    server.install_signal_handlers = lambda: None

    watcher = asyncio.create_task(_wait_shutdown_signal(shutdown_event, server))
    logger.info(f"HTTP API starting on http://{host}:{port}")
    try:
        await server.serve()
    finally:
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
        logger.info("HTTP API stopped")
