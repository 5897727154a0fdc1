"""
Command-line entry point for the BusinessMap MCP Server.

Usage:
    mcp-businessmap [--config PATH] [--transport stdio|http] [--port N]
                    [--log-level LEVEL] [--read-only]
    python -m mcp_businessmap ...
"""

from __future__ import annotations

import asyncio
import sys

import uvicorn

from mcp_businessmap.client import BusinessMapClient
from mcp_businessmap.config import AppConfig, load_config
from mcp_businessmap.errors import ConfigurationError, UpstreamError
from mcp_businessmap.logging import get_logger, setup_logging
from mcp_businessmap.routing import build_registry
from mcp_businessmap.server import DispatchContextFactory, StdioServer
from mcp_businessmap.transport import create_app

logger = get_logger(__name__)


async def check_connection(config: AppConfig) -> None:
    """
    Verify the BusinessMap API is reachable, retrying a few times.

    Raises:
        UpstreamError: If every attempt failed.
    """
    attempts = config.upstream.connect_retries
    delay = config.upstream.connect_retry_delay_seconds

    async with BusinessMapClient.from_config(config.upstream) as client:
        for attempt in range(1, attempts + 1):
            try:
                await client.initialize()
                logger.info("Connected to BusinessMap API", extra={"api_url": client.api_url})
                return
            except UpstreamError as e:
                if attempt == attempts:
                    raise UpstreamError(
                        f"Failed to connect to BusinessMap API after {attempts} attempts: "
                        f"{e.message}",
                        status_code=e.status_code,
                    ) from e
                logger.warning(
                    "Connection attempt failed, retrying",
                    extra={"attempt": attempt, "max_attempts": attempts, "error": e.message},
                )
                await asyncio.sleep(delay)


async def run_stdio(factory: DispatchContextFactory) -> None:
    server = StdioServer(factory())
    await server.run()


def main(argv: list[str] | None = None) -> int:
    """
    Load configuration, check the upstream connection and serve.

    Returns:
        Process exit code.
    """
    try:
        config = load_config(cli_args=argv)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)

    registry = build_registry(read_only=config.upstream.read_only_mode)
    factory = DispatchContextFactory(config, registry)

    try:
        asyncio.run(check_connection(config))
    except UpstreamError as e:
        logger.error("Startup connection check failed", extra={"error": e.message})
        return 1

    try:
        if config.transport.type == "http":
            logger.info(
                "Starting HTTP transport",
                extra={
                    "host": config.server.host,
                    "port": config.server.port,
                    "mcp_path": config.server.mcp_path,
                },
            )
            uvicorn.run(
                create_app(config, factory),
                host=config.server.host,
                port=config.server.port,
                log_config=None,
            )
        else:
            asyncio.run(run_stdio(factory))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")

    return 0


if __name__ == "__main__":
    sys.exit(main())
