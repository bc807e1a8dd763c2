"""
Main entry point for the cloud check service.

Wires the database, adapters, problem registry and engine together, then
runs the periodic check loop next to the HTTP API.
"""

import asyncio
import logging
import signal
from typing import Optional

from adapters.agent.http import HttpAgentClientFactory
from adapters.cloud.http import HttpCloudAdapter
from api import CloudCheckAPI
from collector import ProblemCollector
from config import get_config
from db import DatabaseManager
from engine import CloudCheckEngine
from events import EventBus
from problems.base import ProblemContext
from problems.registry import build_default_registry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Application:
    """Main application that orchestrates the engine and the API."""

    def __init__(self):
        self.config = get_config()
        self.db: Optional[DatabaseManager] = None
        self.cloud: Optional[HttpCloudAdapter] = None
        self.engine: Optional[CloudCheckEngine] = None
        self.api: Optional[CloudCheckAPI] = None
        self.event_bus: Optional[EventBus] = None

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing cloud check service")
        logging.getLogger().setLevel(self.config.api.log_level.upper())

        # Built once; read-only for the lifetime of the process
        registry = build_default_registry()

        db_config = self.config.database
        self.db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.db.connect()
        await self.db.ping()

        self.cloud = HttpCloudAdapter(
            self.config.cloud.api_url,
            token=self.config.cloud.token,
            timeout=self.config.cloud.timeout,
        )
        agents = HttpAgentClientFactory(
            self.config.agent.api_url, timeout=self.config.agent.timeout
        )

        ctx = ProblemContext(
            repository=self.db,
            cloud=self.cloud,
            agents=agents,
            strict_disk_delete=self.config.engine.strict_disk_delete,
            agent_timeout=self.config.agent.timeout,
        )

        self.event_bus = EventBus()
        self.engine = CloudCheckEngine(
            registry=registry,
            ctx=ctx,
            collector=ProblemCollector(self.db, self.cloud, agents),
            config=self.config.engine,
            event_bus=self.event_bus,
        )
        self.api = CloudCheckAPI(
            self.engine,
            event_bus=self.event_bus,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level=self.config.api.log_level,
        )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.engine:
            await self.initialize()

        tasks = [
            asyncio.create_task(self.engine.start()),
            asyncio.create_task(self.api.start()),
        ]

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        logger.info("Stopping cloud check service")

        if self.engine:
            await self.engine.stop()

        if self.api:
            await self.api.stop()

        if self.cloud:
            await self.cloud.close()

        if self.db:
            await self.db.close()

        logger.info("Cloud check service stopped")


async def main():
    """Main entry point."""
    app = Application()

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
