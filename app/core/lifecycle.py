"""
app/core/lifecycle.py

Purpose: Process startup and shutdown

- Provisions the credential and log directories
- Disconnects every registered instance on shutdown
"""

from pathlib import Path
from typing import Optional

from app.core.config import Settings, settings
from app.core.logging import get_logger
from app.services.instance_registry import InstanceRegistry

logger = get_logger(__name__)


def provision_directories(config: Optional[Settings] = None) -> None:
    """
    Creates AUTH_DIR and LOG_DIR if they do not exist yet.
    """
    config = config or settings
    for directory in (config.AUTH_DIR, config.LOG_DIR):
        Path(directory).mkdir(parents=True, exist_ok=True)


async def shutdown_instances(registry: InstanceRegistry) -> None:
    """
    Sequentially disconnects every registered instance.
    """
    logger.info(f"Starting graceful shutdown of {len(registry)} instance(s)...")
    await registry.disconnect_all()
    logger.info("Graceful shutdown completed")
