from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config

from msp.infra.logging_config import configure_logging

logger = logging.getLogger(__name__)


def run_upgrade_head(config_path: str = "alembic.ini") -> None:
    config = Config(config_path)
    logger.info("upgrading database schema to head using %s", config_path)
    command.upgrade(config, "head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
