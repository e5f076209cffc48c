from __future__ import annotations

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[2]
ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", str(ROOT / "alembic.ini"))


def build_alembic_config(database_url: str | None = None, config_path: str = ALEMBIC_CONFIG) -> Config:
    """Alembic config pinned to this checkout; ``database_url`` beats ``DATABASE_URL``."""
    config = Config(config_path)
    config.set_main_option("script_location", str(ROOT / "infra" / "migrations"))
    config.attributes["configure_logger"] = False
    if database_url:
        config.attributes["database_url"] = database_url
    return config


def run_upgrade_head(database_url: str | None = None) -> None:
    logger.info("upgrading schema to head")
    command.upgrade(build_alembic_config(database_url), "head")


def run_downgrade_base(database_url: str | None = None) -> None:
    logger.info("downgrading schema to base")
    command.downgrade(build_alembic_config(database_url), "base")


if __name__ == "__main__":
    run_upgrade_head()
