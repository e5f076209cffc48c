from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s :: %(message)s"


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        stream=sys.stdout,
        level=(level or LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
