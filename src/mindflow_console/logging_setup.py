# src/mindflow_console/logging_setup.py

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    logging.getLogger("mindflow_console").setLevel(resolved)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
