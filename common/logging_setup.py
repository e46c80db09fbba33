"""
common.logging_setup

Logging configuration shared by the staking CLIs.
"""
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, *, quiet_http: bool = True) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if quiet_http:
        # urllib3 logs every connection at DEBUG
        logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
