"""Structured logging for provisioning runs.

Log lines are single JSON objects on stderr, kept apart from the operator
dialogue on stdout (CSR banner, confirmation prompt, summary). Pipeline
stages tag their records with ``extra={"stage": ...}`` so a failed run can
be traced to the stage that stopped it.
"""

import logging
import os

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "card_signing"
LOG_LEVEL_ENV = "CARD_SIGNING_LOG_LEVEL"


class ProvisioningJsonFormatter(jsonlogger.JsonFormatter):
    """Emits timestamp, level, stage, message and source location only."""

    allowed_fields = frozenset(
        {
            "timestamp",
            "level",
            "stage",
            "message",
            "exc_info",
            "funcName",
            "lineno",
        }
    )

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        for key in [key for key in log_record if key not in self.allowed_fields]:
            log_record.pop(key)


def _level_from_environ() -> int:
    """Return the level named by CARD_SIGNING_LOG_LEVEL, INFO otherwise."""
    level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV, "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _setup_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)

    # Already configured by an earlier import
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProvisioningJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
            timestamp=True,
        )
    )

    logger.setLevel(_level_from_environ())
    logger.addHandler(handler)
    logger.propagate = False

    return logger


LOGGER = _setup_logger()
