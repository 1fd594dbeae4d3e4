"""Logging configuration for the API process."""

from __future__ import annotations

import logging
from logging import Logger

from .settings import settings


def configure_logging(level: str | None = None) -> Logger:
	"""Configure basic logging for the application and return its logger."""
	logging.basicConfig(
		level=(level or settings.log_level).upper(),
		format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
	)
	return logging.getLogger("notequiz")
