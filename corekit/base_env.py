"""Base application environment: a logger and the application description."""

from __future__ import annotations

import logging

from corekit.env import AppEnv


class BaseEnv:
    """Holds the application logger and logs the version on creation."""

    def __init__(self, app_env: AppEnv, logger: logging.Logger | None = None) -> None:
        self._app_env = app_env
        self._logger = logger if logger is not None else logging.getLogger("corekit")
        self._logger.info("Initializing application", extra=app_env.as_fields())

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def app_env(self) -> AppEnv:
        return self._app_env