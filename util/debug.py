###########EXTERNAL IMPORTS############

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional

#######################################

#############LOCAL IMPORTS#############

#######################################


class LoggerManager:
    """
    Static manager for the application loggers.

    Configures the root logger once (console and rotating file output) and hands out
    named child loggers to every module through `get_logger(__name__)`.
    """

    _initialized: bool = False
    _loggers: Dict[str, logging.Logger] = {}
    LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    def __init__(self):
        raise TypeError("LoggerManager is a static class and cannot be instantiated")

    @staticmethod
    def init(level: Optional[str] = None, log_dir: str = "logs", file_name: str = "store.log") -> None:
        """
        Configures the root logger.

        Args:
            level: Logging level name. Falls back to the `LOG_LEVEL` environment variable, then INFO.
            log_dir: Directory where the rotating log file is written.
            file_name: Name of the rotating log file.
        """

        if LoggerManager._initialized:
            return

        level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
        formatter = logging.Formatter(LoggerManager.LOG_FORMAT)

        root = logging.getLogger()
        root.setLevel(level_name)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(os.path.join(log_dir, file_name), maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

        LoggerManager._initialized = True

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """Returns the (cached) logger for the given module name."""

        logger = LoggerManager._loggers.get(name)
        if logger is None:
            logger = logging.getLogger(name)
            LoggerManager._loggers[name] = logger
        return logger
