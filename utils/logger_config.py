"""
Logging setup shared by the depth map toolkit.

All modules log through ``get_logger(__name__)``: child loggers of the
``depth_map_toolkit`` logger, which owns one console handler and, when a
config asks for it, one file handler per log file.
"""

import logging
import sys
from typing import Optional
from pathlib import Path


def _attach(logger: logging.Logger, handler: logging.Handler, level: int, formatter: logging.Formatter) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


class LoggerConfig:
    """Owner of the toolkit root logger."""

    _configured = False
    _root_logger_name = 'depth_map_toolkit'
    _default_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_root_logger(cls, level: int = logging.INFO, format_string: Optional[str] = None,
                          log_file: Optional[Path] = None) -> logging.Logger:
        """
        Create the console (and optional file) handlers of the toolkit logger.

        Only the first call configures anything; later calls return the
        already configured logger.

        Args:
            level: Level of the logger and of its handlers
            format_string: Record format, the toolkit format otherwise
            log_file: Also write records to this file
        """
        toolkit_logger = logging.getLogger(cls._root_logger_name)
        if cls._configured:
            return toolkit_logger

        formatter = logging.Formatter(format_string or cls._default_format)
        toolkit_logger.handlers.clear()
        toolkit_logger.setLevel(level)
        _attach(toolkit_logger, logging.StreamHandler(sys.stdout), level, formatter)
        if log_file is not None:
            cls._add_file_handler(toolkit_logger, Path(log_file), formatter)

        # records stop here, the application root logger stays untouched
        toolkit_logger.propagate = False
        cls._configured = True
        return toolkit_logger

    @staticmethod
    def _add_file_handler(toolkit_logger: logging.Logger, log_file: Path, formatter: logging.Formatter) -> None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _attach(toolkit_logger, logging.FileHandler(log_file), toolkit_logger.level, formatter)
        toolkit_logger.info(f"Logging to file: {log_file}")

    @classmethod
    def configure_from_config(cls, config) -> logging.Logger:
        """
        Apply the ``log_level`` and ``log_file`` entries of a configuration.

        An unknown level name is reported and ignored. A log file already
        attached to the toolkit logger is not attached twice.
        """
        toolkit_logger = cls.setup_root_logger()

        level_name = str(getattr(config, 'log_level', 'INFO')).upper()
        level = logging.getLevelName(level_name)
        if isinstance(level, int):
            cls.set_level(level)
        else:
            toolkit_logger.warning(f"Unknown log level '{level_name}', keeping "
                                   f"{logging.getLevelName(toolkit_logger.level)}")

        log_file = getattr(config, 'log_file', None)
        if not log_file:
            return toolkit_logger

        log_file = Path(log_file).resolve()
        attached = {Path(h.baseFilename) for h in toolkit_logger.handlers if isinstance(h, logging.FileHandler)}
        if log_file not in attached:
            cls._add_file_handler(toolkit_logger, log_file, logging.Formatter(cls._default_format))
        return toolkit_logger

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        cls.setup_root_logger()
        return logging.getLogger(f"{cls._root_logger_name}.{name}")

    @classmethod
    def set_level(cls, level: int) -> None:
        """Set the level of the toolkit logger and of all its handlers."""
        toolkit_logger = logging.getLogger(cls._root_logger_name)
        toolkit_logger.setLevel(level)
        for handler in toolkit_logger.handlers:
            handler.setLevel(level)
        toolkit_logger.debug(f"Logging level changed to: {logging.getLevelName(level)}")


def get_logger(name: str) -> logging.Logger:
    """
    Logger of a toolkit module.

    Args:
        name: Module name, usually ``__name__``

    Returns:
        logging.Logger: Child of the toolkit root logger
    """
    return LoggerConfig.get_logger(name)


LoggerConfig.setup_root_logger()
