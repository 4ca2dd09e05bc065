# src/convocore/logging_config.py
"""
Logging setup for applications embedding the conversation engine.

Library modules only ever call ``logging.getLogger(__name__)``; handlers
are installed here, once per process, from the ``[logging]`` section of
the confy-loaded configuration.

Two outputs are managed:

- A log file holding everything at ``file_level``, either one file per
  run (``file_mode = "per_run"``) or a single size-rotated file
  (``file_mode = "single"``).
- stderr. With ``console_enabled = false`` the console only shows records
  logged through :func:`log_display`, so an operator sees session
  lifecycle events (started, ended, archived) without per-turn noise.

Usage:
    from convocore.logging_config import configure_logging, log_display

    configure_logging(app_name="health-chat")
    log_display(logging.getLogger("convocore.sessions"), logging.INFO, "Session %s archived", sid)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError

NULL_LOG_PATH = Path("/dev/null")

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/convocore/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "convocore": "INFO",
        "confy": "WARNING",
        "aiohttp": "WARNING",
        "asyncio": "WARNING",
    },
}


def _level_from(value: Any, fallback: int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else fallback


def _warn(message: str) -> None:
    # Logging is not set up yet when these happen.
    sys.stderr.write(f"convocore logging: {message}\n")


def _log_filename(settings: dict[str, Any], app_name: str) -> str:
    """File name for the configured mode; malformed patterns fall back to plain names."""
    if settings.get("file_mode", "per_run") == "single":
        try:
            return settings.get("file_single_name", "{app}.log").format(app=app_name)
        except (KeyError, ValueError):
            return f"{app_name}.log"
    started = datetime.now()
    try:
        return settings.get("file_name_pattern", DEFAULT_LOGGING_CONFIG["file_name_pattern"]).format(
            app=app_name, timestamp=started
        )
    except (KeyError, ValueError):
        return f"{app_name}_{started:%Y%m%d_%H%M%S}.log"


class DisplayFilter(logging.Filter):
    """
    Console gate.

    In verbose mode (``console_globally_enabled``) every record passes.
    Otherwise only records flagged ``display=True`` at or above
    ``display_min_level`` do.
    """

    def __init__(self, console_globally_enabled: bool = False, display_min_level: int = logging.INFO) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        return bool(getattr(record, "display", False)) and record.levelno >= self.display_min_level


class UnifiedLoggingManager:
    """Process-wide owner of the root logger's handlers."""

    _instance: Optional["UnifiedLoggingManager"] = None
    _configured: bool = False
    _log_file_path: Path | None = None
    _console_handler: logging.Handler | None = None
    _file_handler: logging.Handler | None = None
    _display_filter: DisplayFilter | None = None

    def __new__(cls) -> "UnifiedLoggingManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_instance(cls) -> "UnifiedLoggingManager":
        return cls()

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Path | None:
        return cls._log_file_path

    def configure(
        self,
        app_name: str = "convocore",
        config: dict[str, Any] | None = None,
        config_file_path: str | Path | None = None,
        force_reconfigure: bool = False,
    ) -> Path:
        """
        Replace the root logger's handlers according to the logging settings.

        Args:
            app_name: Used in the log file name.
            config: Logging settings; read through confy when omitted.
            config_file_path: TOML file consulted when ``config`` is omitted.
            force_reconfigure: Configure again even if already configured.

        Returns:
            The log file path, or ``/dev/null`` when no file is written.
        """
        if UnifiedLoggingManager._configured and not force_reconfigure:
            return UnifiedLoggingManager._log_file_path or NULL_LOG_PATH

        settings = self._resolve_settings(config, config_file_path)
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        root.setLevel(logging.DEBUG)

        verbose = bool(settings.get("console_enabled", False))
        self._install_console(
            settings.get("console_level", "WARNING") if verbose else logging.DEBUG,
            DisplayFilter(verbose, _level_from(settings.get("display_min_level", "INFO"), logging.INFO)),
            settings.get("console_format", DEFAULT_LOGGING_CONFIG["console_format"]),
        )

        self._file_handler, log_path = None, None
        if settings.get("file_enabled", True):
            self._file_handler, log_path = self._open_file_handler(settings, app_name)
            if self._file_handler is not None:
                root.addHandler(self._file_handler)

        for component, level in settings.get("components", DEFAULT_LOGGING_CONFIG["components"]).items():
            logging.getLogger(component).setLevel(_level_from(level, logging.INFO))

        UnifiedLoggingManager._configured = True
        UnifiedLoggingManager._log_file_path = log_path
        if log_path is not None:
            logging.getLogger(__name__).debug("Logging to %s", log_path)
        return log_path or NULL_LOG_PATH

    @staticmethod
    def _resolve_settings(config: dict[str, Any] | None, config_file_path: str | Path | None) -> dict[str, Any]:
        if config is None:
            from .config.loader import load_logging_section

            try:
                config = load_logging_section(config_file_path)
            except ConfigError as e:
                _warn(f"using default settings, the [logging] section could not be loaded: {e}")
                config = {}
        return {**DEFAULT_LOGGING_CONFIG, **config}

    def _install_console(self, level: str | int, display_filter: DisplayFilter, fmt: str) -> None:
        root = logging.getLogger()
        if self._console_handler is not None:
            root.removeHandler(self._console_handler)
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(_level_from(level, logging.WARNING))
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(display_filter)
        root.addHandler(handler)
        self._console_handler = handler
        self._display_filter = display_filter

    @staticmethod
    def _open_file_handler(settings: dict[str, Any], app_name: str) -> tuple[logging.Handler | None, Path | None]:
        directory = Path(os.path.expanduser(settings.get("file_directory", DEFAULT_LOGGING_CONFIG["file_directory"])))
        path = directory / _log_filename(settings, app_name)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            if settings.get("file_mode", "per_run") == "single":
                handler: logging.Handler = RotatingFileHandler(
                    path,
                    maxBytes=settings.get("rotation_max_bytes", DEFAULT_LOGGING_CONFIG["rotation_max_bytes"]),
                    backupCount=settings.get("rotation_backup_count", DEFAULT_LOGGING_CONFIG["rotation_backup_count"]),
                    encoding="utf-8",
                )
            else:
                handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            _warn(f"file logging disabled, cannot open {path}: {e}")
            return None, None
        handler.setLevel(_level_from(settings.get("file_level", "DEBUG"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(settings.get("file_format", DEFAULT_LOGGING_CONFIG["file_format"])))
        return handler, path

    # -- runtime adjustment -------------------------------------------------

    def set_console_level(self, level: str | int) -> None:
        if self._console_handler is not None:
            self._console_handler.setLevel(_level_from(level, self._console_handler.level))

    def set_file_level(self, level: str | int) -> None:
        if self._file_handler is not None:
            self._file_handler.setLevel(_level_from(level, self._file_handler.level))

    @staticmethod
    def set_component_level(component: str, level: str | int) -> None:
        target = logging.getLogger(component)
        target.setLevel(_level_from(level, target.level))

    def disable_console(self) -> None:
        """Drop the console handler entirely, display records included."""
        if self._console_handler is not None:
            logging.getLogger().removeHandler(self._console_handler)
        self._console_handler = None
        self._display_filter = None

    def enable_console(self, level: str = "WARNING") -> None:
        """Switch the console to verbose mode at ``level``."""
        if self._display_filter is not None and self._display_filter.console_globally_enabled:
            return
        self._install_console(level, DisplayFilter(True, logging.DEBUG), DEFAULT_LOGGING_CONFIG["console_format"])


def configure_logging(
    app_name: str = "convocore",
    config: dict[str, Any] | None = None,
    config_file_path: str | Path | None = None,
    force_reconfigure: bool = False,
) -> Path:
    """
    Configure logging for the embedding application; later calls are no-ops.

    Without ``config`` the ``[logging]`` section is read from the packaged
    defaults, ``config_file_path`` and ``CONVOCORE_LOGGING__*`` variables.

    Example:
        configure_logging(app_name="health-chat", config={"console_enabled": True, "file_enabled": False})
    """
    return UnifiedLoggingManager.get_instance().configure(app_name, config, config_file_path, force_reconfigure)


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Log ``msg`` flagged for the console; caller ``extra`` fields are kept."""
    kwargs["extra"] = {**(kwargs.get("extra") or {}), "display": True}
    logger.log(level, msg, *args, **kwargs)


def get_log_file_path() -> Path | None:
    return UnifiedLoggingManager.get_log_file_path()


def set_console_level(level: str | int) -> None:
    UnifiedLoggingManager.get_instance().set_console_level(level)


def set_file_level(level: str | int) -> None:
    UnifiedLoggingManager.get_instance().set_file_level(level)


def set_component_level(component: str, level: str | int) -> None:
    UnifiedLoggingManager.set_component_level(component, level)


def disable_console_logging() -> None:
    UnifiedLoggingManager.get_instance().disable_console()


def enable_console_logging(level: str = "WARNING") -> None:
    UnifiedLoggingManager.get_instance().enable_console(level)
