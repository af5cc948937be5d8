"""
Logging Configuration
=====================

Centralized logging for codeforge:
- Colored console output (colorama) with shortened logger names
- Optional rotating file log without colors
- Idempotent setup that leaves foreign handlers (e.g. pytest caplog) alone
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from colorama import Fore, Style, just_fix_windows_console

APP_LOGGER_NAME = "codeforge"


class ColoredSmartFormatter(logging.Formatter):
    """Formatter with color coding per level and per component."""

    def __init__(self, include_function: bool = False, use_colors: bool = True):
        self.include_function = include_function
        self.use_colors = use_colors
        super().__init__()

        self.level_colors = {
            logging.DEBUG: Fore.CYAN,
            logging.INFO: Fore.GREEN,
            logging.WARNING: Fore.YELLOW,
            logging.ERROR: Fore.RED,
            logging.CRITICAL: Fore.RED + Style.BRIGHT,
        }

        self.component_colors = {
            'gateway': Fore.BLUE,
            'circuit': Fore.MAGENTA,
            'engine': Fore.CYAN,
            'fix': Fore.YELLOW,
            'search': Fore.GREEN,
        }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, '%H:%M:%S')
        level = record.levelname
        name = self._clean_logger_name(record.name)
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if self.use_colors:
            level_color = self.level_colors.get(record.levelno, "")
            colored_level = f"{level_color}{level:8}{Style.RESET_ALL}"
            colored_name = f"{self._get_component_color(name)}{name:20}{Style.RESET_ALL}"
        else:
            colored_level = f"{level:8}"
            colored_name = f"{name:20}"

        if self.include_function and record.levelno >= logging.WARNING:
            location = f"[{record.funcName}:{record.lineno}]"
            if self.use_colors:
                location = f"{Fore.WHITE}{Style.DIM}{location}{Style.RESET_ALL}"
            return f"[{timestamp}] {colored_level} {colored_name} {location} {message}"
        return f"[{timestamp}] {colored_level} {colored_name} {message}"

    def _clean_logger_name(self, name: str) -> str:
        """Shorten logger names for readability."""
        replacements = {
            'codeforge.services.gateway.': 'gateway.',
            'codeforge.services.': 'svc.',
            'codeforge.engines.': 'engine.',
            'codeforge.utils.': 'util.',
        }
        for old, new in replacements.items():
            if name.startswith(old):
                name = new + name[len(old):]
                break

        if len(name) > 20:
            name = name[:17] + "..."
        return name

    def _get_component_color(self, name: str) -> str:
        name_lower = name.lower()
        for component, color in self.component_colors.items():
            if component in name_lower:
                return color
        return Fore.WHITE


class LoggingConfig:
    """Centralized logging configuration for the engine."""

    def __init__(self, app_name: str = APP_LOGGER_NAME, log_dir: Optional[Path] = None):
        self.app_name = app_name
        env_dir = os.environ.get('CODEFORGE_LOG_DIR')
        self.log_dir = log_dir or (Path(env_dir) if env_dir else None)
        self.log_level = self._get_log_level()
        self.use_colors = sys.stdout.isatty() and os.environ.get('NO_COLOR') is None

    def setup_logging(self) -> logging.Logger:
        """Attach console (and optional file) handlers to the root logger."""
        root_logger = logging.getLogger()
        # Only replace handlers attached by a previous call
        for handler in list(root_logger.handlers):
            if getattr(handler, "_codeforge", False):
                root_logger.removeHandler(handler)
        root_logger.setLevel(self.log_level)

        if self.use_colors:
            just_fix_windows_console()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(ColoredSmartFormatter(
            include_function=self.log_level <= logging.DEBUG,
            use_colors=self.use_colors,
        ))
        console_handler._codeforge = True  # type: ignore[attr-defined]
        root_logger.addHandler(console_handler)

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                self.log_dir / "codeforge.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8',
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(ColoredSmartFormatter(include_function=True, use_colors=False))
            file_handler._codeforge = True  # type: ignore[attr-defined]
            root_logger.addHandler(file_handler)

        self._configure_specific_loggers()

        app_logger = logging.getLogger(self.app_name)
        app_logger.info(f"Logging configured - Level: {logging.getLevelName(self.log_level)}")
        return app_logger

    def _get_log_level(self) -> int:
        level_str = os.environ.get('LOG_LEVEL', 'INFO').upper()
        return getattr(logging, level_str, logging.INFO)

    def _configure_specific_loggers(self) -> None:
        """Reduce third-party verbosity."""
        for name in ('aiohttp.access', 'aiohttp.client', 'asyncio'):
            logging.getLogger(name).setLevel(logging.WARNING)


# Global instance
_logging_config: Optional[LoggingConfig] = None


def get_logging_config() -> LoggingConfig:
    """Get the global logging configuration instance."""
    global _logging_config
    if _logging_config is None:
        _logging_config = LoggingConfig()
    return _logging_config


def setup_application_logging() -> logging.Logger:
    """Setup application logging - call this once at startup."""
    return get_logging_config().setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the application namespace."""
    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


__all__ = [
    'ColoredSmartFormatter',
    'LoggingConfig',
    'get_logging_config',
    'setup_application_logging',
    'get_logger',
]
