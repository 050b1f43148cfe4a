"""
Logging configuration for the CRM search engine.

Logging is configured once at startup through ``logging.config.dictConfig``;
a YAML file can replace the built-in configuration entirely.
"""

import copy
import logging
import logging.config
import os
import sys
from typing import Any, Dict, Optional

import yaml

DEFAULT_LOG_FILE = "logs/crm_search.log"

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "detailed": {
            "format": (
                "%(asctime)s - %(name)s - %(levelname)s - "
                "%(filename)s:%(lineno)d - %(message)s"
            )
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": DEFAULT_LOG_FILE,
            "maxBytes": 10485760,  # 10 MB
            "backupCount": 5,
            "encoding": "utf8",
        },
    },
    "loggers": {
        # aiohttp logs every connection at DEBUG
        "aiohttp": {"level": "WARNING"},
        "": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": True,
        },
    },
}


def _load_yaml_config(config_path: str) -> Optional[Dict[str, Any]]:
    try:
        with open(config_path, "r") as file:
            return yaml.safe_load(file) or None
    except (OSError, yaml.YAMLError) as e:
        print(f"Error loading logging config from {config_path}: {e}", file=sys.stderr)
        return None


def configure_logging(
    config_path: Optional[str] = None,
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        config_path: Path to logging configuration YAML file
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Override log file path; an empty string disables file logging
    """
    config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)

    if config_path and os.path.exists(config_path):
        file_config = _load_yaml_config(config_path)
        if file_config:
            config = file_config

    handlers = config.get("handlers", {})
    root = config.get("loggers", {}).get("")

    if log_file == "" and "file" in handlers:
        del handlers["file"]
        if root and "file" in root.get("handlers", []):
            root["handlers"] = [h for h in root["handlers"] if h != "file"]
    elif log_file and "file" in handlers:
        handlers["file"]["filename"] = log_file

    if "file" in handlers:
        log_directory = os.path.dirname(handlers["file"]["filename"])
        if log_directory:
            os.makedirs(log_directory, exist_ok=True)

    if log_level and isinstance(getattr(logging, log_level.upper(), None), int):
        level = log_level.upper()
        if root is not None:
            root["level"] = level
        if "console" in handlers:
            handlers["console"]["level"] = level

    try:
        logging.config.dictConfig(config)
    except (ValueError, TypeError, AttributeError, ImportError) as e:
        print(f"Error configuring logging: {e}", file=sys.stderr)
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stdout)],
        )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
