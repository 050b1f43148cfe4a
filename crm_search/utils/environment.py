"""
Environment variable helpers.

Credentials for the CRM, the ticketing backend and the summarizer usually
arrive through the environment, optionally from a ``.env`` file.
"""

import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

PLACEHOLDER_VALUES = ("", "placeholder", "changeme", "https://example.atlassian.net")


def load_env_file(env_file: Optional[Union[str, Path]] = None) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        env_file: Path to .env file. If not provided, the nearest .env in the
                  current directory or its parents is used.

    Returns:
        True if a file was found and loaded
    """
    if env_file:
        return load_dotenv(env_file)
    return load_dotenv(dotenv_path=None, override=False)


def get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable, or ``default`` when unset."""
    return os.getenv(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """
    Get a boolean environment variable.

    "1", "true", "yes" and "y" (case insensitive) are true.
    """
    value = get_env(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "y")


def is_configured(value: Optional[str]) -> bool:
    """Return True if ``value`` is set to something other than a placeholder."""
    return value is not None and value.strip() not in PLACEHOLDER_VALUES
