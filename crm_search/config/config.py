"""
Configuration management for the CRM search engine.

Configuration is loaded from a YAML file (with an optional
environment-specific overlay) or from environment variables, and validated
with pydantic models.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from crm_search.utils.environment import get_env, get_env_bool

ENV_PREFIX = "CRM_SEARCH_"


class SalesforceConfig(BaseModel):
    """Configuration for the CRM REST API and its OAuth token endpoint."""

    login_url: str = Field(
        "https://login.salesforce.com", description="OAuth login host"
    )
    client_id: Optional[str] = Field(None, description="Connected app client id")
    client_secret: Optional[str] = Field(None, description="Connected app client secret")
    api_version: str = Field("v58.0", description="REST API version")
    timeout: int = Field(30, description="Per-request timeout in seconds")
    concurrent_requests: int = Field(
        10, description="Maximum concurrent requests per client"
    )


class JiraConfig(BaseModel):
    """Configuration for the ticketing backend."""

    base_url: Optional[str] = Field(None, description="Jira base URL")
    username: Optional[str] = Field(None, description="Jira user")
    api_token: Optional[str] = Field(None, description="Jira API token")
    max_results: int = Field(5, description="Maximum issues per search")
    timeout: int = Field(30, description="Request timeout in seconds")


class AnalysisConfig(BaseModel):
    """Configuration for the summarization model used by deep analysis."""

    api_key: Optional[str] = Field(None, description="Gemini API key")
    model: str = Field("gemini-1.5-flash", description="Gemini model name")
    api_url: str = Field(
        "https://generativelanguage.googleapis.com/v1beta/models",
        description="Gemini API base URL",
    )
    temperature: float = Field(0.3, description="Sampling temperature")
    max_output_tokens: int = Field(1024, description="Maximum tokens in a summary")
    max_tries: int = Field(3, description="Attempts when the model is rate limited")
    timeout: int = Field(60, description="Request timeout in seconds")


class SearchConfig(BaseModel):
    """Limits applied by the query planner."""

    keyword_limit: int = Field(3, description="Keywords searched in discovery-only mode")
    filtered_limit: int = Field(50, description="Row cap for filtered structured queries")
    fallback_limit: int = Field(20, description="Row cap for the default query")
    id_chunk_size: int = Field(200, description="Identifiers per restricted structured query")
    session_ttl_minutes: int = Field(15, description="Lifetime of cached team sessions")


class ServerConfig(BaseModel):
    """Configuration for the HTTP server."""

    host: str = Field("127.0.0.1", description="Server host")
    port: int = Field(8000, description="Server port")
    workers: int = Field(1, description="Number of worker processes")
    reload: bool = Field(False, description="Enable auto-reload for development")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"], description="CORS allowed origins"
    )
    request_timeout: int = Field(60, description="Keep-alive timeout in seconds")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field("INFO", description="Default logging level")
    config_file: Optional[str] = Field(
        None, description="Path to logging configuration file"
    )
    log_file: Optional[str] = Field(None, description="Path to log file")


class Config(BaseModel):
    """Main configuration for the CRM search engine."""

    salesforce: SalesforceConfig = Field(default_factory=SalesforceConfig)
    jira: JiraConfig = Field(default_factory=JiraConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    debug: bool = Field(False, description="Enable debug mode")
    environment: str = Field("production", description="Deployment environment")


def load_config(config_path: Union[str, Path]) -> Config:
    """
    Load configuration from a YAML file.

    A sibling file named ``<stem>.<ENV>.yaml`` is deep-merged on top when it
    exists, ``ENV`` defaulting to ``local``.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Validated configuration object

    Raises:
        FileNotFoundError: If the configuration file does not exist
        ValueError: If the configuration is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as file:
            config_data = yaml.safe_load(file) or {}

        env_config_path = config_path.parent / f"{config_path.stem}.{get_env('ENV', 'local')}.yaml"
        if env_config_path.exists():
            with open(env_config_path, "r") as file:
                env_config_data = yaml.safe_load(file) or {}
            config_data = _deep_merge(config_data, env_config_data)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid configuration file: {e}")

    if not isinstance(config_data, dict):
        raise ValueError("Invalid configuration: top level must be a mapping")

    try:
        return Config(**config_data)
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}")


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries, values in ``override`` winning."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# (section, key, environment suffix, converter)
_ENV_FIELDS = [
    ("salesforce", "login_url", "SALESFORCE_LOGIN_URL", str),
    ("salesforce", "client_id", "SALESFORCE_CLIENT_ID", str),
    ("salesforce", "client_secret", "SALESFORCE_CLIENT_SECRET", str),
    ("salesforce", "api_version", "SALESFORCE_API_VERSION", str),
    ("salesforce", "timeout", "SALESFORCE_TIMEOUT", int),
    ("jira", "base_url", "JIRA_URL", str),
    ("jira", "username", "JIRA_USERNAME", str),
    ("jira", "api_token", "JIRA_API_TOKEN", str),
    ("analysis", "api_key", "GEMINI_API_KEY", str),
    ("analysis", "model", "GEMINI_MODEL", str),
    ("search", "keyword_limit", "SEARCH_KEYWORD_LIMIT", int),
    ("search", "filtered_limit", "SEARCH_FILTERED_LIMIT", int),
    ("search", "fallback_limit", "SEARCH_FALLBACK_LIMIT", int),
    ("search", "id_chunk_size", "SEARCH_ID_CHUNK_SIZE", int),
    ("server", "host", "SERVER_HOST", str),
    ("server", "port", "SERVER_PORT", int),
    ("logging", "level", "LOGGING_LEVEL", str),
    ("logging", "log_file", "LOGGING_FILE", str),
]


def load_config_from_env() -> Config:
    """
    Load configuration from environment variables.

    Variables are prefixed with CRM_SEARCH_, for example:
        CRM_SEARCH_SALESFORCE_CLIENT_ID=xxx
        CRM_SEARCH_JIRA_URL=https://acme.atlassian.net
        CRM_SEARCH_SERVER_PORT=8080
        CRM_SEARCH_LOGGING_LEVEL=DEBUG

    Returns:
        Validated configuration object

    Raises:
        ValueError: If a value cannot be converted or validated
    """
    config_data: Dict[str, Any] = {}

    try:
        for section, key, suffix, convert in _ENV_FIELDS:
            value = get_env(f"{ENV_PREFIX}{suffix}")
            if value is not None:
                config_data.setdefault(section, {})[key] = convert(value)

        if get_env(f"{ENV_PREFIX}DEBUG") is not None:
            config_data["debug"] = get_env_bool(f"{ENV_PREFIX}DEBUG")

        if env := get_env(f"{ENV_PREFIX}ENVIRONMENT"):
            config_data["environment"] = env

        return Config(**config_data)
    except Exception as e:
        raise ValueError(f"Invalid environment configuration: {e}")
