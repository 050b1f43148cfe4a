"""
Ticketing backend client.

Keyword searches can optionally include open Jira issues. An unconfigured
client (missing or placeholder credentials) returns no issues without
calling out, so deployments without Jira behave as if nothing matched.
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from crm_search.config.config import JiraConfig
from crm_search.utils.environment import is_configured
from crm_search.utils.errors import BackendError, ErrorCode, UnauthorizedError
from crm_search.utils.logging import get_logger

logger = get_logger(__name__)

ISSUE_FIELDS = ["key", "summary", "status", "assignee", "created", "priority", "description"]


def jql_string(value: str) -> str:
    """Quote a value as a JQL string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_jql(phrase: str) -> str:
    return f"text ~ {jql_string(phrase)} AND status != \"Done\" ORDER BY created DESC"


class JiraClient:
    """Client for the Jira issue search endpoint."""

    def __init__(self, config: Optional[JiraConfig] = None):
        self.config = config or JiraConfig()

    @property
    def configured(self) -> bool:
        return all(
            is_configured(value)
            for value in (self.config.base_url, self.config.username, self.config.api_token)
        )

    @property
    def search_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/rest/api/2/search"

    async def search_issues(self, phrase: str) -> List[Dict[str, Any]]:
        """
        Search open issues mentioning ``phrase``.

        Args:
            phrase: Sanitized keyword phrase

        Returns:
            Raw issue objects, newest first; empty when Jira is not configured

        Raises:
            UnauthorizedError: If Jira rejects the credentials
            BackendError: For any other failure
        """
        if not self.configured:
            logger.debug("Jira not configured, skipping ticket search")
            return []

        params = {
            "jql": build_jql(phrase),
            "maxResults": str(self.config.max_results),
            "fields": ",".join(ISSUE_FIELDS),
        }
        auth = aiohttp.BasicAuth(self.config.username, self.config.api_token)
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout, auth=auth) as session:
                async with session.get(
                    self.search_url,
                    params=params,
                    headers={"Accept": "application/json"},
                ) as response:
                    if response.status == 401:
                        logger.error("Unauthorized request to Jira API")
                        raise UnauthorizedError("Jira authentication failed, check credentials")
                    if response.status != 200:
                        logger.error(f"Jira API error: HTTP {response.status}")
                        raise BackendError(f"Jira search failed: HTTP {response.status}")
                    data = await response.json(content_type=None)

        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"HTTP error calling Jira API: {e}")
            raise BackendError(f"Jira search failed: {e}")

        except asyncio.TimeoutError:
            logger.error("Timeout calling Jira API")
            raise BackendError("Jira search timed out", status_code=504, code=ErrorCode.TIMEOUT)

        issues = data.get("issues") if isinstance(data, dict) else None
        logger.debug(f"Jira returned {len(issues or [])} issues")
        return issues or []
