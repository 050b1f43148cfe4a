"""
OAuth access token refresh.

When the CRM reports an expired session the executor asks a refresher for
a new access token using the session's refresh token. Refreshes are
idempotent at the provider, so concurrent searches for the same team may
each refresh once; no lock is taken here.
"""

import asyncio
from typing import Optional, Protocol

import aiohttp

from crm_search.config.config import SalesforceConfig
from crm_search.utils.errors import TokenRefreshError
from crm_search.utils.logging import get_logger
from crm_search.utils.metrics import MetricsManager, metrics_manager

logger = get_logger(__name__)


class CredentialRefresher(Protocol):
    """Exchanges a refresh token for a new access token."""

    async def refresh(self, refresh_token: str) -> str:
        ...


class TokenRefresher:
    """
    Refresher using the OAuth 2.0 refresh_token grant.

    Posts to ``{login_url}/services/oauth2/token`` with the connected app's
    client credentials.
    """

    def __init__(
        self,
        config: SalesforceConfig,
        metrics: Optional[MetricsManager] = None,
    ):
        """
        Initialize the token refresher.

        Args:
            config: CRM configuration holding the login URL and client credentials
            metrics: Metrics manager, the process-wide one by default
        """
        self.config = config
        self.metrics = metrics or metrics_manager

    @property
    def token_url(self) -> str:
        return f"{self.config.login_url.rstrip('/')}/services/oauth2/token"

    async def refresh(self, refresh_token: str) -> str:
        """
        Obtain a new access token.

        Args:
            refresh_token: Refresh token stored with the session

        Returns:
            The new access token

        Raises:
            TokenRefreshError: If the provider refuses or cannot be reached
        """
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")

        try:
            access_token = await self._request_token(refresh_token)
        except TokenRefreshError:
            self.metrics.increment_counter("token_refreshes_total", labels={"outcome": "failure"})
            raise

        self.metrics.increment_counter("token_refreshes_total", labels={"outcome": "success"})
        logger.info("Access token refreshed")
        return access_token

    async def _request_token(self, refresh_token: str) -> str:
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.config.client_id or "",
            "client_secret": self.config.client_secret or "",
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.token_url, data=payload) as response:
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"HTTP error refreshing access token: {e}")
            raise TokenRefreshError(f"Token refresh failed: {e}")
        except asyncio.TimeoutError:
            logger.error("Timeout refreshing access token")
            raise TokenRefreshError("Token refresh timed out")

        if response.status != 200 or not isinstance(data, dict) or not data.get("access_token"):
            description = data.get("error_description") if isinstance(data, dict) else None
            logger.error(f"Token refresh rejected: HTTP {response.status} {description or ''}".strip())
            raise TokenRefreshError(
                f"Token refresh rejected: {description or f'HTTP {response.status}'}"
            )

        return data["access_token"]
