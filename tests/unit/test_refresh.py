"""
Tests for the OAuth token refresher.
"""

from unittest.mock import patch

import aiohttp
import pytest

from crm_search.auth.refresh import TokenRefresher
from crm_search.config.config import SalesforceConfig
from crm_search.utils.errors import TokenRefreshError


@pytest.fixture
def refresher(test_config, metrics):
    return TokenRefresher(test_config.salesforce, metrics=metrics)


def test_token_url():
    refresher = TokenRefresher(SalesforceConfig(login_url="https://login.example.com/"))
    assert refresher.token_url == "https://login.example.com/services/oauth2/token"


@pytest.mark.asyncio
async def test_refresh_success(refresher, metrics, http_session):
    context, session = http_session(200, {"access_token": "new_token"})

    with patch("aiohttp.ClientSession", return_value=context):
        token = await refresher.refresh("refresh_token")

    assert token == "new_token"
    data = session.post.call_args.kwargs["data"]
    assert data["grant_type"] == "refresh_token"
    assert data["refresh_token"] == "refresh_token"
    assert data["client_id"] == "test_client_id"
    assert metrics.sample_value("token_refreshes_total", {"outcome": "success"}) == 1


@pytest.mark.asyncio
async def test_refresh_rejected(refresher, metrics, http_session):
    context, _ = http_session(
        400, {"error": "invalid_grant", "error_description": "expired access/refresh token"}
    )

    with patch("aiohttp.ClientSession", return_value=context):
        with pytest.raises(TokenRefreshError) as exc_info:
            await refresher.refresh("refresh_token")

    assert "expired access/refresh token" in exc_info.value.message
    assert metrics.sample_value("token_refreshes_total", {"outcome": "failure"}) == 1


@pytest.mark.asyncio
async def test_refresh_without_access_token(refresher, http_session):
    context, _ = http_session(200, {"instance_url": "https://acme.example.com"})

    with patch("aiohttp.ClientSession", return_value=context):
        with pytest.raises(TokenRefreshError):
            await refresher.refresh("refresh_token")


@pytest.mark.asyncio
async def test_refresh_connection_error(refresher, metrics):
    with patch("aiohttp.ClientSession", side_effect=aiohttp.ClientError("refused")):
        with pytest.raises(TokenRefreshError):
            await refresher.refresh("refresh_token")

    assert metrics.sample_value("token_refreshes_total", {"outcome": "failure"}) == 1


@pytest.mark.asyncio
async def test_refresh_requires_token(refresher, metrics):
    with patch("aiohttp.ClientSession") as client_session:
        with pytest.raises(TokenRefreshError):
            await refresher.refresh("")

    client_session.assert_not_called()
    assert metrics.sample_value("token_refreshes_total", {"outcome": "failure"}) == 0
