"""
CRM REST API client.

This module provides the transport used by the retrieval executor: one call
for SOSL discovery queries and one for SOQL structured queries. Errors are
mapped onto the search exception hierarchy, with an expired or revoked
access token surfacing as SessionInvalidError so the caller can refresh.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
from pydantic import BaseModel, Field

from crm_search.auth.session import CrmSession
from crm_search.config.config import SalesforceConfig
from crm_search.utils.errors import (
    BackendError,
    ErrorCode,
    NotConnectedError,
    NotFoundError,
    RateLimitedError,
    SearchEngineError,
    SessionInvalidError,
)
from crm_search.utils.logging import get_logger

logger = get_logger(__name__)

MALFORMED_QUERY_CODES = {
    "MALFORMED_QUERY",
    "MALFORMED_SEARCH",
    "INVALID_FIELD",
    "INVALID_TYPE",
    "INVALID_QUERY_FILTER_OPERATOR",
}


class DiscoveryHit(BaseModel):
    """A record returned by a discovery query, tagged with its object type."""

    id: Optional[str] = None
    object_type: str
    record: Dict[str, Any] = Field(default_factory=dict)


class DiscoveryResponse(BaseModel):
    hits: List[DiscoveryHit] = Field(default_factory=list)


class StructuredResponse(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list)
    total_size: int = 0
    done: bool = True


class CrmTransport(Protocol):
    """Backend operations the retrieval executor depends on."""

    async def run_discovery_query(self, query: str) -> DiscoveryResponse:
        ...

    async def run_structured_query(self, query: str) -> StructuredResponse:
        ...


def parse_discovery_payload(payload: Any) -> DiscoveryResponse:
    """
    Convert a search endpoint payload into discovery hits.

    Both the ``{"searchRecords": [...]}`` shape and the bare list returned
    by older API versions are accepted.
    """
    records = payload.get("searchRecords", []) if isinstance(payload, dict) else payload or []
    hits = []
    for record in records:
        object_type = (record.get("attributes") or {}).get("type")
        if not object_type:
            logger.debug("Skipping discovery record without a type tag")
            continue
        hits.append(DiscoveryHit(id=record.get("Id"), object_type=object_type, record=record))
    return DiscoveryResponse(hits=hits)


def parse_structured_payload(payload: Dict[str, Any]) -> StructuredResponse:
    records = payload.get("records") or []
    return StructuredResponse(
        records=records,
        total_size=payload.get("totalSize", len(records)),
        done=payload.get("done", True),
    )


def error_from_response(status: int, payload: Any) -> SearchEngineError:
    """
    Map an error response onto the exception the caller should see.

    The REST API reports errors as a list of ``{"errorCode", "message"}``
    objects; the first entry decides the exception type.
    """
    error_code = None
    message = f"HTTP {status}"
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        error_code = payload[0].get("errorCode")
        message = payload[0].get("message") or message
    elif isinstance(payload, dict):
        error_code = payload.get("errorCode") or payload.get("error")
        message = payload.get("message") or payload.get("error_description") or message

    if error_code == "INVALID_SESSION_ID" or status == 401:
        return SessionInvalidError(message)
    if error_code == "REQUEST_LIMIT_EXCEEDED" or status == 429:
        return RateLimitedError(message)
    if error_code in MALFORMED_QUERY_CODES:
        return BackendError(message, status_code=400, code=ErrorCode.MALFORMED_QUERY)
    if error_code == "NOT_FOUND" or status == 404:
        return NotFoundError(message)
    return BackendError(f"{error_code}: {message}" if error_code else message)


class SalesforceClient:
    """
    Client for the CRM REST query and search endpoints.

    The access token is read from the session on every request, so a token
    replaced by a refresh is used by the next call without rebuilding the
    client.
    """

    def __init__(self, session: CrmSession, config: Optional[SalesforceConfig] = None):
        """
        Initialize the client.

        Args:
            session: Credential/session object for the team
            config: CRM configuration

        Raises:
            NotConnectedError: If the session has no access token or instance URL
        """
        if session is None or not session.access_token or not session.instance_url:
            raise NotConnectedError("CRM backend not connected for this team")

        self.session = session
        self.config = config or SalesforceConfig()
        self.request_semaphore = asyncio.Semaphore(self.config.concurrent_requests)

    @property
    def base_url(self) -> str:
        return f"{self.session.instance_url}/services/data/{self.config.api_version}"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.session.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _get(self, path: str, query: str) -> Any:
        """
        Issue a GET with ``q=query`` and return the decoded JSON body.

        Raises:
            SessionInvalidError: If the access token was rejected
            BackendError: For any other failure, including timeouts
        """
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        async with self.request_semaphore:
            try:
                async with aiohttp.ClientSession(timeout=timeout) as http:
                    async with http.get(
                        f"{self.base_url}/{path}",
                        params={"q": query},
                        headers=self._get_headers(),
                    ) as response:
                        if response.status >= 400:
                            try:
                                payload = await response.json(content_type=None)
                            except ValueError:
                                # Error pages from proxies and gateways are not JSON
                                payload = None
                            raise error_from_response(response.status, payload)
                        return await response.json(content_type=None)

            except aiohttp.ClientError as e:
                logger.error(f"HTTP error calling CRM {path} endpoint: {e}")
                raise BackendError(f"HTTP error: {e}")

            except asyncio.TimeoutError:
                logger.error(f"Timeout calling CRM {path} endpoint")
                raise BackendError("Request timed out", status_code=504, code=ErrorCode.TIMEOUT)

            except ValueError as e:
                logger.error(f"Undecodable response from CRM {path} endpoint: {e}")
                raise BackendError(f"Invalid response: {e}")

    async def run_discovery_query(self, query: str) -> DiscoveryResponse:
        """Execute a SOSL query against the search endpoint."""
        logger.debug(f"SOSL: {query}")
        response = parse_discovery_payload(await self._get("search", query))
        logger.debug(f"SOSL returned {len(response.hits)} records")
        return response

    async def run_structured_query(self, query: str) -> StructuredResponse:
        """Execute a SOQL query against the query endpoint."""
        logger.debug(f"SOQL: {query}")
        payload = await self._get("query", query)
        if not isinstance(payload, dict):
            raise BackendError("Unexpected query response shape")
        return parse_structured_payload(payload)
