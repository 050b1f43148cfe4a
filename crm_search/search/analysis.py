"""
Deep analysis of search results.

When an intent asks for deep analysis, the merged buckets are handed to a
summarizer and its text is attached to the response. A failing summarizer
never fails the search; the response carries a fixed fallback string
instead.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
import backoff

from crm_search.config.config import AnalysisConfig
from crm_search.search.intent import SearchIntent
from crm_search.search.merger import ResultBuckets
from crm_search.utils.errors import (
    BackendError,
    ErrorCode,
    RateLimitedError,
    UnauthorizedError,
)
from crm_search.utils.logging import get_logger

logger = get_logger(__name__)

ANALYSIS_FALLBACK = "analysis unavailable, raw results returned"

RECORDS_PER_BUCKET = 5

# Fields shown for a record in the prompt, in this order when present
RECORD_LABEL_FIELDS = [
    "CaseNumber",
    "key",
    "Name",
    "Subject",
    "summary",
    "Status",
    "StageName",
    "Priority",
    "Amount",
    "Rating",
    "Title",
]

CODE_FENCE = re.compile(r"```[^\n]*\n|\n?```")


class Summarizer(Protocol):
    """Produces a free-text analysis of merged results or of a prepared prompt."""

    async def summarize(self, buckets: ResultBuckets, intent: SearchIntent) -> str:
        ...

    async def complete(self, prompt: str) -> str:
        ...


def describe_record(record: Dict[str, Any]) -> str:
    values = []
    for field in RECORD_LABEL_FIELDS:
        value = record.get(field)
        if isinstance(value, dict):
            value = value.get("name") or value.get("Name")
        if value not in (None, ""):
            values.append(f"{field}: {value}")
    return ", ".join(values) or str(record.get("Id", "unknown record"))


def build_prompt(buckets: ResultBuckets, intent: SearchIntent) -> str:
    """
    Build the analysis prompt.

    At most RECORDS_PER_BUCKET records of each non-empty bucket are listed,
    followed by the keywords that were searched.
    """
    lines = ["Analyze these CRM records found through search:", ""]
    for name, records in buckets.items():
        if not records:
            continue
        lines.append(f"{name.capitalize()} ({len(records)} found):")
        lines.extend(f"- {describe_record(record)}" for record in records[:RECORDS_PER_BUCKET])
        lines.append("")

    keywords = ", ".join(intent.keywords) if intent.keywords else "none"
    lines.append(f"Keywords searched: {keywords}")
    lines.append("")
    lines.append("Please provide:")
    lines.append("1. Patterns: what common themes do you see?")
    lines.append("2. Priority assessment: which records need immediate attention?")
    lines.append("3. Root cause insights: what might be causing these issues?")
    lines.append("4. Recommendations: what actions should be taken?")
    lines.append("")
    lines.append("Be specific and actionable.")
    return "\n".join(lines)


def strip_code_fences(text: str) -> str:
    return CODE_FENCE.sub("", text).strip()


class AnalysisHook:
    """Runs the summarizer for intents that request deep analysis."""

    def __init__(self, summarizer: Optional[Summarizer] = None):
        self.summarizer = summarizer

    async def analyze(
        self, buckets: ResultBuckets, intent: SearchIntent, total_count: int
    ) -> Optional[str]:
        """
        Summarize the buckets if the intent asks for it.

        Args:
            buckets: Merged result buckets
            intent: Search intent
            total_count: Number of merged records

        Returns:
            The summary text, the fallback string on failure, or None when
            no analysis was requested or nothing was found
        """
        if not intent.deep_analysis or total_count == 0:
            return None

        if self.summarizer is None:
            logger.warning("Deep analysis requested but no summarizer is configured")
            return ANALYSIS_FALLBACK

        try:
            return await self.summarizer.summarize(buckets, intent)
        except Exception as e:
            logger.error(f"Deep analysis failed: {e}")
            return ANALYSIS_FALLBACK

    async def analyze_prompt(self, prompt: str) -> str:
        """
        Run the summarizer on a prepared prompt.

        Returns:
            The reply text, or the fallback string when no summarizer is
            configured or the call fails
        """
        if self.summarizer is None:
            logger.warning("Analysis requested but no summarizer is configured")
            return ANALYSIS_FALLBACK

        try:
            return await self.summarizer.complete(prompt)
        except Exception as e:
            logger.error(f"Analysis failed: {e}")
            return ANALYSIS_FALLBACK


class GeminiSummarizer:
    """
    Summarizer backed by the Gemini generateContent API.

    Rate-limited calls (HTTP 429) are retried with exponential backoff up to
    ``max_tries`` attempts in total.
    """

    def __init__(self, config: AnalysisConfig):
        """
        Initialize the summarizer.

        Args:
            config: Analysis configuration holding the API key and model

        Raises:
            UnauthorizedError: If no API key is configured
        """
        if not config.api_key:
            raise UnauthorizedError("Gemini API key is not configured")
        self.config = config

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/{self.config.model}:generateContent"

    async def summarize(self, buckets: ResultBuckets, intent: SearchIntent) -> str:
        return await self.complete(build_prompt(buckets, intent))

    async def complete(self, prompt: str) -> str:
        """Send ``prompt`` to the model and return its reply without code fences."""
        generate = backoff.on_exception(
            backoff.expo,
            RateLimitedError,
            max_tries=self.config.max_tries,
            jitter=backoff.full_jitter,
        )(self._generate)
        text = await generate(prompt)
        return strip_code_fences(text)

    async def _generate(self, prompt: str) -> str:
        """
        Send one generateContent request.

        Raises:
            RateLimitedError: On HTTP 429
            BackendError: On any other failure
        """
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.endpoint,
                    params={"key": self.config.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if response.status == 429:
                        logger.warning("Gemini API rate limited")
                        raise RateLimitedError("Gemini API rate limit exceeded")
                    if response.status != 200:
                        logger.error(f"Gemini API error: HTTP {response.status}")
                        raise BackendError(
                            f"Gemini API error: HTTP {response.status}",
                            code=ErrorCode.ANALYSIS_UNAVAILABLE,
                        )
                    data = await response.json(content_type=None)

        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"HTTP error calling Gemini API: {e}")
            raise BackendError(f"HTTP error: {e}", code=ErrorCode.ANALYSIS_UNAVAILABLE)

        except asyncio.TimeoutError:
            logger.error("Timeout calling Gemini API")
            raise BackendError("Request timed out", code=ErrorCode.ANALYSIS_UNAVAILABLE)

        return extract_text(data)


def extract_text(data: Any) -> str:
    """
    Pull the reply text out of a generateContent response.

    Raises:
        BackendError: If the response carries no candidate text
    """
    try:
        parts: List[Dict[str, Any]] = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)
    except (KeyError, IndexError, TypeError) as e:
        raise BackendError(
            f"Unexpected Gemini response: {e}", code=ErrorCode.ANALYSIS_UNAVAILABLE
        )
