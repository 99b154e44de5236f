"""
Web search providers.

- tavily: POST https://api.tavily.com/search
- google: Google Custom Search JSON API
- none: disabled, always returns no results
"""

import logging
from typing import List, Optional

import httpx

from review_assistant.config import WEB_SEARCH_PROVIDERS, Settings
from review_assistant.errors import ConfigurationError, ProviderError
from review_assistant.models import WebResult

logger = logging.getLogger(__name__)


class DisabledWebSearch:
    """Provider used when web search is switched off."""

    name = "none"
    throttled = False

    async def search(self, query: str, limit: int = 10) -> List[WebResult]:
        logger.info(f"Web search disabled, skipping {query!r}")
        return []

    async def close(self):
        pass


class TavilyWebSearch:
    name = "tavily"
    throttled = False
    URL = "https://api.tavily.com/search"

    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.client = http_client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str, limit: int = 10) -> List[WebResult]:
        logger.info(f"Tavily search: {query!r}")
        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "basic",
            "include_answer": False,
            "max_results": min(limit, 20),
        }
        data = await _request_json(self.client, "Tavily", "POST", self.URL, json=payload)
        try:
            return [
                WebResult(url=r["url"], title=r.get("title", ""), snippet=r.get("content", ""))
                for r in data.get("results", [])
                if r.get("url")
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Tavily returned an unexpected result entry: {e!r}") from e

    async def close(self):
        await self.client.aclose()


class GoogleWebSearch:
    name = "google"
    throttled = False
    URL = "https://www.googleapis.com/customsearch/v1"

    def __init__(self, api_key: str, cse_id: str, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.cse_id = cse_id
        self.client = http_client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str, limit: int = 10) -> List[WebResult]:
        logger.info(f"Google CSE search: {query!r}")
        params = {"key": self.api_key, "cx": self.cse_id, "q": query, "num": min(limit, 10)}
        data = await _request_json(self.client, "Google Search", "GET", self.URL, params=params)
        # no "items" key means no hits
        try:
            return [
                WebResult(url=item["link"], title=item.get("title", ""), snippet=item.get("snippet", ""))
                for item in data.get("items", [])
                if item.get("link")
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Google Search returned an unexpected result entry: {e!r}") from e

    async def close(self):
        await self.client.aclose()


async def _request_json(client: httpx.AsyncClient, provider: str, method: str, url: str, **kwargs) -> dict:
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.RequestError as e:
        raise ProviderError(f"{provider} request failed: {e}") from e
    if not resp.is_success:
        try:
            body = resp.json()
            error = body.get("error") or body.get("detail") or resp.reason_phrase
            message = error.get("message", resp.reason_phrase) if isinstance(error, dict) else error
        except (ValueError, AttributeError):
            message = resp.reason_phrase
        raise ProviderError(f"{provider} API error ({resp.status_code}): {message}", resp.status_code)
    try:
        data = resp.json()
    except ValueError as e:
        raise ProviderError(f"{provider} returned invalid JSON") from e
    if not isinstance(data, dict):
        raise ProviderError(f"{provider} returned {type(data).__name__} instead of an object")
    return data


def build_web_search(settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
    """Pick the provider named in settings, checking that its credentials exist."""
    provider = settings.web_search_provider
    if provider == "none":
        return DisabledWebSearch()
    if provider == "tavily":
        if not settings.tavily_api_key:
            raise ConfigurationError("TAVILY_API_KEY is required for the tavily web search provider")
        return TavilyWebSearch(settings.tavily_api_key, http_client=http_client)
    if provider == "google":
        if not settings.google_api_key or not settings.google_cse_id:
            raise ConfigurationError("GOOGLE_API_KEY and GOOGLE_CSE_ID are required for the google web search provider")
        return GoogleWebSearch(settings.google_api_key, settings.google_cse_id, http_client=http_client)
    raise ConfigurationError(
        f"Unknown web search provider {provider!r}; expected one of {', '.join(WEB_SEARCH_PROVIDERS)}"
    )
