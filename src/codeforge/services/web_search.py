"""Web Search Collaborator
========================

Optional research step backed by the Serper Google Search API.

Features:
- ``search(query, api_key)`` never raises; failures come back as
  ``SearchResponse(success=False, error=...)``
- Results are trimmed to the top five organic hits
- ``format_search_results_for_context`` renders results as build context
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

SERPER_ENDPOINT = "https://google.serper.dev/search"
MAX_RESULTS = 5


@dataclass
class SearchResult:
    title: str
    snippet: str
    url: str


@dataclass
class SearchResponse:
    success: bool
    results: List[SearchResult] = field(default_factory=list)
    error: Optional[str] = None


def parse_serper_response(data: Dict[str, Any]) -> List[SearchResult]:
    """Map Serper's ``organic`` hits onto ``SearchResult``."""
    organic = data.get('organic') if isinstance(data, dict) else None
    if not isinstance(organic, list):
        return []
    return [
        SearchResult(
            title=item.get('title') or '',
            snippet=item.get('snippet') or '',
            url=item.get('link') or '',
        )
        for item in organic[:MAX_RESULTS]
        if isinstance(item, dict)
    ]


class WebSearchCollaborator:
    """Serper client.

    Usage:
        searcher = WebSearchCollaborator()
        response = await searcher.search("react drag and drop library", api_key)
    """

    def __init__(self, endpoint: str = SERPER_ENDPOINT, timeout: float = 15.0, session: Any = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session

    async def search(self, query: str, api_key: Optional[str]) -> SearchResponse:
        if not api_key or not api_key.strip():
            return SearchResponse(success=False, error="Serper API key not configured")

        logger.info(f"Web search started: {query!r}")
        try:
            if self._session is not None:
                return await self._post(self._session, query, api_key)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, query, api_key)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Web search network error: {e}")
            return SearchResponse(success=False, error=f"Network error: {e}")

    async def _post(self, session: Any, query: str, api_key: str) -> SearchResponse:
        headers = {"X-API-KEY": api_key, "Content-Type": "application/json"}
        async with session.post(
            self.endpoint,
            json={"q": query, "num": MAX_RESULTS},
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as response:
            if response.status != 200:
                error_text = await response.text()
                logger.error(f"Serper API error {response.status}: {error_text[:200]}")
                return SearchResponse(success=False, error=f"Serper API error: {response.status}")
            data = await response.json()

        results = parse_serper_response(data)
        logger.info(f"Web search completed: {len(results)} results")
        return SearchResponse(success=True, results=results)


def format_search_results_for_context(results: List[SearchResult], query: Optional[str] = None) -> str:
    """Render search results as a numbered context block."""
    if not results:
        return ""

    header = f'Search results for "{query}":' if query else "Recent search results:"
    lines = [header, ""]
    for index, result in enumerate(results, start=1):
        lines.append(f"{index}. {result.title}")
        lines.append(f"   {result.snippet}")
        lines.append(f"   {result.url}")
        lines.append("")
    lines.append("Use this information where it is relevant to the implementation.")
    return "\n".join(lines)


__all__ = [
    'SERPER_ENDPOINT',
    'SearchResponse',
    'SearchResult',
    'WebSearchCollaborator',
    'format_search_results_for_context',
    'parse_serper_response',
]
