"""
Tavily AI search tool integration.

Provides clean, parsed web search results for the research agent.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from tavily import AsyncTavilyClient

from ..core.config import settings
from ..core.state import SearchResult
from ..utils.logger import get_logger
from ..utils.helpers import extract_domain, sanitize_text


logger = get_logger()


class SearchError(Exception):
    """A web search could not be performed."""


@dataclass
class TavilySearchConfig:
    """Configuration for Tavily search."""
    max_results: int = 5
    search_depth: str = "basic"  # "basic" or "advanced"
    include_raw_content: bool = False
    include_answer: bool = False


class TavilySearchTool:
    """
    Tavily AI search tool for the research agent.

    Features:
    - Clean, parsed text output (no raw HTML)
    - Results ordered by Tavily relevance score
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[TavilySearchConfig] = None
    ):
        """
        Initialize Tavily search tool.

        Args:
            api_key: Tavily API key
            config: Search configuration
        """
        self.api_key = api_key or settings.tavily_api_key
        self.config = config or TavilySearchConfig(
            max_results=settings.tavily_max_results,
            search_depth=settings.tavily_search_depth,
        )

        if self.api_key:
            self.async_client = AsyncTavilyClient(api_key=self.api_key)
        else:
            self.async_client = None
            logger.with_node("Search").warning(
                "Tavily API key not configured - search will fail"
            )

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        """
        Perform a web search.

        Args:
            query: Search query
            max_results: Maximum number of results

        Returns:
            List of SearchResult objects, most relevant first

        Raises:
            SearchError: when the client is not configured or the call fails
        """
        if not self.async_client:
            raise SearchError("Tavily client not initialized (set BACKPACKFLOW_TAVILY_API_KEY)")

        max_results = max_results or self.config.max_results

        logger.with_node("Search").info(
            f"Searching: {query[:50]}... (max_results={max_results})"
        )

        try:
            response = await self.async_client.search(
                query=query,
                max_results=max_results,
                search_depth=self.config.search_depth,
                include_raw_content=self.config.include_raw_content,
                include_answer=self.config.include_answer
            )
        except Exception as e:
            raise SearchError(f"Tavily search failed for {query!r}: {e}") from e

        results = []
        for item in response.get("results", []):
            url = item.get("url", "")
            results.append(SearchResult(
                title=sanitize_text(item.get("title", "")) or "Untitled",
                url=url,
                content=sanitize_text(item.get("content", "")),
                domain=extract_domain(url),
                score=item.get("score"),
                published_date=item.get("published_date")
            ))

        results.sort(key=lambda r: r.score if r.score is not None else 0.0, reverse=True)

        logger.with_node("Search").info(f"Search complete: {len(results)} results")

        return results


# ==================== Cached Instance ====================

@lru_cache()
def get_tavily_tool() -> TavilySearchTool:
    """Get cached Tavily search tool instance."""
    return TavilySearchTool()
