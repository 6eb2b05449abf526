"""
Google search through the Serper API: web results, images and videos.
Returns mock results when no API key is configured.
"""

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)


MOCK_RESULTS = {
    "organic": [
        {
            "title": "Mock Result 1 - Placeholder",
            "link": "https://example.com/result1",
            "snippet": "This is a mock search result. Set SERPER_API_KEY to enable real results.",
        },
        {
            "title": "Mock Result 2 - Placeholder",
            "link": "https://example.com/result2",
            "snippet": "Second mock result. The rest of the pipeline works identically with real data.",
        },
    ],
    "images": [],
    "relatedSearches": [],
    "videos": [],
}


class WebSearchTool:
    """Serper-backed search. Mock mode when no API key is configured."""

    DEFAULT_URL = "https://google.serper.dev"

    name = "webSearch"
    description = "Search Google for information on any topic"
    parameters = {
        "type": "object",
        "properties": {"query": {"type": "string"}},
        "required": ["query"],
    }

    def __init__(self, api_key: str = "", url: str = DEFAULT_URL, max_results: int = 10, timeout: float = 15.0):
        self.api_key = api_key
        self.url = url.rstrip("/")
        self.max_results = max_results
        self.timeout = timeout
        self.mock_mode = not api_key

        if self.mock_mode:
            logger.info("WebSearchTool initialized in MOCK mode (no API key)")

    async def _search(self, client: httpx.AsyncClient, kind: str, query: str) -> dict:
        resp = await client.post(
            f"{self.url}/{kind}",
            headers={"X-API-KEY": self.api_key, "Content-Type": "application/json"},
            json={"q": query},
        )
        if resp.status_code >= 400:
            raise RuntimeError(f"Google {kind} API request failed: {resp.status_code}")
        return resp.json()

    async def run(self, args: dict, ctx=None) -> dict:
        query = args.get("query")
        if not query:
            raise ValueError("Query is required")

        if self.mock_mode:
            logger.debug("Mock search for '%s'", query)
            return MOCK_RESULTS

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            web, images, videos = await asyncio.gather(
                self._search(client, "search", query),
                self._search(client, "images", query),
                self._search(client, "videos", query),
            )

        logger.debug("Search for '%s' returned results", query)
        n = self.max_results
        return {
            "organic": web.get("organic", [])[:n],
            "images": images.get("images", [])[:n],
            "relatedSearches": web.get("relatedSearches", []),
            "videos": videos.get("videos", [])[:n],
        }
