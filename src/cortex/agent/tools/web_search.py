"""
Web search tool.

Scrapes the Bing China results page (reachable from mainland networks),
then fetches the top results concurrently for body text. The structured
hits travel alongside the text rendering as ToolResult.sources.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import Field

from ..domain.entities import SearchResult
from .base import BaseTool, ToolOutput, ToolParams

logger = logging.getLogger(__name__)

BING_SEARCH_URL = "https://cn.bing.com/search"
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
}


@dataclass
class WebSearchConfig:
    """Configuration for the web search tool.

    Attributes:
        max_results: Hits requested and rendered
        fetch_top: Hits whose pages are fetched for body text
        search_timeout: Timeout for the results page
        page_timeout: Timeout for each page fetch
        page_max_chars: Body text kept per fetched page
        min_page_chars: Fetched text shorter than this is dropped
    """

    max_results: int = 5
    fetch_top: int = 3
    search_timeout: float = 10.0
    page_timeout: float = 5.0
    page_max_chars: int = 1500
    min_page_chars: int = 50


def clean_page_text(html: str, max_chars: int = 1500) -> str:
    """Extract readable body text from an HTML page.

    Scripts, styles and page chrome are removed. Long pages skip their
    first 10% (at most 200 characters), which is usually navigation.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "nav", "header", "footer", "noscript"]):
        tag.decompose()

    text = re.sub(r"\s+", " ", soup.get_text(" ")).strip()
    if len(text) > 500:
        text = text[min(200, int(len(text) * 0.1)):]
    return text[:max_chars]


def parse_bing_results(html: str, max_results: int) -> list[SearchResult]:
    """Parse hits from a Bing results page."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[SearchResult] = []

    for block in soup.select("li.b_algo"):
        if len(results) >= max_results:
            break

        link = block.select_one("h2 a[href]") or block.select_one("a[href]")
        if link is None:
            continue
        url = link["href"]
        title = link.get_text(" ", strip=True)
        if not url.startswith(("http://", "https://")) or "bing.com" in url or not title:
            continue

        snippet = ""
        for selector in ("p.b_lineclamp2", "p.b_lineclamp3", "p.b_lineclamp4", ".b_caption p", "p"):
            node = block.select_one(selector)
            if node is not None:
                snippet = node.get_text(" ", strip=True)
                if len(snippet) > 20:
                    break

        results.append(SearchResult(title=title, url=url, snippet=snippet))

    if not results:
        # Loose fallback for layout changes
        for link in soup.select("h2 a[href]"):
            if len(results) >= max_results:
                break
            url = link["href"]
            title = link.get_text(" ", strip=True)
            if url.startswith(("http://", "https://")) and "bing.com" not in url and len(title) > 3:
                results.append(SearchResult(title=title, url=url))

    return results


def render_results(
    results: list[SearchResult],
    pages: Optional[list[str]] = None,
    min_page_chars: int = 50,
) -> str:
    """Render hits (and fetched page text) for the model."""
    blocks = []
    for i, result in enumerate(results, start=1):
        block = f"[{i}] {result.title}\n来源: {urlparse(result.url).hostname or result.url}"
        if result.snippet:
            block += f"\n摘要: {result.snippet}"
        blocks.append(block)
    output = "\n\n".join(blocks)

    for result, content in zip(results, pages or []):
        if content and len(content) >= min_page_chars:
            output += f"\n\n--- 来自「{result.title}」的详细内容 ---\n{content}"

    return output


class WebSearchParams(ToolParams):
    query: str = Field(
        description="搜索关键词，例如 '2024年春节放假安排'、'TypeScript 5.0 新特性'"
    )


class WebSearchTool(BaseTool):
    """Search the internet for current information."""

    name = "web_search"
    description = (
        "搜索互联网获取实时信息。当用户询问最新新闻、实时信息、你不确定的知识点、"
        "或任何需要联网才能回答的问题时使用。传入搜索关键词，返回搜索结果摘要。"
    )
    params_model = WebSearchParams
    timeout_seconds = 30.0

    def __init__(
        self,
        config: Optional[WebSearchConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or WebSearchConfig()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=BROWSER_HEADERS, follow_redirects=True)
        return self._client

    async def _fetch_page(self, url: str) -> str:
        try:
            response = await self._get_client().get(url, timeout=self.config.page_timeout)
            if response.status_code != 200:
                return ""
            return clean_page_text(response.text, self.config.page_max_chars)
        except httpx.HTTPError as e:
            logger.debug(f"Failed to fetch {url}: {e}")
            return ""

    async def search(self, query: str) -> list[SearchResult]:
        """Fetch and parse the results page.

        Raises:
            httpx.HTTPError: On transport failure
        """
        response = await self._get_client().get(
            BING_SEARCH_URL,
            params={"q": query, "count": self.config.max_results, "ensearch": 0},
            headers={"Cookie": "ENSEARCH=BENVER=0;"},
            timeout=self.config.search_timeout,
        )
        response.raise_for_status()
        return parse_bing_results(response.text, self.config.max_results)

    async def execute(self, params: WebSearchParams) -> ToolOutput:
        query = params.query
        try:
            results = await self.search(query)
        except httpx.HTTPStatusError as e:
            return ToolOutput(text=f"搜索请求失败: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Web search failed for {query!r}: {e}")
            return ToolOutput(text=f"搜索出错: {e}")

        if not results:
            return ToolOutput(text=f"搜索「{query}」暂时没有找到结果，请稍后重试。")

        logger.info(f"Web search returned {len(results)} results for {query!r}")

        top = results[: self.config.fetch_top]
        pages = await asyncio.gather(*(self._fetch_page(r.url) for r in top))

        return ToolOutput(
            text=render_results(results, list(pages), self.config.min_page_chars),
            sources=results,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
