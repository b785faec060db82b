"""Web search (DuckDuckGo HTML endpoint) and URL fetch tools."""

from __future__ import annotations

import html
import logging
import re
from urllib.parse import unquote

import httpx

from agentloop.schemas import ToolResult
from agentloop.tools.common import truncate_output

logger = logging.getLogger(__name__)

SEARCH_URL = "https://html.duckduckgo.com/html/"
USER_AGENT = "Mozilla/5.0 (compatible; AgentLoop/0.1)"

# Timeouts
SEARCH_TIMEOUT = 10.0  # seconds
FETCH_TIMEOUT = 15.0  # seconds

MAX_SEARCH_RESULTS = 8
MAX_FETCH_CHARS = 10000

_RESULT_RE = re.compile(
    r'<a[^>]+class="result__a"[^>]*href="([^"]*)"[^>]*>(.*?)</a>'
    r'.*?<a[^>]+class="result__snippet"[^>]*>(.*?)</a>',
    re.DOTALL | re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")
_NOISE_RE = re.compile(
    r"<(script|style|nav|footer|header|noscript)[^>]*>.*?</\1>",
    re.DOTALL | re.IGNORECASE,
)


def _strip_tags(fragment: str) -> str:
    return html.unescape(_TAG_RE.sub("", fragment)).strip()


def parse_search_results(page: str, limit: int = MAX_SEARCH_RESULTS) -> list[dict[str, str]]:
    """Extract title/url/snippet triples from a DuckDuckGo HTML page."""
    results = []
    for match in _RESULT_RE.finditer(page):
        raw_url, raw_title, raw_snippet = match.groups()
        uddg = re.search(r"uddg=([^&]+)", raw_url)
        url = unquote(uddg.group(1)) if uddg else html.unescape(raw_url)
        title = _strip_tags(raw_title)
        if title and url:
            results.append({"title": title, "url": url, "snippet": _strip_tags(raw_snippet)})
        if len(results) >= limit:
            break
    return results


def html_to_text(page: str) -> str:
    """Reduce an HTML page to readable text."""
    text = _NOISE_RE.sub("", page)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n\s*\n+", "\n\n", text)
    return text.strip()


def web_search(query: str, client: httpx.Client | None = None) -> ToolResult:
    """Search the web and return up to MAX_SEARCH_RESULTS results."""
    if not query:
        return ToolResult(tool="web", success=False, result="No search query given")

    try:
        with (client or httpx.Client(timeout=SEARCH_TIMEOUT)) as http:
            response = http.get(
                SEARCH_URL,
                params={"q": query},
                headers={"User-Agent": USER_AGENT},
            )
            response.raise_for_status()
            page = response.text
    except httpx.HTTPError as e:
        logger.warning(f"Web search failed: {e}")
        return ToolResult(tool="web", success=False, result=f"Web search error: {e}")

    results = parse_search_results(page)
    if not results:
        return ToolResult(tool="web", success=True, result=f"No results for: {query}")

    formatted = "\n\n".join(
        f"{i}. {r['title']}\n   {r['url']}\n   {r['snippet']}" for i, r in enumerate(results, 1)
    )
    return ToolResult(tool="web", success=True, result=truncate_output(formatted))


def fetch_url(url: str, client: httpx.Client | None = None) -> ToolResult:
    """Fetch a URL and return its readable text."""
    if not re.match(r"^https?://", url or "", re.IGNORECASE):
        return ToolResult(tool="fetch", success=False, result="Only http/https URLs are allowed.")

    try:
        with (client or httpx.Client(timeout=FETCH_TIMEOUT, follow_redirects=True)) as http:
            response = http.get(url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
            page = response.text
    except httpx.HTTPError as e:
        logger.warning(f"Fetch failed for {url}: {e}")
        return ToolResult(tool="fetch", success=False, result=f"Fetch error: {e}")

    text = html_to_text(page)
    if len(text) > MAX_FETCH_CHARS:
        text = text[:MAX_FETCH_CHARS] + "\n...[truncated]"
    return ToolResult(tool="fetch", success=True, result=text or "(empty page)")
