from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx
from lxml import etree, html as lxml_html

from vetting.scoring import PageSignals

log = logging.getLogger(__name__)

TAVILY_URL = "https://api.tavily.com/search"
RESULTS_PER_HOP = 10
_USER_AGENT = "Mozilla/5.0 (compatible; VettingAuditBot/1.0)"
_TIMEOUT = 15.0
_SNIPPET = 300


@dataclass
class DiscoveredUrl:
    url: str
    title: str = ""
    snippet: str = ""
    discovery_method: str = "known"
    hop: int = 0


@dataclass
class HopLog:
    hop: int
    query: str
    results_found: int
    duration_ms: int


@dataclass
class DiscoveryResult:
    urls: list[DiscoveredUrl] = field(default_factory=list)
    hops: list[HopLog] = field(default_factory=list)

    @property
    def total_searches(self) -> int:
        return len(self.hops)

    def to_dict(self) -> dict[str, Any]:
        return {
            "urls": [asdict(u) for u in self.urls],
            "hops": [asdict(h) for h in self.hops],
            "total_searches": self.total_searches,
        }


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class SearchRateLimiter:
    """Rate limiter shared by all searches of one research run.

    Enforces a minimum delay between calls and exponential backoff on
    HTTP 429 responses.
    """

    def __init__(self, min_delay: float = 1.0, max_delay: float = 30.0):
        self._lock = asyncio.Lock()
        self._min_delay = min_delay
        self._current_delay = min_delay
        self._max_delay = max_delay
        self._last_call: float = 0.0

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            wait = self._current_delay - (now - self._last_call)
            if wait > 0:
                log.debug("Search rate limiter: waiting %.1fs", wait)
                await asyncio.sleep(wait)
            self._last_call = time.monotonic()

    def backoff(self) -> None:
        self._current_delay = min(max(self._current_delay, 0.5) * 2, self._max_delay)
        log.warning("Search rate limited, backing off to %.1fs between requests", self._current_delay)

    def reset(self) -> None:
        self._current_delay = self._min_delay


# ---------------------------------------------------------------------------
# Search client
# ---------------------------------------------------------------------------


class SearchClient:
    """Thin async client for the Tavily search API.

    Failed searches are logged and yield no results; they never raise, so one
    bad query cannot sink a whole audit.
    """

    def __init__(
        self,
        api_key: str,
        *,
        limiter: SearchRateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = _TIMEOUT,
    ):
        self.api_key = api_key
        self.limiter = limiter or SearchRateLimiter()
        self._client = client
        self._timeout = timeout

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(TAVILY_URL, json=payload)
        async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as client:
            return await client.post(TAVILY_URL, json=payload)

    async def search(self, query: str, hop: int, hops: list[HopLog]) -> list[dict]:
        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": RESULTS_PER_HOP,
            "search_depth": "advanced" if hop <= 1 else "basic",
        }
        start = time.monotonic()
        results: list[dict] = []
        try:
            for attempt in range(2):
                await self.limiter.acquire()
                resp = await self._post(payload)
                if resp.status_code == 429 and attempt == 0:
                    self.limiter.backoff()
                    continue
                if resp.status_code >= 400:
                    log.error("Search failed (%s) for query=%r: %s", resp.status_code, query, resp.text[:200])
                    break
                self.limiter.reset()
                results = resp.json().get("results") or []
                break
        except (httpx.HTTPError, ValueError) as exc:
            log.error("Search error (hop %d) for query=%r: %s", hop, query, exc)
        hops.append(HopLog(hop, query, len(results), int((time.monotonic() - start) * 1000)))
        return results


# ---------------------------------------------------------------------------
# Multi-hop discovery
# ---------------------------------------------------------------------------


def normalize_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.hostname:
        return f"{parsed.hostname}{parsed.path}".rstrip("/").lower()
    return url.lower().rstrip("/")


def _add_new(
    results: list[dict], found: list[DiscoveredUrl], seen: set[str], method: str, hop: int,
) -> None:
    for r in results:
        url = r.get("url")
        if not url:
            continue
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        found.append(DiscoveredUrl(
            url=url,
            title=r.get("title") or "",
            snippet=(r.get("content") or "")[:_SNIPPET],
            discovery_method=method,
            hop=hop,
        ))


def _q(*parts: str | None) -> str:
    return " ".join(p for p in parts if p).strip()


async def discover_platforms(
    search: SearchClient | None,
    name: str,
    *,
    state: str | None = None,
    office: str | None = None,
    known_urls: list[str] | None = None,
) -> DiscoveryResult:
    """Find a candidate's platforms in three hops: general, platform-specific, political."""
    result = DiscoveryResult()
    seen: set[str] = set()
    for url in known_urls or []:
        key = normalize_url(url)
        if key not in seen:
            seen.add(key)
            result.urls.append(DiscoveredUrl(url=url))

    if search is None:
        log.warning("No search API key configured; discovery uses known URLs only")
        return result

    hops = (
        (1, "search_general", [
            _q(f'"{name}"', state, office),
            f'"{name}" campaign website',
        ]),
        (2, "search_platform", [
            f'"{name}" site:facebook.com OR site:x.com OR site:instagram.com',
            f'"{name}" site:linkedin.com OR site:youtube.com',
            _q(f'"{name}"', state, "site:ballotpedia.org OR site:votesmart.org"),
        ]),
        (3, "search_political", [
            f'"{name}" FEC campaign finance filing',
            _q(f'"{name}"', office, "endorsement news"),
        ]),
    )
    for hop, method, queries in hops:
        for query in queries:
            found = await search.search(query, hop, result.hops)
            _add_new(found, result.urls, seen, method, hop)
    return result


async def discover_opponent_platforms(
    search: SearchClient | None, name: str, *, state: str | None = None, office: str | None = None,
) -> list[DiscoveredUrl]:
    """Single-hop discovery used for opponent mini-audits."""
    if search is None:
        return []
    hops: list[HopLog] = []
    found: list[DiscoveredUrl] = []
    results = await search.search(_q(f'"{name}"', state, office, "campaign"), 1, hops)
    _add_new(results, found, set(), "search_opponent", 1)
    return found


# ---------------------------------------------------------------------------
# Page probing (httpx + lxml)
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_PHONE_RE = re.compile(r"\(?\b\d{3}\)?[-.\s]\d{3}[-.\s]\d{4}\b")
_DISCLAIMER_RE = re.compile(r"paid for by", re.I)


async def _fetch_url(url: str, client: httpx.AsyncClient | None = None) -> str:
    if client is not None:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(_TIMEOUT),
        headers={"User-Agent": _USER_AGENT},
    ) as client:
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.text


def extract_signals(raw_html: str) -> PageSignals:
    """Read contact methods, branding and disclaimers out of a page with lxml."""
    try:
        tree = lxml_html.fromstring(raw_html)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return PageSignals(reachable=True)
    title = " ".join(tree.xpath("//title//text()")).strip()
    text = " ".join(tree.xpath("//body//text()"))
    hrefs = [h.lower() for h in tree.xpath("//a/@href")]
    logo = tree.xpath(
        "//meta[@property='og:image']/@content | //img[contains(translate(@alt, 'LOGO', 'logo'), 'logo')]/@src"
    )
    return PageSignals(
        reachable=True,
        title=title[:300],
        has_email=any(h.startswith("mailto:") for h in hrefs) or bool(_EMAIL_RE.search(text)),
        has_phone=any(h.startswith("tel:") for h in hrefs) or bool(_PHONE_RE.search(text)),
        has_contact_link=any("contact" in h for h in hrefs),
        has_logo=bool(logo),
        has_disclaimer=bool(_DISCLAIMER_RE.search(text)),
        text_length=len(text.strip()),
    )


async def probe_page(url: str, client: httpx.AsyncClient | None = None) -> PageSignals:
    """Fetch *url* and extract page signals. Unreachable pages yield empty signals."""
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    try:
        raw_html = await _fetch_url(url, client)
    except Exception as exc:
        log.warning("Failed to fetch %s: %s", url, exc)
        return PageSignals()
    return extract_signals(raw_html)
