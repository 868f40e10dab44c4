"""
Article link selection for sites without a usable feed.

Candidate anchors are gathered from site-specific selectors first, then from
generic article containers, and kept only when the href looks like an
article and the resolved path is not navigation (tags, login, paging...).
"""

import logging
import re
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from src.ingestion.text import host_of

logger = logging.getLogger(__name__)

ARTICLE_SELECTORS = [
    '[itemtype*="schema.org/Article"]',
    '[itemtype*="schema.org/NewsArticle"]',
    '[itemtype*="schema.org/BlogPosting"]',
    "article",
    "main article",
    '[role="article"]',
    '[class*="article"]',
    '[class*="post"]',
    '[class*="story"]',
    '[class*="news-item"]',
    '[class*="entry"]',
    '[class*="content-item"]',
    '[class*="feed-item"]',
    '[class*="card-news"]',
    '[class*="noticia"]',
    '[class*="materia"]',
    '[data-testid*="article"]',
    '[data-component*="article"]',
    '[data-type="article"]',
]

_G1_SECTIONS = ["/noticia/", "/mundo/", "/brasil/", "/economia/", "/tecnologia/", "/politica/", "/esporte/", "/ciencia/"]

SITE_SPECIFIC_SELECTORS: dict[str, list[str]] = {
    "g1.globo.com": [f'a[href*="{section}"]' for section in _G1_SECTIONS]
    + [
        ".bstn-fd-item a",
        ".feed-post-body-title a",
        ".feed-post-body-resumo a",
        "[data-priority] a",
        '[class*="feed-post"] a',
        '[class*="bstn"] a',
    ],
    "oglobo.globo.com": [
        'a[href*="/brasil/"]',
        'a[href*="/politica/"]',
        'a[href*="/economia/"]',
        '[class*="teaser"] a',
    ],
    "folha.uol.com.br": [
        'a[href*="/cotidiano/"]',
        'a[href*="/poder/"]',
        'a[href*="/mercado/"]',
        '[class*="c-headline"] a',
    ],
    "estadao.com.br": [
        'a[href*="/brasil/"]',
        'a[href*="/politica/"]',
        'a[href*="/economia/"]',
        '[class*="card"] a',
    ],
}

ARTICLE_PATH_MARKERS = [
    "/noticia/", "/news/", "/article/", "/articles/", "/post/", "/posts/",
    "/blog/", "/story/", "/materia/",
]

EXCLUDED_PATH_PREFIXES = (
    "/tag", "/category", "/categories", "/author", "/page", "/search",
    "/login", "/register", "/signin", "/signup",
)
EXCLUDED_PATH_FRAGMENTS = ("login", "register", "subscribe", "newsletter")

_FULL_DATE_RE = re.compile(r"\d{4}/\d{2}/\d{2}")
_YEAR_MONTH_RE = re.compile(r"\d{4}/\d{2}/")
_G1_DATE_RE = re.compile(r"/\d{4}/\d{2}/\d{2}/")

MIN_BARE_LINK_LENGTH = 30


def candidate_selectors(hostname: str) -> list[str]:
    """All selectors for a host: site-specific, generic containers, fallbacks."""
    return [
        *SITE_SPECIFIC_SELECTORS.get(hostname, []),
        *(f"{selector} a" for selector in ARTICLE_SELECTORS),
        "main a",
        ".content a",
    ]


def looks_like_article(href: str, hostname: str) -> bool:
    """Whether a raw href plausibly points at an article."""
    href = href.lower()
    if hostname == "g1.globo.com":
        return any(section in href for section in _G1_SECTIONS) or bool(_G1_DATE_RE.search(href))

    if any(marker in href for marker in ARTICLE_PATH_MARKERS):
        return True
    if _FULL_DATE_RE.search(href) or _YEAR_MONTH_RE.search(href):
        return True
    return len(href) > MIN_BARE_LINK_LENGTH and "#" not in href and "?" not in href


def is_navigation_path(path: str) -> bool:
    """Paths that are listings, auth pages or the home page."""
    if path == "/" or path == "":
        return True
    if path.startswith(EXCLUDED_PATH_PREFIXES):
        return True
    return any(fragment in path for fragment in EXCLUDED_PATH_FRAGMENTS)


def extract_article_links(html: str, page_url: str, max_links: int = 30) -> list[str]:
    """
    Select article links from a rendered listing page.

    Returns:
        Absolute URLs in discovery order, deduplicated, at most ``max_links``.
    """
    soup = BeautifulSoup(html, "html.parser")
    hostname = host_of(page_url)

    seen_hrefs: set[str] = set()
    raw_links: list[str] = []
    for selector in candidate_selectors(hostname):
        try:
            anchors = soup.select(selector)
        except Exception as e:
            logger.debug("Skipping selector %r: %s", selector, e)
            continue
        for anchor in anchors:
            href = anchor.get("href")
            if not href or href in seen_hrefs:
                continue
            if looks_like_article(href, hostname):
                seen_hrefs.add(href)
                raw_links.append(href)

    links: list[str] = []
    seen: set[str] = set()
    for href in raw_links:
        absolute = urljoin(page_url, href.strip())
        parts = urlsplit(absolute)
        if parts.scheme not in ("http", "https"):
            continue
        if is_navigation_path(parts.path):
            continue
        if absolute in seen:
            continue
        seen.add(absolute)
        links.append(absolute)
        if len(links) >= max_links:
            break

    logger.info("Found %d unique article links on %s", len(links), page_url)
    return links
