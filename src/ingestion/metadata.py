"""
Article metadata extraction from rendered HTML.

JSON-LD (Article, NewsArticle, BlogPosting, WebPage) is consulted first,
then Open Graph / Twitter card tags, then plain document structure.
"""

import json
import logging
from typing import Any

from bs4 import BeautifulSoup

from src.ingestion.schemas import PageMetadata
from src.ingestion.text import clean_text, parse_iso_datetime, resolve_url

logger = logging.getLogger(__name__)

JSON_LD_ARTICLE_TYPES = {"NewsArticle", "Article", "BlogPosting", "WebPage", "ReportageNewsArticle"}

MIN_PARAGRAPH_LENGTH = 50
MIN_DESCRIPTION_LENGTH = 20


def _meta(soup: BeautifulSoup, name: str) -> str | None:
    tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
    if tag is None:
        return None
    content = tag.get("content")
    return content.strip() if content and content.strip() else None


def _first_text(soup: BeautifulSoup, selector: str) -> str | None:
    tag = soup.select_one(selector)
    if tag is None:
        return None
    text = clean_text(tag.get_text(" "))
    return text or None


def _first_attr(soup: BeautifulSoup, selector: str, attr: str) -> str | None:
    tag = soup.select_one(selector)
    if tag is None:
        return None
    value = tag.get(attr)
    return value.strip() if value and value.strip() else None


def _is_article_type(value: Any) -> bool:
    if isinstance(value, list):
        return any(v in JSON_LD_ARTICLE_TYPES for v in value)
    return value in JSON_LD_ARTICLE_TYPES


def extract_json_ld(soup: BeautifulSoup) -> dict[str, Any] | None:
    """Return the first article-like JSON-LD object on the page."""
    candidates: list[Any] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or script.get_text() or "{}")
        except (json.JSONDecodeError, TypeError):
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("@graph"), list):
                candidates.extend(item["@graph"])
            else:
                candidates.append(item)

    for item in candidates:
        if isinstance(item, dict) and _is_article_type(item.get("@type")):
            return item
    return None


def _json_ld_image(data: dict[str, Any]) -> str | None:
    image = data.get("image") or data.get("thumbnailUrl")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url") or image.get("contentUrl")
    return image if isinstance(image, str) else None


def _json_ld_author(data: dict[str, Any]) -> str | None:
    author = data.get("author")
    if isinstance(author, list):
        author = author[0] if author else None
    if isinstance(author, dict):
        author = author.get("name")
    return author if isinstance(author, str) else None


def _confidence(
    title: str | None,
    description: str | None,
    image: str | None,
    author: str | None,
    published: str | None,
) -> int:
    score = 0
    if title and title != "Untitled":
        score += 1
    if description and len(description) > MIN_DESCRIPTION_LENGTH:
        score += 1
    if image:
        score += 1
    if author:
        score += 1
    if published:
        score += 1
    return score


def _first_long_paragraph(soup: BeautifulSoup) -> str | None:
    for scope in ("article p", "main p", "p"):
        for tag in soup.select(scope):
            text = clean_text(tag.get_text(" "))
            if len(text) > MIN_PARAGRAPH_LENGTH:
                return text
    return None


def extract_page_metadata(html: str, url: str) -> PageMetadata:
    """
    Extract article metadata from a rendered page.

    Args:
        html: Page HTML after client-side rendering.
        url: The page's URL, used to resolve relative image and canonical links.
    """
    soup = BeautifulSoup(html, "html.parser")
    json_ld = extract_json_ld(soup) or {}

    title = (
        json_ld.get("headline")
        or json_ld.get("name")
        or _meta(soup, "og:title")
        or _meta(soup, "twitter:title")
        or _first_text(soup, "h1")
        or _first_text(soup, "title")
    )
    description = (
        json_ld.get("description")
        or _meta(soup, "og:description")
        or _meta(soup, "twitter:description")
        or _meta(soup, "description")
        or _first_long_paragraph(soup)
    )
    image = (
        _json_ld_image(json_ld)
        or _meta(soup, "og:image")
        or _meta(soup, "og:image:url")
        or _meta(soup, "twitter:image")
        or _meta(soup, "twitter:image:src")
        or _first_attr(soup, "article img", "src")
        or _first_attr(soup, '[class*="article"] img', "src")
        or _first_attr(soup, "main img", "src")
    )
    author = (
        _json_ld_author(json_ld)
        or _meta(soup, "author")
        or _meta(soup, "article:author")
        or _meta(soup, "twitter:creator")
        or _first_text(soup, '[rel="author"]')
        or _first_text(soup, '[itemprop="author"]')
    )
    published = (
        json_ld.get("datePublished")
        or _meta(soup, "article:published_time")
        or _meta(soup, "datePublished")
        or _meta(soup, "date")
        or _first_attr(soup, "time[datetime]", "datetime")
        or _first_attr(soup, '[itemprop="datePublished"]', "content")
    )
    canonical = _first_attr(soup, 'link[rel="canonical"]', "href")

    title = clean_text(title) if isinstance(title, str) else None
    description = clean_text(description) if isinstance(description, str) else None
    published = published if isinstance(published, str) else None

    confidence = _confidence(title, description, image, author, published)
    if confidence < 2:
        logger.warning("Low confidence extraction for %s: score %d/5", url, confidence)

    return PageMetadata(
        url=url,
        title=title or None,
        description=description or None,
        image=resolve_url(image, url),
        author=clean_text(author) if author else None,
        published_at=parse_iso_datetime(published),
        canonical_url=resolve_url(canonical, url),
        confidence=confidence,
    )
