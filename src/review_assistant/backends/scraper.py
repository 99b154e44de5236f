"""
Page text extraction for full-text gathering.

The gatherer asks for "whatever page the user currently has open" for an item.
HttpPageScraper fetches that page (the item's own URL unless another one is
given) and keeps the readable article text.
"""

import logging
import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from review_assistant.errors import ScrapeError

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; review-assistant/0.1; +https://pubmed.ncbi.nlm.nih.gov)"
MAX_TEXT_CHARS = 128_000
MIN_TEXT_CHARS = 200  # less than this is a paywall stub or an error page


class HttpPageScraper:
    """Fetch a page over HTTP and extract its main text."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.client = http_client or httpx.AsyncClient(
            timeout=30.0, follow_redirects=True, headers={"User-Agent": USER_AGENT}
        )

    async def scrape(self, url: str) -> str:
        logger.info(f"Scraping {url}")
        try:
            resp = await self.client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ScrapeError(f"{url} returned status {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ScrapeError(f"Could not load {url}: {e}") from e

        text = extract_readable_text(resp.text)
        if len(text) < MIN_TEXT_CHARS:
            raise ScrapeError(f"No readable article text found at {url}")
        return text

    async def close(self):
        await self.client.aclose()


def extract_readable_text(html: str, max_chars: int = MAX_TEXT_CHARS) -> str:
    """
    Keep the article body of an HTML page.

    Boilerplate (scripts, navigation, footers, ...) is dropped first, then the
    first of <article>, <main>, a content-like <div> or <body> is used.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "style", "noscript", "nav", "footer", "header", "aside", "iframe", "form"]):
        tag.decompose()

    content = (
        soup.find("article")
        or soup.find("main")
        or soup.find("div", class_=re.compile(r"article|content|main-content|fulltext", re.I))
        or soup.find("body")
        or soup
    )
    text = content.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_chars]
