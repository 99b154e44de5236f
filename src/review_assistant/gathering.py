"""
Full-text gathering.

The user works through the selected articles one at a time: for the current
article the text of the page they have open is taken (scrape), or the article
is skipped. The cursor only moves forward and never passes the end of the list.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from review_assistant.errors import PreconditionError, ScrapeError, ScrapeTimeoutError
from review_assistant.models import Article, FullText, ResearchSession, Stage

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_TIMEOUT = 20.0


def select_articles(session: ResearchSession, item_ids: Sequence[str]) -> List[Article]:
    """Resolve selected PMIDs against the scored list, keeping the ranked order."""
    wanted = set(item_ids)
    if not wanted:
        raise PreconditionError("Select at least one article to gather.")
    known = {a.pmid for a in session.scored_abstracts}
    unknown = sorted(wanted - known)
    if unknown:
        raise PreconditionError(f"Not among the scored articles: {', '.join(unknown)}")
    return [a for a in session.scored_abstracts if a.pmid in wanted]


def start(session: ResearchSession, articles: List[Article]) -> ResearchSession:
    return session.model_copy(update={
        "stage": Stage.GATHERING,
        "articles_to_fetch": articles,
        "full_texts": [],
        "gathering_index": 0,
        "loading": False,
        "loading_message": None,
        "error": None,
        "last_failed_action": None,
    })


def current_article(session: ResearchSession, item_id: Optional[str] = None) -> Article:
    """The article under the cursor; `item_id`, when given, must match it."""
    article = session.current_item
    if article is None:
        raise PreconditionError("All selected articles have been processed.")
    if item_id and item_id != article.pmid:
        raise PreconditionError(f"PMID {item_id} is not the current article (expected {article.pmid}).")
    return article


def record_text(session: ResearchSession, item_id: str, text: str) -> ResearchSession:
    """Store the text for the current article and advance the cursor."""
    article = current_article(session, item_id)
    return session.model_copy(update={
        "full_texts": [*session.full_texts, FullText(item_id=article.pmid, text=text)],
        "gathering_index": session.gathering_index + 1,
        "loading": False,
        "loading_message": None,
    })


def skip(session: ResearchSession) -> ResearchSession:
    current_article(session)
    return session.model_copy(update={"gathering_index": session.gathering_index + 1})


class FullTextGatherer:
    """Takes page text for one article through a scraper, bounded by a timeout."""

    def __init__(self, scraper, timeout: float = DEFAULT_SCRAPE_TIMEOUT):
        self.scraper = scraper
        self.timeout = timeout

    async def fetch_text(self, article: Article, url: Optional[str] = None) -> str:
        target = url or article.url
        try:
            text = await asyncio.wait_for(self.scraper.scrape(target), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ScrapeTimeoutError(f"Scraping PMID {article.pmid} timed out ({self.timeout:g} seconds).")
        if not text or not text.strip():
            raise ScrapeError(f"No text could be extracted for PMID {article.pmid} from {target}")
        logger.info(f"Got {len(text)} chars for PMID {article.pmid}")
        return text.strip()
