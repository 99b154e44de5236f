"""
PubMed client (NCBI E-utilities).

Two phases:
- ESearch: query -> list of PMIDs
- EFetch: PMIDs -> article XML, walked with ElementTree into Article records
"""

import logging
from typing import List, Optional

import httpx
from defusedxml.ElementTree import ParseError, fromstring

from review_assistant.errors import ProviderError
from review_assistant.models import Article

logger = logging.getLogger(__name__)


class PubMedClient:
    """Client for the NCBI E-utilities PubMed endpoints."""

    BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

    def __init__(self, api_key: Optional[str] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.client = http_client or httpx.AsyncClient(timeout=30.0)

    @property
    def throttled(self) -> bool:
        """Without a key NCBI allows 3 requests/second, so callers should pace themselves."""
        return not self.api_key

    def _params(self, **params) -> dict:
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    async def _get(self, endpoint: str, params: dict) -> httpx.Response:
        try:
            resp = await self.client.get(f"{self.BASE_URL}/{endpoint}", params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"PubMed {endpoint} failed with status {e.response.status_code}", e.response.status_code
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"PubMed {endpoint} request failed: {e}") from e
        return resp

    async def search_ids(self, query: str, limit: int = 50) -> List[str]:
        """ESearch: return PMIDs for a query, best match first."""
        logger.info(f"PubMed esearch: {query!r}")
        resp = await self._get(
            "esearch.fcgi",
            self._params(db="pubmed", term=query, retmax=limit, retmode="json"),
        )
        try:
            data = resp.json()
            return [str(pmid) for pmid in data.get("esearchresult", {}).get("idlist", [])]
        except (ValueError, AttributeError, TypeError) as e:
            raise ProviderError("PubMed esearch returned an unexpected body") from e

    async def fetch(self, pmids: List[str]) -> List[Article]:
        """EFetch: return parsed articles for the given PMIDs (in PMID order)."""
        if not pmids:
            return []
        logger.info(f"PubMed efetch: {len(pmids)} PMIDs")
        resp = await self._get(
            "efetch.fcgi",
            self._params(db="pubmed", id=",".join(pmids), rettype="abstract", retmode="xml"),
        )
        parsed = {a.pmid: a for a in parse_articles_xml(resp.text)}
        return [parsed[pmid] for pmid in pmids if pmid in parsed]

    async def search(self, query: str, limit: int = 50) -> List[Article]:
        pmids = await self.search_ids(query, limit=limit)
        if not pmids:
            return []
        return await self.fetch(pmids)

    async def close(self):
        await self.client.aclose()


def parse_articles_xml(xml_text: str) -> List[Article]:
    """
    Walk an EFetch PubmedArticleSet document.

    A document that is not a PubmedArticleSet raises ProviderError. Individual
    articles without a PMID or title are skipped.
    """
    try:
        root = fromstring(xml_text)
    except ParseError as e:
        raise ProviderError(f"PubMed efetch returned malformed XML: {e}") from e
    if root.tag != "PubmedArticleSet":
        raise ProviderError(f"PubMed efetch returned unexpected document <{root.tag}>")

    articles = []
    for el in root.findall("PubmedArticle"):
        article = _parse_article(el)
        if article is not None:
            articles.append(article)
    return articles


def _parse_article(el) -> Optional[Article]:
    pmid_el = el.find("MedlineCitation/PMID")
    title_el = el.find("MedlineCitation/Article/ArticleTitle")
    if pmid_el is None or not (pmid_el.text or "").strip():
        logger.debug("Skipping PubmedArticle without PMID")
        return None
    pmid = pmid_el.text.strip()
    title = _text(title_el)
    if not title:
        logger.debug(f"Skipping PMID {pmid}: no title")
        return None

    # Structured abstracts carry one AbstractText per labelled section
    parts = []
    for abs_el in el.findall("MedlineCitation/Article/Abstract/AbstractText"):
        text = _text(abs_el)
        if not text:
            continue
        label = abs_el.get("Label")
        parts.append(f"{label}: {text}" if label else text)
    abstract = " ".join(parts) or "No abstract available."

    return Article(pmid=pmid, title=title, abstract=abstract)


def _text(el) -> str:
    """Element text including inline markup children (<i>, <sup>, ...)."""
    if el is None:
        return ""
    return " ".join("".join(el.itertext()).split())
