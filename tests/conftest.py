"""Shared pytest fixtures and fakes for the review_assistant test suite."""

import json
import re

import pytest

from review_assistant.backends.llm import LLMResponse
from review_assistant.errors import ProviderError
from review_assistant.models import Article, ClinicalTrial, ResearchPlan, SubQuestion, WebResult
from review_assistant.orchestrator import Orchestrator
from review_assistant.store import SessionRepository


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch, tmp_path):
    """Keep tests away from real keys and the user's session store."""
    for var in ("LLM_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY",
                "NCBI_API_KEY", "TAVILY_API_KEY", "GOOGLE_API_KEY", "GOOGLE_CSE_ID",
                "LLM_PROVIDER", "WEB_SEARCH_PROVIDER", "FAST_MODEL", "SMART_MODEL",
                "LLM_API_ENDPOINT", "SCRAPE_TIMEOUT_SECONDS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("SESSION_STORE_PATH", str(tmp_path / "sessions.json"))


def ids_in(prompt: str) -> list:
    """Record ids shown to the judge, in prompt order."""
    return re.findall(r"<id>(.*?)</id>", prompt)


def score_by_id(scores: dict, default=None):
    """Build a scoring responder: scores[id] -> score, ids not listed are omitted unless default."""
    def respond(prompt):
        out = []
        for item_id in ids_in(prompt):
            score = scores.get(item_id, default)
            if score is not None:
                out.append({"id": item_id, "score": score, "reason": f"reason for {item_id}"})
        return json.dumps(out)
    return respond


class FakeLLM:
    """
    Scripted judge. `routes` maps a label fragment to a reply: a string, a
    callable taking the prompt, an exception instance, or a list consumed in order.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    async def generate(self, prompt, response_format=None, label=None, smart=False):
        self.calls.append({"prompt": prompt, "label": label or "", "smart": smart, "format": response_format})
        for fragment, reply in self.routes.items():
            if fragment in (label or ""):
                if isinstance(reply, list):
                    reply = reply.pop(0) if len(reply) > 1 else reply[0]
                if isinstance(reply, BaseException):
                    raise reply
                if callable(reply):
                    reply = reply(prompt)
                return LLMResponse(content=reply)
        raise AssertionError(f"FakeLLM has no route for label {label!r}")

    def labels(self):
        return [c["label"] for c in self.calls]


class FakePubMed:
    """Two-phase source: query -> PMIDs, PMIDs -> articles."""

    throttled = False

    def __init__(self, hits=None, articles=None, failing=(), fetch_fails=False):
        self.hits = hits or {}
        self.articles = articles or {}
        self.failing = set(failing)
        self.fetch_fails = fetch_fails
        self.searched = []
        self.fetched = []

    async def search_ids(self, query, limit=50):
        self.searched.append(query)
        if query in self.failing:
            raise ProviderError(f"PubMed esearch failed for {query!r}", 500)
        return list(self.hits.get(query, []))[:limit]

    async def fetch(self, pmids):
        self.fetched.append(list(pmids))
        if self.fetch_fails:
            raise ProviderError("PubMed efetch failed", 502)
        return [self.articles[p] for p in pmids if p in self.articles]

    async def search(self, query, limit=50):
        pmids = await self.search_ids(query, limit)
        if not pmids:
            return []
        return await self.fetch(pmids)

    async def close(self):
        pass


class FakeSearch:
    """Single-phase source: query -> items."""

    throttled = False

    def __init__(self, results=None, failing=()):
        self.results = results or {}
        self.failing = set(failing)
        self.searched = []

    async def search(self, query, limit=20):
        self.searched.append(query)
        if query in self.failing:
            raise ProviderError(f"search failed for {query!r}", 503)
        return list(self.results.get(query, []))[:limit]

    async def close(self):
        pass


class FakeScraper:
    def __init__(self, pages=None, default="", delay=0.0, error=None):
        self.pages = pages or {}
        self.default = default
        self.delay = delay
        self.error = error
        self.urls = []

    async def scrape(self, url):
        import asyncio

        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.pages.get(url, self.default)


def make_articles(n, start=1):
    return [
        Article(pmid=str(1000 + i), title=f"Article {i}", abstract=f"Abstract {i}")
        for i in range(start, start + n)
    ]


def make_trials(n):
    return [
        ClinicalTrial(nct_id=f"NCT0000000{i}", title=f"Trial {i}", status="RECRUITING", summary=f"Summary {i}")
        for i in range(1, n + 1)
    ]


def make_web(n):
    return [WebResult(url=f"https://example.org/{i}", title=f"Page {i}", snippet=f"Snippet {i}") for i in range(1, n + 1)]


@pytest.fixture
def plan():
    return ResearchPlan(
        sub_questions=[
            SubQuestion(id="sq1", question="Does the gut microbiome differ in autism?", keywords=["autism", "microbiome"]),
            SubQuestion(id="sq2", question="Do probiotics change symptoms?", keywords=["probiotics", "autism"]),
        ],
        clarification="Children or adults?",
    )


@pytest.fixture
def repository():
    return SessionRepository()


def plan_json(sub_questions, clarification="Which population?"):
    return json.dumps({"subQuestions": sub_questions, "clarification": clarification})


QUERIES = json.dumps({
    "pubmed_query": "(autism) AND (microbiome)",
    "clinical_trials_query": "autism AND probiotics",
    "web_query": "gut microbiome autism",
})

NO_GAPS = json.dumps({"new_queries": []})


def build_orchestrator(repository, llm, pubmed=None, trials=None, web=None, scraper=None, scrape_timeout=20.0):
    return Orchestrator(
        repository,
        llm_client=llm,
        pubmed_client=pubmed or FakePubMed(),
        trials_client=trials or FakeSearch(),
        web_client=web or FakeSearch(),
        scraper=scraper or FakeScraper(default="x" * 500),
        scrape_timeout=scrape_timeout,
        supplemental_delay=0,
    )
