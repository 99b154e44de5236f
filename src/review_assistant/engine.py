"""
Search-Refine-Score Engine

Runs the same protocol against any source:
broad search -> self-critique -> supplemental search -> merge -> score -> rank

One engine instance per source. An instance only ever writes its own session
fields (declared on its SearchSource), so the three instances can run
concurrently against the same session without stepping on each other.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from review_assistant import transitions
from review_assistant.aggregate import merge_items
from review_assistant.judge import score_items
from review_assistant.models import Item, ResearchPlan
from review_assistant.reformulate import get_supplemental_queries
from review_assistant.retrieve import UNKEYED_DELAY_SECONDS, run_supplemental_retrieval
from review_assistant.store import SessionRepository

logger = logging.getLogger(__name__)


@dataclass
class SearchSource:
    """A source client plus the session fields and prompt wording that go with it."""
    name: str
    client: Any
    scored_field: str
    status_field: str
    query_field: Optional[str] = None
    raw_field: Optional[str] = None
    clear_raw_after_scoring: bool = False
    page_size: int = 20
    supplemental_page_size: int = 10
    query_style: str = "keyword queries"
    reviewer_role: str = "research reviewer"


def literature_source(client) -> SearchSource:
    return SearchSource(
        name="PubMed",
        client=client,
        scored_field="scored_abstracts",
        status_field="literature_status",
        query_field="pubmed_query",
        raw_field="raw_articles",
        clear_raw_after_scoring=True,
        page_size=50,
        query_style="PubMed boolean syntax with MeSH terms, e.g. (autism) AND (gut microbiota)",
        reviewer_role="medical literature reviewer",
    )


def trials_source(client) -> SearchSource:
    return SearchSource(
        name="ClinicalTrials.gov",
        client=client,
        scored_field="clinical_trials",
        status_field="trials_status",
        query_field="clinical_trials_query",
        page_size=20,
        query_style="condition and intervention terms combined with AND/OR",
        reviewer_role="clinical trial analyst",
    )


def web_source(client) -> SearchSource:
    return SearchSource(
        name="Web",
        client=client,
        scored_field="web_results",
        status_field="web_status",
        page_size=10,
        query_style="short natural-language web queries",
        reviewer_role="research assistant screening web sources",
    )


class SearchRefineScoreEngine:
    """One run of the search/critique/score protocol against one source."""

    def __init__(
        self,
        source: SearchSource,
        llm_client,
        repository: SessionRepository,
        delay_seconds: float = UNKEYED_DELAY_SECONDS,
    ):
        self.source = source
        self.llm_client = llm_client
        self.repository = repository
        self.delay_seconds = delay_seconds

    def _note(self, session_id: str, message: str) -> None:
        logger.info(f"[{self.source.name}] {message}")
        self.repository.apply(session_id, lambda s: transitions.append_log(s, f"[{self.source.name}] {message}"))

    def _write(self, session_id: str, **fields) -> None:
        self.repository.apply(session_id, lambda s: transitions.update(s, **fields))

    def _status(self, session_id: str, message: str) -> None:
        self._write(session_id, **{self.source.status_field: message})

    async def run(self, session_id: str, plan: ResearchPlan, query: str) -> List[Item]:
        """
        Search, refine and score; returns the ranked items.

        Failures of the broad search, the critique call or the scoring call are
        logged to the session and re-raised. Supplemental search failures are not.
        """
        try:
            return await self._run(session_id, plan, query)
        except Exception as e:
            self._note(session_id, f"Search or scoring failed: {e}")
            self._status(session_id, "Failed")
            raise

    async def _run(self, session_id: str, plan: ResearchPlan, query: str) -> List[Item]:
        src = self.source

        def note(message: str) -> None:
            self._note(session_id, message)

        # --- Step 1: Broad search ---
        note(f"Broad search: {query}")
        self._status(session_id, "Searching...")
        if src.query_field:
            self._write(session_id, **{src.query_field: query})
        items = merge_items([], await src.client.search(query, limit=src.page_size))
        if src.raw_field:
            self._write(session_id, **{src.raw_field: items})

        if not items:
            note("No results found.")
            self._write(session_id, **{src.scored_field: [], src.status_field: "Done (no results)"})
            return []

        # --- Step 2: Self-critique ---
        note(f"Found {len(items)} records, checking coverage of the plan...")
        self._status(session_id, f"Reviewing coverage of {len(items)} records...")
        new_queries = await get_supplemental_queries(
            plan, items, self.llm_client, src.name, src.query_style
        )

        # --- Step 3 + 4: Supplemental search, merge ---
        if new_queries:
            note(f"Coverage gaps found, running {len(new_queries)} supplemental queries.")
            if src.query_field:
                snapshot = query + "\n\nSupplemental queries:\n- " + "\n- ".join(new_queries)
                self._write(session_id, **{src.query_field: snapshot})
            self._status(session_id, f"Running {len(new_queries)} supplemental queries...")
            new_items = await run_supplemental_retrieval(
                new_queries,
                src.client,
                existing_ids=[item.item_id for item in items],
                limit=src.supplemental_page_size,
                delay_seconds=self.delay_seconds,
                note=note,
            )
            if new_items:
                items = merge_items(items, new_items)
                note(f"Supplemental search added {len(new_items)} new records.")
                if src.raw_field:
                    self._write(session_id, **{src.raw_field: items})
            else:
                note("Supplemental search found no new records.")
        else:
            note("Coverage judged sufficient, no supplemental search needed.")

        # --- Step 5 + 6: Score, rank ---
        note(f"Scoring {len(items)} records...")
        self._status(session_id, f"Scoring {len(items)} records...")
        ranked = await score_items(plan, items, self.llm_client, src.name, src.reviewer_role)

        # --- Step 7: Publish ---
        fields = {src.scored_field: ranked, src.status_field: "Done"}
        if src.raw_field and src.clear_raw_after_scoring:
            fields[src.raw_field] = []
        self._write(session_id, **fields)
        note(f"Scoring finished for {len(ranked)} records.")
        return ranked
