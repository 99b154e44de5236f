"""
Data models for the review pipeline.

Everything here is a pydantic model because it is either parsed from judge output
(plans) or persisted with the session record (items, sessions).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stage(str, Enum):
    IDLE = "IDLE"
    PLANNING = "PLANNING"
    SCREENING = "SCREENING"
    GATHERING = "GATHERING"
    SYNTHESIZING = "SYNTHESIZING"
    DONE = "DONE"


# --- Research plan ---

class SubQuestion(BaseModel):
    """One facet of the topic, with search keywords for it."""
    id: Optional[str] = None
    question: str
    keywords: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        # judges sometimes number sub-questions
        if value is None:
            return None
        return str(value).strip()

    @field_validator("keywords", mode="before")
    @classmethod
    def _split_keywords(cls, value):
        if isinstance(value, str):
            return [k.strip() for k in value.split(",") if k.strip()]
        return value


class ResearchPlan(BaseModel):
    """Structured plan negotiated with the user before searching."""
    model_config = ConfigDict(populate_by_name=True)

    sub_questions: List[SubQuestion] = Field(default_factory=list, alias="subQuestions")
    clarification: str = ""
    web_query: str = Field("", alias="webQuery")


# --- Source items ---

class Item(BaseModel, ABC):
    """Common shape of a search result; score/reason are filled in by the judge."""
    score: Optional[int] = None
    reason: Optional[str] = None

    @property
    @abstractmethod
    def item_id(self) -> str:
        """Source-native identifier (PMID, NCT id, URL)."""

    @abstractmethod
    def describe(self) -> str:
        """Short text block used when showing the item to the judge."""


class Article(Item):
    pmid: str
    title: str
    abstract: str = "No abstract available."
    url: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.url:
            self.url = f"https://pubmed.ncbi.nlm.nih.gov/{self.pmid}/"

    @property
    def item_id(self) -> str:
        return self.pmid

    def describe(self) -> str:
        return f"<article>\n  <id>{self.pmid}</id>\n  <title>{self.title}</title>\n  <abstract>{self.abstract}</abstract>\n</article>"


class ClinicalTrial(Item):
    nct_id: str
    title: str
    status: str = ""
    summary: str = ""
    conditions: List[str] = Field(default_factory=list)
    interventions: List[str] = Field(default_factory=list)
    url: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.url:
            self.url = f"https://clinicaltrials.gov/study/{self.nct_id}"

    @property
    def item_id(self) -> str:
        return self.nct_id

    def describe(self) -> str:
        return (
            f"<trial>\n  <id>{self.nct_id}</id>\n  <title>{self.title}</title>\n"
            f"  <status>{self.status}</status>\n  <summary>{self.summary}</summary>\n"
            f"  <conditions>{', '.join(self.conditions)}</conditions>\n"
            f"  <interventions>{', '.join(self.interventions)}</interventions>\n</trial>"
        )


class WebResult(Item):
    url: str
    title: str = ""
    snippet: str = ""

    @property
    def item_id(self) -> str:
        return self.url

    def describe(self) -> str:
        return f"<page>\n  <id>{self.url}</id>\n  <title>{self.title}</title>\n  <snippet>{self.snippet}</snippet>\n</page>"


# --- Session ---

class FullText(BaseModel):
    item_id: str
    text: str


class FailedAction(BaseModel):
    """The command that last failed, kept so the user can replay it exactly."""
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ResearchSession(BaseModel):
    """All persisted state of one research task."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: Stage = Stage.IDLE
    topic: str = ""

    research_plan: Optional[ResearchPlan] = None

    # Query snapshots
    pubmed_query: Optional[str] = None
    clinical_trials_query: Optional[str] = None

    # Results, one field set per source
    raw_articles: List[Article] = Field(default_factory=list)
    scored_abstracts: List[Article] = Field(default_factory=list)
    clinical_trials: List[ClinicalTrial] = Field(default_factory=list)
    web_results: List[WebResult] = Field(default_factory=list)

    # Gathering
    articles_to_fetch: List[Article] = Field(default_factory=list)
    full_texts: List[FullText] = Field(default_factory=list)
    gathering_index: int = 0

    final_report: str = ""

    # Progress indicators, not persisted
    loading: bool = Field(False, exclude=True)
    loading_message: Optional[str] = Field(None, exclude=True)
    literature_status: Optional[str] = Field(None, exclude=True)
    trials_status: Optional[str] = Field(None, exclude=True)
    web_status: Optional[str] = Field(None, exclude=True)

    error: Optional[str] = None
    last_failed_action: Optional[FailedAction] = None
    log: List[str] = Field(default_factory=list)

    @property
    def current_item(self) -> Optional[Article]:
        """Article waiting to be gathered, or None once the cursor reached the end."""
        if self.gathering_index < len(self.articles_to_fetch):
            return self.articles_to_fetch[self.gathering_index]
        return None

    @property
    def gathering_done(self) -> bool:
        return self.gathering_index >= len(self.articles_to_fetch)
