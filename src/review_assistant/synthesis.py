"""
Report synthesis: one free-text call on the smart model that merges gathered
full texts, scored trials and scored web pages into a cited Markdown review.

Citations are requested, not verified.
"""

import logging
from typing import Sequence

from review_assistant.errors import PreconditionError, ProviderError
from review_assistant.models import ClinicalTrial, FullText, ResearchPlan, WebResult

logger = logging.getLogger(__name__)

SECTIONS = (
    "Executive Summary",
    "Introduction",
    "Methodology Overview",
    "Synthesis by Sub-question",
    "Limitations",
    "Conclusion and Future Directions",
)


def _documents(full_texts: Sequence[FullText]) -> str:
    return "\n\n".join(f'<document pmid="{doc.item_id}">\n{doc.text}\n</document>' for doc in full_texts)


def _trials(trials: Sequence[ClinicalTrial]) -> str:
    if not trials:
        return "(none)"
    return "\n".join(
        f'<trial nct="{t.nct_id}" score="{t.score}" status="{t.status}">\n'
        f"  {t.title}\n  {t.summary}\n"
        f"  Conditions: {', '.join(t.conditions)}; Interventions: {', '.join(t.interventions)}\n</trial>"
        for t in trials
    )


def _web(results: Sequence[WebResult]) -> str:
    if not results:
        return "(none)"
    return "\n".join(
        f'<page url="{r.url}" score="{r.score}">\n  {r.title}\n  {r.snippet}\n</page>' for r in results
    )


class ReportSynthesizer:
    def __init__(self, llm_client):
        self.llm_client = llm_client

    async def write(
        self,
        plan: ResearchPlan,
        full_texts: Sequence[FullText],
        trials: Sequence[ClinicalTrial],
        web_results: Sequence[WebResult],
    ) -> str:
        if plan is None or not full_texts:
            raise PreconditionError("Cannot write the report without a research plan and at least one full text.")

        questions = "\n".join(f"{i}. {sq.question}" for i, sq in enumerate(plan.sub_questions, 1))
        headings = "\n".join(f"{i}. ## {name}" for i, name in enumerate(SECTIONS, 1))
        prompt = f"""You are a top-tier medical researcher and writer. Synthesize the sources
below into a comprehensive, structured literature review.

Research focus: "{plan.clarification}"
Sub-questions:
{questions}

Full-text articles (tagged by PMID):
{_documents(full_texts)}

Registered clinical trials (relevance-scored):
{_trials(trials)}

Web sources (relevance-scored):
{_web(web_results)}

Write a single Markdown document with exactly these sections as `##` headings:
{headings}

- The Executive Summary is 3-5 bullet points.
- The Methodology Overview summarises the kinds of evidence used (trial designs, reviews, registries, web).
- Synthesis by Sub-question has one subsection per sub-question and integrates findings across
  sources, noting agreement, contradictions and gaps.
- Every factual claim is immediately followed by its citation: [PMID:123456] for articles,
  [NCT:NCT01234567] for trials, [URL:https://...] for web sources.
- Output only the report."""

        response = await self.llm_client.generate(
            prompt=prompt,
            label=f"writing review from {len(full_texts)} full texts",
            smart=True,
        )
        report = response.content.strip()
        if not report:
            raise ProviderError("The model returned an empty report.")
        logger.info(f"Report written: {len(report)} chars")
        return report
