"""
Query generation with the judge.

- plan_source_queries: one call turning the confirmed plan into a query per source
- get_supplemental_queries: the self-critique step, asking for extra queries that
  target sub-questions the current results cover poorly
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Sequence

from review_assistant.backends.llm import JSON_FORMAT, parse_json_response
from review_assistant.errors import MalformedResponseError
from review_assistant.models import Item, ResearchPlan

logger = logging.getLogger(__name__)


@dataclass
class SourceQueries:
    """One query per source, each in that source's own grammar."""
    pubmed: str
    clinical_trials: str
    web: str


def _plan_outline(plan: ResearchPlan) -> str:
    lines = [f'- Main focus: "{plan.clarification}"', "- Sub-questions:"]
    for i, sq in enumerate(plan.sub_questions, 1):
        keywords = ", ".join(sq.keywords)
        lines.append(f"  {i}. {sq.question}" + (f" (keywords: {keywords})" if keywords else ""))
    return "\n".join(lines)


async def plan_source_queries(plan: ResearchPlan, llm_client) -> SourceQueries:
    """
    Build the three source queries for a confirmed plan.

    All three must come back non-empty; a partial set is rejected.
    """
    prompt = f"""You are a biomedical information specialist. Write one search query per
information source for this research plan.

Research plan:
{_plan_outline(plan)}

Sources:
- pubmed_query: PubMed boolean query. Group each sub-question's key concepts with AND,
  combine the groups with OR, use MeSH terms and quoted phrases where useful.
- clinical_trials_query: ClinicalTrials.gov query in the same boolean style, focused on
  conditions and interventions.
- web_query: a short natural-language web search query (under 12 words).

Return JSON: {{"pubmed_query": "...", "clinical_trials_query": "...", "web_query": "..."}}"""

    response = await llm_client.generate(
        prompt=prompt,
        response_format=JSON_FORMAT,
        label="planning source queries",
    )
    data = parse_json_response(response)
    if not isinstance(data, dict):
        raise MalformedResponseError("query plan is not a JSON object")

    fields = {}
    for key in ("pubmed_query", "clinical_trials_query", "web_query"):
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise MalformedResponseError(f"query plan is missing {key}")
        fields[key] = value.strip()

    return SourceQueries(
        pubmed=fields["pubmed_query"],
        clinical_trials=fields["clinical_trials_query"],
        web=fields["web_query"],
    )


async def get_supplemental_queries(
    plan: ResearchPlan,
    items: Sequence[Item],
    llm_client,
    source_name: str,
    query_style: str,
) -> List[str]:
    """
    Ask the judge which sub-questions are under-covered by `items`.

    Returns zero or more extra queries; an empty list means coverage is sufficient.
    """
    results = "\n".join(item.describe() for item in items)
    example = json.dumps({"new_queries": ["query targeting an uncovered sub-question"]})
    prompt = f"""You are an expert research analyst. Decide whether the current {source_name}
results cover every part of the research plan, and if not, write new queries to fill the gaps.

Research plan:
{_plan_outline(plan)}

Current results ({len(items)}):
{results}

1. Identify sub-questions that are poorly covered or not covered at all.
2. For each gap write one or two specific {source_name} queries ({query_style}).
3. If every sub-question is well covered, return an empty list.

Return JSON: {example}
If no new queries are needed: {{"new_queries": []}}"""

    response = await llm_client.generate(
        prompt=prompt,
        response_format=JSON_FORMAT,
        label=f"critiquing {len(items)} {source_name} results",
    )
    data = parse_json_response(response)
    queries = data.get("new_queries") if isinstance(data, dict) else None
    if not isinstance(queries, list) or not all(isinstance(q, str) for q in queries):
        raise MalformedResponseError("critique did not return a new_queries list")

    # drop blanks and repeats, keep order
    cleaned = []
    for q in queries:
        q = q.strip()
        if q and q not in cleaned:
            cleaned.append(q)
    return cleaned
