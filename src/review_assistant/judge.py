"""
LLM Relevance Judgment

Scores every item of one source against the research plan in a single call:
an integer 1-10 plus a one-sentence reason per identifier. Items the judge leaves
out keep a score of 0 and a placeholder reason, they are never dropped.

The result is sorted by score, descending; ties keep discovery order.
"""

import logging
import math
from typing import Any, Dict, List, Sequence, TypeVar

from review_assistant.backends.llm import JSON_FORMAT, parse_json_response
from review_assistant.errors import MalformedResponseError
from review_assistant.models import Item, ResearchPlan

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Item)

MIN_SCORE = 1
MAX_SCORE = 10
UNSCORED = 0
UNSCORED_REASON = "No assessment was returned by the reviewer model."

# Wrapper keys some models put around the array
WRAPPER_KEYS = ("scores", "judgments", "items", "results", "reviews")


def clamp_score(value: Any) -> int:
    """Coerce a judge score to an int within 1-10."""
    if isinstance(value, bool):
        raise MalformedResponseError(f"score {value!r} is not a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(f"score {value!r} is not a number")
    if not math.isfinite(number):
        raise MalformedResponseError(f"score {value!r} is not a finite number")
    return max(MIN_SCORE, min(MAX_SCORE, int(round(number))))


def _parse_judgments(data: Any) -> Dict[str, Dict[str, Any]]:
    if isinstance(data, dict):
        for key in WRAPPER_KEYS:
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if not isinstance(data, list):
        raise MalformedResponseError("scores are not a JSON array")

    judgments: Dict[str, Dict[str, Any]] = {}
    for entry in data:
        if not isinstance(entry, dict) or entry.get("id") is None:
            raise MalformedResponseError(f"score entry without id: {entry!r}")
        item_id = str(entry["id"]).strip()
        if item_id in judgments:
            continue
        judgments[item_id] = {
            "score": clamp_score(entry.get("score")),
            "reason": str(entry.get("reason") or "").strip() or UNSCORED_REASON,
        }
    return judgments


def rank_items(items: Sequence[T]) -> List[T]:
    """Sort by score, highest first. Python's sort is stable so ties keep their order."""
    return sorted(items, key=lambda item: item.score or 0, reverse=True)


async def score_items(
    plan: ResearchPlan,
    items: Sequence[T],
    llm_client,
    source_name: str,
    reviewer_role: str,
) -> List[T]:
    """Judge all items in one call and return them scored and ranked."""
    if not items:
        return []

    questions = "\n".join(f"{i}. {sq.question}" for i, sq in enumerate(plan.sub_questions, 1))
    records = "\n".join(item.describe() for item in items)

    prompt = f"""You are a meticulous {reviewer_role}.

Research focus: "{plan.clarification}"

Sub-questions:
{questions}

{source_name} records to judge ({len(items)}):
{records}

Score each record's relevance to the research plan from 1 (not relevant) to 10
(highly relevant) and give one concise sentence explaining the score.

Respond with a JSON array, one entry per record, using the record's <id>:
[
  {{"id": "...", "score": 8, "reason": "The concise reason for the score."}},
  ...
]

Only output the JSON array, nothing else."""

    response = await llm_client.generate(
        prompt=prompt,
        response_format=JSON_FORMAT,
        label=f"scoring {len(items)} {source_name} records",
    )
    judgments = _parse_judgments(parse_json_response(response))

    scored = []
    missing = 0
    for item in items:
        j = judgments.get(item.item_id)
        if j is None:
            missing += 1
            j = {"score": UNSCORED, "reason": UNSCORED_REASON}
        scored.append(item.model_copy(update=j))

    if missing:
        logger.warning(f"Judge omitted {missing}/{len(items)} {source_name} records")

    ranked = rank_items(scored)
    for item in ranked[:3]:
        logger.info(f"  - [{item.score}] {item.item_id}: {item.reason[:60]}")
    return ranked
