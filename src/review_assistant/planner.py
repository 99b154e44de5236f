"""
Research strategist: turns a topic into a ResearchPlan and revises it from feedback.

The judge decides the sub-questions and their ids, but ids coming back from a model
are not trusted: every plan goes through reconcile_subquestion_ids before use.
"""

import json
import logging
from uuid import uuid4

from pydantic import ValidationError

from review_assistant.backends.llm import JSON_FORMAT, parse_json_response
from review_assistant.errors import MalformedResponseError
from review_assistant.models import ResearchPlan

logger = logging.getLogger(__name__)

PLAN_SCHEMA = """{
  "subQuestions": [
    {"id": "sq1", "question": "The first sub-question.", "keywords": ["keyword1", "keyword2", "keyword3"]},
    {"id": "sq2", "question": "The second sub-question.", "keywords": ["keywordA", "keywordB"]}
  ],
  "clarification": "One clarification question for the user."
}"""


def reconcile_subquestion_ids(plan: ResearchPlan) -> ResearchPlan:
    """
    Make sub-question ids non-empty and unique.

    Walks the sub-questions in order: an id is kept the first time it is seen,
    missing or repeated ids get a fresh one.
    """
    taken = {sq.id for sq in plan.sub_questions if sq.id}
    seen = set()
    sub_questions = []
    for sq in plan.sub_questions:
        new_id = sq.id
        if not new_id or new_id in seen:
            new_id = uuid4().hex
            while new_id in taken:
                new_id = uuid4().hex
            taken.add(new_id)
        seen.add(new_id)
        sub_questions.append(sq.model_copy(update={"id": new_id}))
    return plan.model_copy(update={"sub_questions": sub_questions})


class ResearchStrategist:
    """Drafts and refines research plans with the judge."""

    def __init__(self, llm_client):
        self.llm_client = llm_client

    async def draft_plan(self, topic: str) -> ResearchPlan:
        prompt = f"""
You are a collaborative research strategist specialising in biomedical fields.
Break the user's broad research interest into a structured, actionable research plan.

User topic: "{topic}"

1. Decompose the topic into a suitable number of critical, distinct sub-questions.
   Each should represent one key facet of the topic.
2. For each sub-question, give 3-5 effective PubMed search keywords (a mix of MeSH
   terms and common phrases).
3. Write one clarification question to ask the user so the focus can be refined together.

Output a single JSON object with this structure:
{PLAN_SCHEMA}
"""
        response = await self.llm_client.generate(
            prompt=prompt,
            response_format=JSON_FORMAT,
            label="drafting research plan",
        )
        return self._parse_plan(response)

    async def refine_plan(self, topic: str, plan: ResearchPlan, feedback: str) -> ResearchPlan:
        current = json.dumps(plan.model_dump(by_alias=True, exclude={"web_query"}), indent=2, ensure_ascii=False)
        prompt = f"""
You are a research strategist in an ongoing conversation with a user. You proposed a
research plan and the user has sent feedback.

Original topic: "{topic}"

Current plan:
{current}

User feedback:
"{feedback}"

Revise the ENTIRE plan according to the feedback. You may add, remove, merge or rephrase
sub-questions and keywords, and update the clarification question. Keep the id of every
sub-question you keep; leave "id" empty for new ones.

Output the complete revised plan as a single JSON object with the same structure:
{PLAN_SCHEMA}
"""
        response = await self.llm_client.generate(
            prompt=prompt,
            response_format=JSON_FORMAT,
            label="refining research plan",
        )
        return self._parse_plan(response)

    def _parse_plan(self, response) -> ResearchPlan:
        data = parse_json_response(response)
        try:
            plan = ResearchPlan.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(str(e)) from e
        if not plan.sub_questions:
            raise MalformedResponseError("plan has no sub-questions")
        plan = reconcile_subquestion_ids(plan)
        logger.info(f"Plan has {len(plan.sub_questions)} sub-questions")
        return plan
