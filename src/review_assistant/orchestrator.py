"""
Research Orchestrator

Consumes commands, runs the pipeline stage they ask for and records the outcome
on the session:

    plan (strategist) -> confirm (query planner + 3 concurrent engines)
    -> select -> gather (one article at a time) -> synthesize

Any failure ends up in `session.error` together with the failed command
(when it can be replayed); the stage is left where it was so partial results
stay visible. Retries are always user-initiated.
"""

import asyncio
import logging
from typing import Optional

from review_assistant import gathering, transitions
from review_assistant.commands import (
    AppendLog,
    Command,
    ExecuteSearch,
    RefinePlan,
    ResetSession,
    Retry,
    ScrapeOne,
    SkipOne,
    StartGathering,
    StartResearch,
    SynthesizeReport,
    command_from_failed_action,
)
from review_assistant.engine import (
    SearchRefineScoreEngine,
    literature_source,
    trials_source,
    web_source,
)
from review_assistant.errors import (
    NoLiteratureResultsError,
    PreconditionError,
    ReviewError,
    SessionNotFoundError,
)
from review_assistant.gathering import DEFAULT_SCRAPE_TIMEOUT, FullTextGatherer
from review_assistant.models import FailedAction, ResearchSession, Stage
from review_assistant.planner import ResearchStrategist, reconcile_subquestion_ids
from review_assistant.reformulate import plan_source_queries
from review_assistant.retrieve import UNKEYED_DELAY_SECONDS
from review_assistant.store import SessionRepository
from review_assistant.synthesis import ReportSynthesizer

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns the session state machine and wires the pipeline components together."""

    def __init__(
        self,
        repository: SessionRepository,
        llm_client,
        pubmed_client,
        trials_client,
        web_client,
        scraper,
        scrape_timeout: float = DEFAULT_SCRAPE_TIMEOUT,
        supplemental_delay: float = UNKEYED_DELAY_SECONDS,
    ):
        self.repository = repository
        self.llm_client = llm_client
        self.sources = [
            literature_source(pubmed_client),
            trials_source(trials_client),
            web_source(web_client),
        ]
        self.supplemental_delay = supplemental_delay
        self.strategist = ResearchStrategist(llm_client)
        self.gatherer = FullTextGatherer(scraper, timeout=scrape_timeout)
        self.synthesizer = ReportSynthesizer(llm_client)

        self._handlers = {
            StartResearch: self._start_research,
            RefinePlan: self._refine_plan,
            ExecuteSearch: self._execute_search,
            StartGathering: self._start_gathering,
            ScrapeOne: self._scrape_one,
            SkipOne: self._skip_one,
            SynthesizeReport: self._synthesize_report,
            AppendLog: self._append_log,
            ResetSession: self._reset,
        }

    # --- plumbing ---

    def _note(self, session_id: str, message: str) -> None:
        logger.info(message)
        self.repository.apply(session_id, lambda s: transitions.append_log(s, message))

    def _apply(self, session_id: str, change) -> ResearchSession:
        return self.repository.apply(session_id, change)

    def _failed_action(self, command: Command, session: ResearchSession) -> Optional[FailedAction]:
        if isinstance(command, ExecuteSearch) and command.plan is None and session.research_plan:
            command = ExecuteSearch(session_id=command.session_id, plan=session.research_plan)
        return command.failed_action()

    async def dispatch(self, command: Command) -> ResearchSession:
        """Handle one command and return the session as it stands afterwards."""
        self.repository.get(command.session_id)
        logger.debug(f"Dispatching {command.type} for session {command.session_id}")
        try:
            if isinstance(command, Retry):
                command = self._replay(command.session_id)
            await self._handlers[type(command)](command)
        except ReviewError as e:
            logger.error(f"{command.type} failed: {e}")
            self._record_failure(command, str(e))
        except SessionNotFoundError:
            raise
        except Exception as e:
            # still a failure of this command: never leave the session loading
            logger.exception(f"{command.type} failed unexpectedly")
            self._record_failure(command, f"Unexpected error: {e}")
        return self.repository.get(command.session_id)

    def _record_failure(self, command: Command, message: str) -> None:
        session = self.repository.get(command.session_id)
        failed_action = self._failed_action(command, session)
        self._apply(command.session_id, lambda s: transitions.fail(
            transitions.append_log(s, f"Error: {message}"), message, failed_action
        ))

    def _replay(self, session_id: str) -> Command:
        session = self.repository.get(session_id)
        if session.last_failed_action is None:
            raise PreconditionError("There is no failed action to retry.")
        command = command_from_failed_action(session_id, session.last_failed_action)
        self._note(session_id, f"Retrying {command.type}.")
        return command

    # --- planning ---

    async def _start_research(self, command: StartResearch) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "start research", Stage.IDLE, Stage.PLANNING)
        topic = command.topic.strip() or session.topic
        if not topic:
            raise PreconditionError("A research topic is required.")

        self._note(sid, f'Research started, topic: "{topic}"')
        self._apply(sid, lambda s: transitions.begin(
            s, "Drafting research plan...", topic=topic, name=s.name or transitions.session_name(topic)
        ))

        self._note(sid, "Asking the model for an initial research plan...")
        plan = await self.strategist.draft_plan(topic)

        self._note(sid, f"Research plan drafted with {len(plan.sub_questions)} sub-questions, waiting for review.")
        self._apply(sid, lambda s: transitions.plan_ready(s, plan))

    async def _refine_plan(self, command: RefinePlan) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "refine the plan", Stage.PLANNING)
        if session.research_plan is None:
            raise PreconditionError("There is no research plan to refine.")

        self._note(sid, f'Refining the plan with feedback: "{command.feedback}"')
        self._apply(sid, lambda s: transitions.begin(s, "Refining research plan..."))

        plan = await self.strategist.refine_plan(session.topic, session.research_plan, command.feedback)

        self._note(sid, "Plan refined, waiting for review.")
        self._apply(sid, lambda s: transitions.plan_ready(s, plan))

    # --- searching ---

    async def _execute_search(self, command: ExecuteSearch) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "run the search", Stage.PLANNING, Stage.SCREENING)
        plan = command.plan or session.research_plan
        if plan is None or not plan.sub_questions:
            raise PreconditionError("Confirm a research plan with at least one sub-question first.")
        plan = reconcile_subquestion_ids(plan)

        self._note(sid, "Plan confirmed, starting multi-source search...")
        self._apply(sid, lambda s: transitions.begin_search(s, plan))

        # --- Step 1: One query per source ---
        queries = await plan_source_queries(plan, self.llm_client)
        plan = plan.model_copy(update={"web_query": queries.web})
        self._note(sid, f"PubMed query: {queries.pubmed}")
        self._note(sid, f"ClinicalTrials.gov query: {queries.clinical_trials}")
        self._note(sid, f"Web query: {queries.web}")
        self._apply(sid, lambda s: transitions.update(
            s,
            research_plan=plan,
            pubmed_query=queries.pubmed,
            clinical_trials_query=queries.clinical_trials,
            loading_message="Searching PubMed, ClinicalTrials.gov and the web...",
        ))

        # --- Step 2: Search-refine-score every source concurrently ---
        per_source_query = [queries.pubmed, queries.clinical_trials, queries.web]
        engines = [
            SearchRefineScoreEngine(source, self.llm_client, self.repository, self.supplemental_delay)
            for source in self.sources
        ]
        results = await asyncio.gather(
            *(engine.run(sid, plan, q) for engine, q in zip(engines, per_source_query)),
            return_exceptions=True,
        )

        # All-or-nothing: every engine has finished, first failure wins
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.warning(f"{source.name} engine failed: {result}")
                raise result

        if not self.repository.get(sid).scored_abstracts:
            raise NoLiteratureResultsError(
                "PubMed returned no articles for this plan, so there is nothing to gather. "
                "Refine the plan and search again."
            )

        self._note(sid, "All sources searched and scored.")
        self._apply(sid, transitions.search_finished)

    # --- gathering ---

    async def _start_gathering(self, command: StartGathering) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "start gathering", Stage.SCREENING, Stage.GATHERING)
        articles = gathering.select_articles(session, command.item_ids)

        self._note(sid, f"{len(articles)} articles selected, starting full-text gathering.")
        self._apply(sid, lambda s: gathering.start(s, articles))

    async def _scrape_one(self, command: ScrapeOne) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "scrape", Stage.GATHERING)
        article = gathering.current_article(session, command.item_id)

        self._note(sid, f"Taking page text for PMID {article.pmid}...")
        self._apply(sid, lambda s: transitions.begin(s, f"Reading page for PMID {article.pmid}..."))
        text = await self.gatherer.fetch_text(article, url=command.url)

        self._note(sid, f"Full text for PMID {article.pmid} captured ({len(text)} chars).")
        self._apply(sid, lambda s: gathering.record_text(s, article.pmid, text))

    async def _skip_one(self, command: SkipOne) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "skip", Stage.GATHERING)
        article = gathering.current_article(session)

        self._note(sid, f"Skipped PMID {article.pmid} (no accessible full text).")
        self._apply(sid, gathering.skip)

    # --- synthesis ---

    async def _synthesize_report(self, command: SynthesizeReport) -> None:
        sid = command.session_id
        session = self.repository.get(sid)
        transitions.require_stage(session, "write the report", Stage.GATHERING)
        if session.research_plan is None or not session.full_texts:
            raise PreconditionError(
                "Cannot write the report: a research plan and at least one full text are required."
            )

        self._note(sid, "All sources ready, writing the review...")
        self._apply(sid, transitions.begin_synthesis)
        try:
            report = await self.synthesizer.write(
                session.research_plan,
                session.full_texts,
                session.clinical_trials,
                session.web_results,
            )
        except Exception:
            self._apply(sid, lambda s: transitions.update(s, stage=Stage.GATHERING))
            raise

        self._note(sid, "Review finished.")
        self._apply(sid, lambda s: transitions.report_ready(s, report))

    # --- misc ---

    async def _append_log(self, command: AppendLog) -> None:
        self._note(command.session_id, command.message)

    async def _reset(self, command: ResetSession) -> None:
        logger.info(f"Resetting session {command.session_id}")
        self._apply(command.session_id, transitions.reset)
