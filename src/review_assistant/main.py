"""
CLI Entrypoint for the review assistant

Every sub-command works on the active session (the one created or switched to
last). Sessions persist between invocations in SESSION_STORE_PATH.

    review-assistant new "gut microbiome and autism"
    review-assistant refine "focus on probiotics trials"
    review-assistant confirm
    review-assistant select 31234567 30987654
    review-assistant scrape            # repeat per article, or `skip`
    review-assistant synthesize -o review.md
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

# Load .env file before importing modules that need env vars
load_dotenv()

from review_assistant.backends.clinicaltrials import ClinicalTrialsClient
from review_assistant.backends.llm import LLMClient
from review_assistant.backends.pubmed import PubMedClient
from review_assistant.backends.scraper import HttpPageScraper
from review_assistant.backends.websearch import build_web_search
from review_assistant.commands import (
    AppendLog,
    ExecuteSearch,
    RefinePlan,
    ResetSession,
    Retry,
    ScrapeOne,
    SkipOne,
    StartGathering,
    StartResearch,
    SynthesizeReport,
)
from review_assistant.config import Settings
from review_assistant.errors import ConfigurationError, SessionNotFoundError
from review_assistant.models import ResearchSession
from review_assistant.orchestrator import Orchestrator
from review_assistant.store import SessionRepository

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # suppress noisy httpx logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# Parse command-line arguments
def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Multi-source literature review assistant (PubMed, ClinicalTrials.gov, web)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("new", help="Create a session for a topic and draft a research plan")
    p.add_argument("topic")

    sub.add_parser("list", help="List stored sessions")

    p = sub.add_parser("show", help="Show a session (default: the active one)")
    p.add_argument("session_id", nargs="?")
    p.add_argument("--json", action="store_true", help="Dump the full session record as JSON")

    p = sub.add_parser("switch", help="Make another session active")
    p.add_argument("session_id")

    p = sub.add_parser("rename", help="Rename a session")
    p.add_argument("session_id")
    p.add_argument("name")

    p = sub.add_parser("delete", help="Delete a session")
    p.add_argument("session_id")

    p = sub.add_parser("refine", help="Revise the research plan with feedback")
    p.add_argument("feedback")

    sub.add_parser("confirm", help="Confirm the plan and search all sources")

    p = sub.add_parser("select", help="Select scored articles (PMIDs) for full-text gathering")
    p.add_argument("pmids", nargs="+")

    p = sub.add_parser("scrape", help="Take the page text for the current article")
    p.add_argument("--url", help="Page to read instead of the article's PubMed page")

    sub.add_parser("skip", help="Skip the current article")

    p = sub.add_parser("synthesize", help="Write the final review")
    p.add_argument("--output", "-o", help="Also write the report to this file")

    sub.add_parser("retry", help="Replay the last failed action")
    sub.add_parser("reset", help="Return the active session to IDLE")

    p = sub.add_parser("note", help="Add a note to the session log")
    p.add_argument("message")

    return parser.parse_args(argv)


def build_orchestrator(settings: Settings, repository: SessionRepository):
    """Create every client; raises ConfigurationError when credentials are missing."""
    llm_client = LLMClient(settings)
    clients = [
        llm_client,
        PubMedClient(api_key=settings.ncbi_api_key),
        ClinicalTrialsClient(),
        build_web_search(settings),
        HttpPageScraper(),
    ]
    orchestrator = Orchestrator(
        repository,
        llm_client=llm_client,
        pubmed_client=clients[1],
        trials_client=clients[2],
        web_client=clients[3],
        scraper=clients[4],
        scrape_timeout=settings.scrape_timeout_seconds,
    )
    return orchestrator, clients


def follow_log(repository: SessionRepository, session_id: str):
    """State-changed listener echoing new session log lines to stderr."""
    seen = len(repository.get(session_id).log)

    def listener():
        nonlocal seen
        session = repository.find(session_id)
        if session is None:
            return
        for line in session.log[seen:]:
            print(line, file=sys.stderr)
        seen = len(session.log)

    return listener


def summarize(session: ResearchSession) -> str:
    lines = [
        f"Session {session.id}: {session.name}",
        f"Stage: {session.stage.value}",
        f"Topic: {session.topic}",
    ]
    if session.research_plan:
        plan = session.research_plan
        lines.append("Plan:")
        for sq in plan.sub_questions:
            lines.append(f"  [{sq.id}] {sq.question} ({', '.join(sq.keywords)})")
        if plan.clarification:
            lines.append(f"  Clarification: {plan.clarification}")
    if session.pubmed_query:
        lines.append(f"PubMed query: {session.pubmed_query}")
    for title, items in (
        ("PubMed articles", session.scored_abstracts),
        ("Clinical trials", session.clinical_trials),
        ("Web results", session.web_results),
    ):
        if items:
            lines.append(f"{title} ({len(items)}):")
            for item in items[:10]:
                lines.append(f"  {'-' if item.score is None else item.score:>2}  {item.item_id}  {getattr(item, 'title', '')[:70]}")
    if session.articles_to_fetch:
        lines.append(
            f"Gathering: {session.gathering_index}/{len(session.articles_to_fetch)} processed, "
            f"{len(session.full_texts)} full texts"
        )
        if session.current_item:
            lines.append(f"  Current: PMID {session.current_item.pmid} {session.current_item.url}")
    if session.final_report:
        lines.append(f"Report: {len(session.final_report)} chars")
    if session.error:
        lines.append(f"Error: {session.error}")
        if session.last_failed_action:
            lines.append(f"  (run `retry` to replay {session.last_failed_action.type})")
    return "\n".join(lines)


def make_command(args, session_id: str):
    if args.command == "new":
        return StartResearch(session_id=session_id, topic=args.topic)
    if args.command == "refine":
        return RefinePlan(session_id=session_id, feedback=args.feedback)
    if args.command == "confirm":
        return ExecuteSearch(session_id=session_id)
    if args.command == "select":
        return StartGathering(session_id=session_id, item_ids=args.pmids)
    if args.command == "scrape":
        return ScrapeOne(session_id=session_id, url=args.url)
    if args.command == "skip":
        return SkipOne(session_id=session_id)
    if args.command == "synthesize":
        return SynthesizeReport(session_id=session_id)
    if args.command == "retry":
        return Retry(session_id=session_id)
    if args.command == "reset":
        return ResetSession(session_id=session_id)
    if args.command == "note":
        return AppendLog(session_id=session_id, message=args.message)
    raise ValueError(f"Unknown command {args.command!r}")


# Main entry point of the entire program
async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    settings = Settings.from_env()
    repository = SessionRepository(settings.session_store_path)

    # --- Session management, no clients needed ---
    try:
        if args.command == "list":
            for s in repository.list():
                marker = "*" if s.id == repository.active_session_id else " "
                print(f"{marker} {s.id}  {s.stage.value:<12}  {s.name}")
            return 0
        if args.command == "show":
            session = repository.get(args.session_id) if args.session_id else repository.active()
            if session is None:
                print("No active session.", file=sys.stderr)
                return 1
            if args.json:
                print(json.dumps(session.model_dump(mode="json"), indent=2, ensure_ascii=False))
            else:
                print(summarize(session))
            return 0
        if args.command == "switch":
            repository.switch(args.session_id)
            return 0
        if args.command == "rename":
            repository.rename(args.session_id, args.name)
            return 0
        if args.command == "delete":
            repository.delete(args.session_id)
            return 0
    except SessionNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 1

    # --- Pipeline commands ---
    try:
        orchestrator, clients = build_orchestrator(settings, repository)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        if args.command == "new":
            session = repository.create(args.topic)
        else:
            session = repository.active()
            if session is None:
                print("No active session. Start one with `new TOPIC`.", file=sys.stderr)
                return 1

        unsubscribe = repository.subscribe(follow_log(repository, session.id))
        try:
            session = await orchestrator.dispatch(make_command(args, session.id))
        finally:
            unsubscribe()
    finally:
        for client in clients:
            await client.close()

    if args.command == "synthesize" and session.final_report:
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(session.final_report)
            print(f"Report saved to {args.output}", file=sys.stderr)
        print(session.final_report)
    else:
        print(summarize(session))

    return 1 if session.error else 0


def run() -> None:
    sys.exit(asyncio.run(main()))


# Just some standard boilerplate
if __name__ == "__main__":
    run()
