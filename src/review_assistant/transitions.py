"""
Session state machine.

Every function here is pure: it takes a ResearchSession and returns an updated
copy, never touching the input. The repository applies them atomically.

    IDLE -> PLANNING (-> PLANNING ...) -> SCREENING -> GATHERING -> SYNTHESIZING -> DONE

Errors are not a stage: `error` is set while `stage` stays where it was.
"""

from datetime import datetime
from typing import Optional

from review_assistant.errors import InvalidTransitionError
from review_assistant.models import FailedAction, ResearchPlan, ResearchSession, Stage

NAME_MAX_CHARS = 50


def session_name(topic: str) -> str:
    topic = " ".join(topic.split())
    return topic if len(topic) <= NAME_MAX_CHARS else topic[:NAME_MAX_CHARS - 3] + "..."


def log_entry(message: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"[{now:%H:%M:%S}] {message}"


def new_session(topic: str) -> ResearchSession:
    topic = topic.strip()
    return ResearchSession(
        name=session_name(topic),
        topic=topic,
        log=[log_entry(f'Session created: "{topic}"')],
    )


def update(session: ResearchSession, **fields) -> ResearchSession:
    return session.model_copy(update=fields)


def append_log(session: ResearchSession, message: str) -> ResearchSession:
    return session.model_copy(update={"log": [*session.log, log_entry(message)]})


def require_stage(session: ResearchSession, action: str, *stages: Stage) -> None:
    if session.stage not in stages:
        allowed = ", ".join(s.value for s in stages)
        raise InvalidTransitionError(
            f"Cannot {action} while the session is in stage {session.stage.value} (allowed: {allowed})."
        )


def begin(session: ResearchSession, message: str, **fields) -> ResearchSession:
    """Mark a step as running and clear the previous error."""
    return session.model_copy(update={
        "loading": True,
        "loading_message": message,
        "error": None,
        "last_failed_action": None,
        **fields,
    })


def fail(session: ResearchSession, message: str, failed_action: Optional[FailedAction]) -> ResearchSession:
    """Record an error; the stage is left as it is."""
    return session.model_copy(update={
        "loading": False,
        "loading_message": None,
        "error": message,
        "last_failed_action": failed_action,
    })


def plan_ready(session: ResearchSession, plan: ResearchPlan) -> ResearchSession:
    return session.model_copy(update={
        "stage": Stage.PLANNING,
        "research_plan": plan,
        "loading": False,
        "loading_message": None,
    })


def begin_search(session: ResearchSession, plan: ResearchPlan) -> ResearchSession:
    """Enter SCREENING, discarding results of any previous search run."""
    return begin(
        session,
        "Planning source queries...",
        stage=Stage.SCREENING,
        research_plan=plan,
        pubmed_query=None,
        clinical_trials_query=None,
        raw_articles=[],
        scored_abstracts=[],
        clinical_trials=[],
        web_results=[],
        literature_status=None,
        trials_status=None,
        web_status=None,
    )


def search_finished(session: ResearchSession) -> ResearchSession:
    return session.model_copy(update={"loading": False, "loading_message": None})


def begin_synthesis(session: ResearchSession) -> ResearchSession:
    return begin(session, "Writing the review...", stage=Stage.SYNTHESIZING)


def report_ready(session: ResearchSession, report: str) -> ResearchSession:
    return session.model_copy(update={
        "stage": Stage.DONE,
        "final_report": report,
        "loading": False,
        "loading_message": None,
    })


def reset(session: ResearchSession) -> ResearchSession:
    """Back to IDLE. Identity, topic and the audit log survive."""
    cleared = ResearchSession(
        id=session.id,
        name=session.name,
        created_at=session.created_at,
        topic=session.topic,
        log=session.log,
    )
    return append_log(cleared, "Session reset.")
