"""
Inbound commands handled by the orchestrator.

A failed command is recorded on the session as a FailedAction {type, payload} and
can be rebuilt from it for an exact replay. Scraping is the exception: it depends
on whatever page is open at that moment, so it is never recorded for replay.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Type

from review_assistant.errors import PreconditionError
from review_assistant.models import FailedAction, ResearchPlan


@dataclass
class Command:
    session_id: str

    type: ClassVar[str] = ""
    replayable: ClassVar[bool] = True

    def payload(self) -> dict:
        return {}

    def failed_action(self) -> Optional[FailedAction]:
        if not self.replayable:
            return None
        return FailedAction(type=self.type, payload=self.payload())

    @classmethod
    def from_payload(cls, session_id: str, payload: dict) -> "Command":
        return cls(session_id=session_id)


@dataclass
class StartResearch(Command):
    topic: str = ""
    type: ClassVar[str] = "START_RESEARCH"

    def payload(self) -> dict:
        return {"topic": self.topic}

    @classmethod
    def from_payload(cls, session_id, payload):
        return cls(session_id=session_id, topic=payload.get("topic", ""))


@dataclass
class RefinePlan(Command):
    feedback: str = ""
    type: ClassVar[str] = "REFINE_PLAN"

    def payload(self) -> dict:
        return {"feedback": self.feedback}

    @classmethod
    def from_payload(cls, session_id, payload):
        return cls(session_id=session_id, feedback=payload.get("feedback", ""))


@dataclass
class ExecuteSearch(Command):
    """Confirm the plan and search all sources. Without `plan` the stored plan is used."""
    plan: Optional[ResearchPlan] = None
    type: ClassVar[str] = "EXECUTE_SEARCH"

    def payload(self) -> dict:
        return {"plan": self.plan.model_dump(mode="json") if self.plan else None}

    @classmethod
    def from_payload(cls, session_id, payload):
        plan = payload.get("plan")
        return cls(session_id=session_id, plan=ResearchPlan.model_validate(plan) if plan else None)


@dataclass
class StartGathering(Command):
    item_ids: List[str] = field(default_factory=list)
    type: ClassVar[str] = "START_GATHERING"

    def payload(self) -> dict:
        return {"item_ids": list(self.item_ids)}

    @classmethod
    def from_payload(cls, session_id, payload):
        return cls(session_id=session_id, item_ids=list(payload.get("item_ids", [])))


@dataclass
class ScrapeOne(Command):
    """Take the text of the page currently open for the current item."""
    item_id: Optional[str] = None
    url: Optional[str] = None
    type: ClassVar[str] = "SCRAPE_ONE"
    replayable: ClassVar[bool] = False


@dataclass
class SkipOne(Command):
    type: ClassVar[str] = "SKIP_ONE"
    replayable: ClassVar[bool] = False


@dataclass
class SynthesizeReport(Command):
    type: ClassVar[str] = "SYNTHESIZE_REPORT"


@dataclass
class AppendLog(Command):
    message: str = ""
    type: ClassVar[str] = "APPEND_LOG"
    replayable: ClassVar[bool] = False


@dataclass
class ResetSession(Command):
    type: ClassVar[str] = "RESET"
    replayable: ClassVar[bool] = False


@dataclass
class Retry(Command):
    """Replay the session's last failed action."""
    type: ClassVar[str] = "RETRY"
    replayable: ClassVar[bool] = False


REPLAYABLE: Dict[str, Type[Command]] = {
    cls.type: cls
    for cls in (StartResearch, RefinePlan, ExecuteSearch, StartGathering, SynthesizeReport)
}


def command_from_failed_action(session_id: str, action: FailedAction) -> Command:
    cls = REPLAYABLE.get(action.type)
    if cls is None:
        raise PreconditionError(f"Action {action.type} cannot be retried.")
    return cls.from_payload(session_id, action.payload)
