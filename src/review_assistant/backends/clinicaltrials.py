"""
ClinicalTrials.gov API v2 client.

Single-phase search: one request returns structured study records.
"""

import logging
from typing import List, Optional

import httpx

from review_assistant.errors import ProviderError
from review_assistant.models import ClinicalTrial

logger = logging.getLogger(__name__)


class ClinicalTrialsClient:
    """Client for the ClinicalTrials.gov studies endpoint."""

    BASE_URL = "https://clinicaltrials.gov/api/v2"

    # Fields we want for each study
    FIELDS = "NCTId,BriefTitle,OverallStatus,BriefSummary,Condition,InterventionName"

    # The registry has no keyed tier; supplemental queries are always paced
    throttled = True

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.client = http_client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str, limit: int = 20) -> List[ClinicalTrial]:
        logger.info(f"ClinicalTrials.gov search: {query!r}")
        params = {
            "query.term": query,
            "fields": self.FIELDS,
            "pageSize": min(limit, 1000),  # API max is 1000
            "format": "json",
        }
        try:
            resp = await self.client.get(f"{self.BASE_URL}/studies", params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"ClinicalTrials.gov search failed for {query!r} with status {e.response.status_code}",
                e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"ClinicalTrials.gov request failed: {e}") from e
        except ValueError as e:
            raise ProviderError("ClinicalTrials.gov returned invalid JSON") from e

        trials = []
        try:
            for study in data.get("studies", []):
                trial = self._parse_study(study)
                if trial is not None:
                    trials.append(trial)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"ClinicalTrials.gov returned an unexpected study record: {e!r}") from e
        return trials

    def _parse_study(self, study: dict) -> Optional[ClinicalTrial]:
        """Convert a v2 study record to ClinicalTrial."""
        proto = study.get("protocolSection") or {}
        ident = proto.get("identificationModule") or {}
        nct_id = (ident.get("nctId") or "").strip()
        if not nct_id:
            return None

        arms = proto.get("armsAndInterventionsModule") or {}
        return ClinicalTrial(
            nct_id=nct_id,
            title=ident.get("briefTitle") or ident.get("officialTitle") or "",
            status=(proto.get("statusModule") or {}).get("overallStatus", ""),
            summary=(proto.get("descriptionModule") or {}).get("briefSummary", ""),
            conditions=(proto.get("conditionsModule") or {}).get("conditions", []),
            interventions=[i["name"] for i in arms.get("interventions", []) if i.get("name")],
        )

    async def close(self):
        await self.client.aclose()
