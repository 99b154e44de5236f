"""
Supplemental retrieval: run the critique's extra queries against one source.

Queries run one after another (never concurrently) to respect source rate limits,
with a pause between them when the source has no API key. A failing query is
logged and skipped; it never aborts the run.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional

from review_assistant.errors import ReviewError
from review_assistant.models import Item

logger = logging.getLogger(__name__)

# NCBI allows 3 requests/second without a key
UNKEYED_DELAY_SECONDS = 0.35


def _is_two_phase(client) -> bool:
    return hasattr(client, "search_ids") and hasattr(client, "fetch")


async def run_supplemental_retrieval(
    queries: List[str],
    client,
    existing_ids: Iterable[str],
    limit: int = 10,
    delay_seconds: float = UNKEYED_DELAY_SECONDS,
    note: Optional[Callable[[str], None]] = None,
) -> List[Item]:
    """
    Return items found by `queries` whose ids are not in `existing_ids`.

    Two-phase clients (search_ids + fetch) collect identifiers first and fetch
    records once, for the new identifiers only.

    Args:
        note: Receives human-readable progress lines for the session log.
    """
    note = note or (lambda message: None)
    known = set(existing_ids)
    two_phase = _is_two_phase(client)

    new_ids: List[str] = []
    new_items: List[Item] = []

    for i, query in enumerate(queries):
        if i > 0 and client.throttled:
            await asyncio.sleep(delay_seconds)
        note(f"Supplemental search {i + 1}/{len(queries)}: {query!r}")
        try:
            if two_phase:
                found = await client.search_ids(query, limit=limit)
            else:
                found = await client.search(query, limit=limit)
        except ReviewError as e:
            logger.warning(f"Supplemental search failed for {query!r}: {e}")
            note(f"Supplemental search failed and was skipped: {e}")
            continue

        for entry in found:
            item_id = entry if two_phase else entry.item_id
            if item_id in known:
                continue
            known.add(item_id)
            if two_phase:
                new_ids.append(item_id)
            else:
                new_items.append(entry)

    if two_phase and new_ids:
        if client.throttled:
            await asyncio.sleep(delay_seconds)
        note(f"Fetching {len(new_ids)} new records")
        try:
            new_items = await client.fetch(new_ids)
        except ReviewError as e:
            logger.warning(f"Supplemental fetch failed: {e}")
            note(f"Fetching supplemental records failed and was skipped: {e}")
            new_items = []

    logger.info(f"Supplemental retrieval: {len(queries)} queries, {len(new_items)} new items")
    return new_items
