"""
Within-source deduplication.

Items are keyed by their source-native identifier (PMID, NCT id, URL). The first
item seen for an identifier wins; later duplicates are dropped silently. There is
no deduplication across sources.
"""

import logging
from typing import List, Sequence, TypeVar

from review_assistant.models import Item

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Item)


def merge_items(existing: Sequence[T], new: Sequence[T]) -> List[T]:
    """
    Append `new` to `existing`, skipping identifiers already present.

    Order is discovery order. Merging the same batch twice gives the same list.
    """
    merged: List[T] = []
    seen = set()
    for item in list(existing) + list(new):
        if item.item_id in seen:
            continue
        seen.add(item.item_id)
        merged.append(item)

    dropped = len(existing) + len(new) - len(merged)
    if dropped:
        logger.info(f"Merged {len(new)} new items into {len(existing)} (dropped {dropped} duplicates)")
    return merged
