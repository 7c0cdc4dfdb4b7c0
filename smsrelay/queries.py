"""Read path over the message store."""

import logging
from typing import List, Optional

from starlette.concurrency import run_in_threadpool

from smsrelay.models import MessageRecord
from smsrelay.storage import DEFAULT_LIST_LIMIT, MessageStore, clamp_limit

logger = logging.getLogger(__name__)


class QueryService:
    def __init__(self, store: MessageStore):
        self.store = store

    async def list_recent(self, limit: Optional[int] = DEFAULT_LIST_LIMIT) -> List[MessageRecord]:
        """Most recent messages, newest first, at most MAX_LIST_LIMIT of them."""
        limit = clamp_limit(limit)
        records = await run_in_threadpool(self.store.list, limit)
        logger.info(f"Listed {len(records)} messages (limit={limit})")
        return records
