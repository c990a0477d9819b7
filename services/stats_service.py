import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from google.cloud.firestore_v1 import async_transactional
from google.cloud.firestore_v1.async_client import AsyncClient
from google.cloud.firestore_v1.async_transaction import AsyncTransaction

from models.chat_stats import (ConversationStats, MESSAGE_THRESHOLDS, STREAK_THRESHOLDS,
                               message_milestone, streak_milestone)
from utils.exceptions import map_store_error, NotFoundError
from utils.helpers import utcnow
from .base_service import BaseService, STORE_ERRORS
from .subscription import Subscription

logger = logging.getLogger(__name__)


def advance_stats(stats: ConversationStats, now: datetime, tz=ZoneInfo("UTC")) -> ConversationStats:
    """Fold one sent message into the counters. Pure; never looks at message history."""
    count = stats.messages_count + 1

    today = now.astimezone(tz).date()
    last_date = stats.last_message_date.astimezone(tz).date()
    if stats.messages_count > 0 and today == last_date:
        streak = max(stats.consecutive_days, 1)
    elif stats.messages_count > 0 and today == last_date + timedelta(days=1):
        streak = stats.consecutive_days + 1
    else:
        streak = 1

    milestones = list(stats.milestones)
    for threshold in MESSAGE_THRESHOLDS:
        name = message_milestone(threshold)
        if count >= threshold and name not in milestones:
            milestones.append(name)
    for threshold in STREAK_THRESHOLDS:
        name = streak_milestone(threshold)
        if streak >= threshold and name not in milestones:
            milestones.append(name)

    return ConversationStats(
        chat_id=stats.chat_id,
        messages_count=count,
        consecutive_days=streak,
        last_message_date=now,
        milestones=milestones,
    )


class StatsService(BaseService):
    def __init__(self, db: AsyncClient, watch_db=None, stats_collection: str = 'chat_stats',
                 timezone: str = 'UTC'):
        super().__init__(db, watch_db)
        self.stats_collection = stats_collection
        self.tz = ZoneInfo(timezone)

    async def get_stats(self, chat_id: str) -> ConversationStats:
        data = await self.get_document(self.stats_collection, chat_id)
        if data is None:
            raise NotFoundError(f"No statistics for conversation {chat_id}", chat_id)
        return ConversationStats.from_document(chat_id, data)

    async def on_message_sent(self, chat_id: str, now: Optional[datetime] = None) -> ConversationStats:
        """Read-modify-write of the conversation counters inside one transaction."""
        now = now or utcnow()
        transaction: AsyncTransaction = self.db.transaction()
        doc_ref = self.db.collection(self.stats_collection).document(chat_id)

        @async_transactional
        async def update_in_transaction(transaction: AsyncTransaction, ref):
            snapshot = await ref.get(transaction=transaction)
            current = ConversationStats.from_document(chat_id, snapshot.to_dict() if snapshot.exists else None)
            updated = advance_stats(current, now, self.tz)
            transaction.set(ref, updated.to_document())
            return current, updated

        try:
            previous, updated = await update_in_transaction(transaction, doc_ref)
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{self.stats_collection}/{chat_id}") from e

        reached = [m for m in updated.milestones if m not in previous.milestones]
        if reached:
            logger.info("Conversation %s reached %s", chat_id, ", ".join(reached))
        return updated

    def subscribe_stats(self, chat_id: str,
                        callback: Callable[[Optional[ConversationStats]], None]) -> Subscription:
        def to_stats(doc_id, data):
            return None if data is None else ConversationStats.from_document(doc_id, data)

        return self.watch_document(self.stats_collection, chat_id, to_stats, callback)
