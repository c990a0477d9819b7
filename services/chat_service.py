import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from google.cloud.firestore_v1 import ArrayUnion, DELETE_FIELD, SERVER_TIMESTAMP, async_transactional
from google.cloud.firestore_v1.async_client import AsyncClient
from google.cloud.firestore_v1.async_transaction import AsyncTransaction
from pydantic import ValidationError

from models.chat import ChatMessage, Conversation, MessageDraft, MessageType
from models.user_profile import UserProfile
from utils.background import spawn
from utils.exceptions import (NotFoundError, PayloadValidationError, SyncError, TransientIOError,
                              TranslationError, map_store_error)
from utils.helpers import EPOCH, decode_data_url, is_data_url, to_millis, utcnow
from .access_policy import AccessPolicy
from .base_service import BaseService, STORE_ERRORS
from .media_service import MediaStorage, chat_images_scope
from .stats_service import StatsService
from .subscription import Subscription
from .translation_service import TextTransformer

logger = logging.getLogger(__name__)

# Firestore rejects batches with more than 500 writes
MAX_BATCH_WRITES = 500


def chat_id(a: str, b: str) -> str:
    """Conversation key for a pair of users; the same whichever side asks."""
    first, second = sorted((a, b))
    return f"chat_{first}_{second}"


def order_messages(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    # Messages still waiting for a server timestamp sort last
    return sorted(messages, key=lambda m: (m.timestamp is None, m.timestamp or EPOCH))


def toggled_reactions(reactions: Dict[str, List[str]], user_id: str, emoji: str) -> Dict[str, List[str]]:
    """Add or remove user_id under emoji; emptied emoji keys are dropped."""
    updated = {key: list(users) for key, users in reactions.items()}
    users = updated.get(emoji, [])
    if user_id in users:
        users = [uid for uid in users if uid != user_id]
    else:
        users = users + [user_id]
    if users:
        updated[emoji] = users
    else:
        updated.pop(emoji, None)
    return updated


class MessageFeed:
    """Local, continuously refreshed view of one conversation's messages.

    Carries the optimistic isTranslating overlay; the stored messages never hold it.
    """

    def __init__(self, chat_id: str, listener: Optional[Callable[[List[ChatMessage]], None]] = None):
        self.chat_id = chat_id
        self._listener = listener
        self._messages: List[ChatMessage] = []
        self._translating = set()
        self._subscription: Optional[Subscription] = None
        self._closed = False

    @property
    def messages(self) -> List[ChatMessage]:
        return [m.model_copy(update={'is_translating': True}) if m.id in self._translating else m
                for m in self._messages]

    def is_translating(self, message_id: str) -> bool:
        return message_id in self._translating

    @property
    def closed(self) -> bool:
        return self._closed

    def apply_snapshot(self, messages: List[ChatMessage]) -> None:
        if self._closed:
            return
        self._messages = list(messages)
        self._emit()

    def set_translating(self, message_id: str, translating: bool) -> None:
        if translating:
            self._translating.add(message_id)
        else:
            self._translating.discard(message_id)
        self._emit()

    def _emit(self) -> None:
        if self._closed or self._listener is None:
            return
        try:
            self._listener(self.messages)
        except Exception:
            logger.exception("Feed listener for %s failed", self.chat_id)

    def close(self) -> None:
        """Stop the watch; the listener is never called once this returns."""
        self._closed = True
        if self._subscription is not None:
            self._subscription.cancel()

    def __enter__(self) -> "MessageFeed":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChatService(BaseService):
    def __init__(self, db: AsyncClient, watch_db=None, policy: Optional[AccessPolicy] = None,
                 media: Optional[MediaStorage] = None, transformer: Optional[TextTransformer] = None,
                 stats: Optional[StatsService] = None, chats_collection: str = 'chats',
                 typing_stale_seconds: float = 3.0):
        super().__init__(db, watch_db)
        self.policy = policy or AccessPolicy()
        self.media = media
        self.transformer = transformer
        self.stats = stats
        self.chats_collection = chats_collection
        self.typing_stale_seconds = typing_stale_seconds

    def messages_collection(self, chat_id: str) -> str:
        return f"{self.chats_collection}/{chat_id}/messages"

    # --- Conversations ---

    async def get_conversation(self, chat_id: str) -> Conversation:
        data = await self.get_document(self.chats_collection, chat_id)
        if data is None:
            raise NotFoundError(f"Conversation {chat_id} not found", chat_id)
        return Conversation.from_document(chat_id, data)

    async def get_or_create_conversation(self, a: str, b: str) -> Conversation:
        if not a or not b or a == b:
            raise PayloadValidationError("A conversation needs two distinct participants")
        cid = chat_id(a, b)
        data = await self.get_document(self.chats_collection, cid)
        if data is not None:
            return Conversation.from_document(cid, data)

        participants = sorted((a, b))
        created = await self.create_document(self.chats_collection, cid, {
            'participants': participants,
            'lastMessage': None,
            'typingUsers': {},
            'createdAt': SERVER_TIMESTAMP,
        })
        if created:
            logger.info("Created conversation %s", cid)
            return Conversation(id=cid, participants=participants, created_at=utcnow())

        # Lost the race to the other participant; their document is the result
        data = await self.get_document(self.chats_collection, cid)
        if data is None:
            raise TransientIOError(f"Conversation {cid} vanished after a concurrent create", cid)
        return Conversation.from_document(cid, data)

    async def assert_can_access(self, caller: UserProfile, chat_id: str) -> Conversation:
        conversation = await self.get_conversation(chat_id)
        self.policy.ensure_can_view_chat(caller, conversation)
        return conversation

    async def list_chats(self, caller: UserProfile) -> List[Conversation]:
        rows = await self.query_documents(self.chats_collection, filters=self.policy.chat_query_filters(caller))
        chats = self.policy.filter_chats((Conversation.from_document(cid, data) for cid, data in rows), caller)

        def recency(chat: Conversation) -> datetime:
            if chat.last_message is not None and chat.last_message.timestamp is not None:
                return chat.last_message.timestamp
            return chat.created_at or EPOCH

        return sorted(chats, key=recency, reverse=True)

    # --- Messages ---

    async def get_messages(self, chat_id: str) -> List[ChatMessage]:
        rows = await self.query_documents(self.messages_collection(chat_id), order_by=('timestamp', 'ASCENDING'))
        return order_messages(ChatMessage.from_document(mid, data) for mid, data in rows)

    async def get_message(self, chat_id: str, message_id: str) -> ChatMessage:
        data = await self.get_document(self.messages_collection(chat_id), message_id)
        if data is None:
            raise NotFoundError(f"Message {message_id} not found", message_id)
        return ChatMessage.from_document(message_id, data)

    def subscribe_messages(self, chat_id: str, callback: Callable[[List[ChatMessage]], None]) -> Subscription:
        """Full ascending message list on every change to the conversation."""
        def to_messages(rows):
            return order_messages(ChatMessage.from_document(mid, data) for mid, data in rows)

        return self.watch_query(self.messages_collection(chat_id), to_messages, callback,
                                order_by=('timestamp', 'ASCENDING'))

    def open_feed(self, chat_id: str,
                  listener: Optional[Callable[[List[ChatMessage]], None]] = None) -> MessageFeed:
        feed = MessageFeed(chat_id, listener)
        feed._subscription = self.subscribe_messages(chat_id, feed.apply_snapshot)
        return feed

    async def _materialize_image(self, chat_id: str, draft: MessageDraft) -> Optional[str]:
        if draft.image_data is not None:
            data, content_type = draft.image_data, draft.image_content_type
        elif is_data_url(draft.image_url):
            data, content_type = decode_data_url(draft.image_url)
        else:
            return draft.image_url
        if self.media is None:
            raise PayloadValidationError("Inline images cannot be stored: media storage is not configured")
        return await self.media.upload(chat_images_scope(chat_id), data, content_type)

    def _build_message(self, message_id: str, sender_id: str, draft: MessageDraft,
                       image_url: Optional[str]) -> ChatMessage:
        fields: Dict[str, Any] = {}
        if draft.type == MessageType.TEXT:
            fields['text'] = draft.text
        elif draft.type == MessageType.IMAGE:
            fields['image_url'] = image_url
        elif draft.type == MessageType.STICKER:
            fields['sticker_url'] = draft.sticker_url
        elif draft.type == MessageType.EVENT:
            fields['event_id'] = draft.event_id
            fields['text'] = draft.text
        elif draft.type == MessageType.PRIVATE_DATE:
            private_date = draft.private_date
            if private_date.created_at is None:
                private_date = private_date.model_copy(update={'created_at': to_millis(utcnow())})
            fields['private_date'] = private_date
            fields['text'] = f"Private Date: {private_date.category} at {private_date.place}"
        elif draft.type == MessageType.ICEBREAKER:
            fields['text'] = draft.icebreaker.prompt
            fields['icebreaker_title'] = draft.icebreaker.title
            fields['icebreaker_prompt'] = draft.icebreaker.prompt
            fields['icebreaker_category'] = draft.icebreaker.category
        return ChatMessage(id=message_id, sender_id=sender_id, type=draft.type, read_by=[sender_id], **fields)

    async def send_message(self, chat_id: str, sender_id: str,
                           draft: Union[MessageDraft, Dict[str, Any]]) -> ChatMessage:
        """Append a message and refresh the conversation's lastMessage in one atomic batch.

        Statistics are updated afterwards in the background; their failure never fails the send.
        """
        if not isinstance(draft, MessageDraft):
            try:
                draft = MessageDraft.model_validate(draft)
            except ValidationError as e:
                raise PayloadValidationError(f"Invalid message: {e}") from e

        image_url = None
        inline_image = False
        if draft.type == MessageType.IMAGE:
            inline_image = draft.image_data is not None or is_data_url(draft.image_url)
            if inline_image:
                # Never upload into a conversation that does not exist
                await self.get_conversation(chat_id)
            image_url = await self._materialize_image(chat_id, draft)

        chat_ref = self.db.collection(self.chats_collection).document(chat_id)
        message_ref = self.db.collection(self.messages_collection(chat_id)).document()
        message = self._build_message(message_ref.id, sender_id, draft, image_url)

        stored = message.to_document()
        stored['timestamp'] = SERVER_TIMESTAMP
        projection = dict(stored, id=message.id)

        batch = self.db.batch()
        batch.set(message_ref, stored)
        batch.update(chat_ref, {'lastMessage': projection})
        try:
            await self.commit_batch(batch, f"{self.chats_collection}/{chat_id}")
        except SyncError:
            if inline_image:
                logger.warning("Image %s was uploaded but its message to %s was not stored", image_url, chat_id)
            raise
        logger.debug("Message %s (%s) sent in %s", message.id, message.type, chat_id)

        if self.stats is not None:
            spawn(self._record_stats(chat_id), name=f"stats-{chat_id}")
        return message.model_copy(update={'timestamp': utcnow()})

    async def _record_stats(self, chat_id: str) -> None:
        try:
            await self.stats.on_message_sent(chat_id)
        except SyncError as e:
            logger.warning("Statistics update for %s failed: %s", chat_id, e)

    async def mark_read(self, chat_id: str, user_id: str) -> int:
        """Add user_id to readBy on every message that lacks it. Returns how many were updated."""
        path = self.messages_collection(chat_id)
        rows = await self.query_documents(path)
        unread = [mid for mid, data in rows if user_id not in (data.get('readBy') or [])]
        for start in range(0, len(unread), MAX_BATCH_WRITES):
            batch = self.db.batch()
            for message_id in unread[start:start + MAX_BATCH_WRITES]:
                batch.update(self.db.collection(path).document(message_id), {'readBy': ArrayUnion([user_id])})
            await self.commit_batch(batch, path)
        if unread:
            logger.debug("Marked %d messages read for %s in %s", len(unread), user_id, chat_id)
        return len(unread)

    async def toggle_reaction(self, chat_id: str, message_id: str, user_id: str, emoji: str) -> ChatMessage:
        if not emoji:
            raise PayloadValidationError("Reaction emoji is required")
        transaction: AsyncTransaction = self.db.transaction()
        doc_ref = self.db.collection(self.messages_collection(chat_id)).document(message_id)

        @async_transactional
        async def toggle_in_transaction(transaction: AsyncTransaction, ref):
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            data = snapshot.to_dict()
            reactions = toggled_reactions(data.get('reactions') or {}, user_id, emoji)
            transaction.update(ref, {'reactions': reactions})
            return dict(data, reactions=reactions)

        try:
            data = await toggle_in_transaction(transaction, doc_ref)
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{self.messages_collection(chat_id)}/{message_id}") from e
        if data is None:
            raise NotFoundError(f"Message {message_id} not found", message_id)
        return ChatMessage.from_document(message_id, data)

    async def request_translation(self, chat_id: str, message_id: str, source_tag: str, target_tag: str,
                                  text: Optional[str] = None, feed: Optional[MessageFeed] = None) -> str:
        """Translate a message and store the result.

        The feed shows the message as translating until this returns. On a
        TranslationError the flag is cleared, nothing is written and the error
        propagates.
        """
        if self.transformer is None:
            raise TranslationError("Translation is not configured")
        path = self.messages_collection(chat_id)
        try:
            if feed is not None:
                feed.set_translating(message_id, True)
            if text is None:
                text = (await self.get_message(chat_id, message_id)).text or ''
            if not text.strip():
                raise PayloadValidationError("Only messages with text can be translated")
            translated = await self.transformer.transform(text, source_tag, target_tag)
            await self.update_document(path, message_id, {'translatedText': translated})
        finally:
            if feed is not None:
                feed.set_translating(message_id, False)
        logger.debug("Stored translation for %s/%s (%s -> %s)", chat_id, message_id, source_tag, target_tag)
        return translated

    # --- Typing indicators ---

    async def update_typing(self, chat_id: str, user_id: str, is_typing: bool) -> None:
        """Best-effort; a failure is logged and dropped."""
        try:
            await self.update_document(self.chats_collection, chat_id, {
                f'typingUsers.{user_id}': SERVER_TIMESTAMP if is_typing else DELETE_FIELD,
            })
        except SyncError as e:
            logger.warning("Typing update for %s in %s failed: %s", user_id, chat_id, e)

    def active_typers(self, conversation: Conversation, now: Optional[datetime] = None,
                      exclude: Optional[str] = None) -> List[str]:
        active = conversation.active_typing(now or utcnow(), self.typing_stale_seconds)
        return sorted(uid for uid in active if uid != exclude)

    def subscribe_typing(self, chat_id: str, callback: Callable[[List[str]], None],
                         viewer_id: Optional[str] = None) -> Subscription:
        """User ids currently typing, stale entries and the viewer left out."""
        def to_typers(doc_id, data):
            if data is None:
                return []
            return self.active_typers(Conversation.from_document(doc_id, data), exclude=viewer_id)

        return self.watch_document(self.chats_collection, chat_id, to_typers, callback)
