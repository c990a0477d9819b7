import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError

from models.chat import ChatMessage, Conversation, MessageDraft
from models.chat_stats import ConversationStats
from models.user_profile import UserProfile
from schemas.auth_schemas import StatusResponse
from schemas.chat_schemas import (
    ReactionRequest,
    ReadReceiptResponse,
    TranslationRequest,
    TranslationResponse,
    TypingUpdate,
)
from services.chat_service import ChatService, MessageFeed
from services.identity_service import IdentityResolver
from services.profile_service import ProfileService
from services.stats_service import StatsService
from utils.dependencies import (
    get_chat_service,
    get_current_profile,
    get_identity_resolver,
    get_profile_service,
    get_stats_service,
)
from utils.auth_utils import verify_token
from utils.exceptions import PermissionDeniedError, SyncError

router = APIRouter(prefix="/chats", tags=["chats"])
logger = logging.getLogger(__name__)


@router.get("/", response_model=List[Conversation])
async def list_chats(
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service)
):
    """Conversations visible to the caller, most recent first."""
    return await chat_service.list_chats(current_profile)


@router.post("/with/{partner_id}", response_model=Conversation)
async def open_chat(
        partner_id: str = Path(..., description="The other participant"),
        current_profile: UserProfile = Depends(get_current_profile),
        profile_service: ProfileService = Depends(get_profile_service),
        chat_service: ChatService = Depends(get_chat_service)
):
    """Get or create the conversation between the caller and partner_id."""
    await profile_service.get_visible_profile(current_profile, partner_id)
    return await chat_service.get_or_create_conversation(current_profile.id, partner_id)


@router.get("/{chat_id}/messages", response_model=List[ChatMessage])
async def get_messages(
        chat_id: str,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service)
):
    await chat_service.assert_can_access(current_profile, chat_id)
    return await chat_service.get_messages(chat_id)


@router.post("/{chat_id}/messages", response_model=ChatMessage, status_code=status.HTTP_201_CREATED)
async def send_message(
        chat_id: str,
        draft: MessageDraft,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service)
):
    conversation = await chat_service.assert_can_access(current_profile, chat_id)
    if current_profile.id not in conversation.participants:
        raise PermissionDeniedError("Only participants can send messages", chat_id)
    return await chat_service.send_message(chat_id, current_profile.id, draft)


@router.post("/{chat_id}/read", response_model=ReadReceiptResponse)
async def mark_read(
        chat_id: str,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service)
):
    await chat_service.assert_can_access(current_profile, chat_id)
    return ReadReceiptResponse(updated=await chat_service.mark_read(chat_id, current_profile.id))


@router.post("/{chat_id}/typing", response_model=StatusResponse)
async def update_typing(
        chat_id: str,
        update: TypingUpdate,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service)
):
    await chat_service.assert_can_access(current_profile, chat_id)
    await chat_service.update_typing(chat_id, current_profile.id, update.is_typing)
    return StatusResponse(status="success", message="typing" if update.is_typing else "idle")


async def _translate(chat_service: ChatService, profile_service: ProfileService, caller: UserProfile,
                     chat_id: str, message_id: str, request: TranslationRequest,
                     feed: Optional[MessageFeed] = None) -> Optional[str]:
    """Translation shared by the HTTP route and the live stream. None when the caller's quota is used up."""
    message = await chat_service.get_message(chat_id, message_id)

    source_tag = request.source_tag
    if source_tag is None:
        source_tag = (await profile_service.get_profile(message.sender_id)).personality_tag
    target_tag = request.target_tag or caller.personality_tag

    if not await profile_service.consume_api_call(caller.id):
        return None
    return await chat_service.request_translation(chat_id, message_id, source_tag, target_tag,
                                                  text=message.text, feed=feed)


@router.post("/{chat_id}/messages/{message_id}/translate", response_model=TranslationResponse)
async def translate_message(
        chat_id: str,
        message_id: str,
        request: TranslationRequest,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service),
        profile_service: ProfileService = Depends(get_profile_service)
):
    """Rewrite a message in the caller's personality style. Uses one call from the caller's quota."""
    await chat_service.assert_can_access(current_profile, chat_id)
    translated = await _translate(chat_service, profile_service, current_profile, chat_id, message_id, request)
    if translated is None:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="API call limit reached")
    return TranslationResponse(message_id=message_id, translated_text=translated)


@router.post("/{chat_id}/messages/{message_id}/reactions", response_model=ChatMessage)
async def toggle_reaction(
        chat_id: str,
        message_id: str,
        reaction: ReactionRequest,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service)
):
    await chat_service.assert_can_access(current_profile, chat_id)
    return await chat_service.toggle_reaction(chat_id, message_id, current_profile.id, reaction.emoji)


@router.get("/{chat_id}/stats", response_model=ConversationStats)
async def get_stats(
        chat_id: str,
        current_profile: UserProfile = Depends(get_current_profile),
        chat_service: ChatService = Depends(get_chat_service),
        stats_service: StatsService = Depends(get_stats_service)
):
    await chat_service.assert_can_access(current_profile, chat_id)
    return await stats_service.get_stats(chat_id)


# --- Live stream ---

async def _authenticate(websocket: WebSocket, resolver: IdentityResolver) -> UserProfile:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization", "")
        token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        raise PermissionDeniedError("Missing token")
    try:
        payload = verify_token(token)
    except HTTPException as e:
        raise PermissionDeniedError(str(e.detail))
    return await resolver.resolve(payload["uid"], payload.get("email"))


async def _safe_send_json(websocket: WebSocket, data: Dict[str, Any]) -> bool:
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        payload = await queue.get()
        if not await _safe_send_json(websocket, payload):
            return


async def _stream_translation(websocket: WebSocket, event: Dict[str, Any], caller: UserProfile, chat_id: str,
                              chat_service: ChatService, profile_service: ProfileService,
                              feed: MessageFeed) -> None:
    message_id = event.get("messageId")
    try:
        request = TranslationRequest.model_validate(event)
    except ValidationError:
        request = None
    if not message_id or request is None:
        await _safe_send_json(websocket, {"type": "error", "detail": "Invalid payload"})
        return
    translated = await _translate(chat_service, profile_service, caller, chat_id, message_id, request, feed=feed)
    if translated is None:
        await _safe_send_json(websocket, {"type": "error", "detail": "API call limit reached"})
        return
    await _safe_send_json(websocket, {"type": "translation", "messageId": message_id,
                                      "translatedText": translated})


@router.websocket("/{chat_id}/stream")
async def stream_chat(
        websocket: WebSocket,
        chat_id: str,
        resolver: IdentityResolver = Depends(get_identity_resolver),
        chat_service: ChatService = Depends(get_chat_service),
        profile_service: ProfileService = Depends(get_profile_service)
):
    """Push every message snapshot and typing change of one conversation.

    Clients may send {"type": "typing", "isTyping": bool}, {"type": "read"} and
    {"type": "translate", "messageId": ..., "sourceTag"?: ..., "targetTag"?: ...}.
    A translation shows up as isTranslating in the pushed messages while it runs.
    """
    try:
        profile = await _authenticate(websocket, resolver)
        await chat_service.assert_can_access(profile, chat_id)
    except SyncError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()

    def on_messages(messages: List[ChatMessage]) -> None:
        queue.put_nowait({"type": "messages",
                          "messages": [m.model_dump(mode='json', by_alias=True) for m in messages]})

    def on_typing(user_ids: List[str]) -> None:
        queue.put_nowait({"type": "typing", "userIds": user_ids})

    feed = chat_service.open_feed(chat_id, on_messages)
    typing = chat_service.subscribe_typing(chat_id, on_typing, viewer_id=profile.id)
    forwarder = asyncio.create_task(_forward(websocket, queue))
    try:
        while True:
            try:
                event = await websocket.receive_json()
            except ValueError:
                await _safe_send_json(websocket, {"type": "error", "detail": "Invalid payload"})
                continue
            kind = event.get("type") if isinstance(event, dict) else None
            try:
                if kind == "typing":
                    await chat_service.update_typing(chat_id, profile.id, bool(event.get("isTyping")))
                elif kind == "read":
                    await chat_service.mark_read(chat_id, profile.id)
                elif kind == "translate":
                    await _stream_translation(websocket, event, profile, chat_id, chat_service, profile_service,
                                              feed)
                else:
                    await _safe_send_json(websocket, {"type": "error", "detail": "Unknown event"})
            except SyncError as e:
                await _safe_send_json(websocket, {"type": "error", "detail": e.message})
    except WebSocketDisconnect:
        logger.debug("Stream for %s closed by %s", chat_id, profile.id)
    finally:
        feed.close()
        typing.cancel()
        forwarder.cancel()
