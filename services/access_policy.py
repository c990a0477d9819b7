"""Single authorization policy for bulk reads of users and conversations.

The same object narrows server-side queries and post-filters whatever comes
back, so both paths always agree. Post-filters are idempotent: running one over
an already-narrowed result changes nothing.
"""
from typing import Iterable, List

from models.chat import Conversation
from models.user_profile import UserProfile
from utils.exceptions import PermissionDeniedError


class AccessPolicy:

    @staticmethod
    def sees_everything(caller: UserProfile) -> bool:
        return caller.is_privileged is True

    # --- Users ---

    def user_query_filters(self, caller: UserProfile) -> List[tuple]:
        # No server-side narrowing for users: a query on isAdmin or visibleToUsers
        # would silently drop documents where the field is absent, and absent means
        # "regular, visible user".
        return []

    def can_see_user(self, caller: UserProfile, user: UserProfile) -> bool:
        if self.sees_everything(caller):
            return True
        return user.id != caller.id and not user.is_privileged and user.visible_to_others is not False

    def filter_users(self, users: Iterable[UserProfile], caller: UserProfile) -> List[UserProfile]:
        users = list(users)
        if self.sees_everything(caller):
            return users
        return [user for user in users if self.can_see_user(caller, user)]

    def ensure_can_view_user(self, caller: UserProfile, user: UserProfile) -> None:
        if caller.id == user.id:
            return
        if not self.can_see_user(caller, user):
            raise PermissionDeniedError(f"Profile {user.id} is not visible to this caller", user.id)

    # --- Conversations ---

    def chat_query_filters(self, caller: UserProfile) -> List[tuple]:
        if self.sees_everything(caller):
            return []
        return [('participants', 'array_contains', caller.id)]

    def can_see_chat(self, caller: UserProfile, conversation: Conversation) -> bool:
        return self.sees_everything(caller) or caller.id in conversation.participants

    def filter_chats(self, conversations: Iterable[Conversation], caller: UserProfile) -> List[Conversation]:
        return [chat for chat in conversations if self.can_see_chat(caller, chat)]

    def ensure_can_view_chat(self, caller: UserProfile, conversation: Conversation) -> None:
        if not self.can_see_chat(caller, conversation):
            raise PermissionDeniedError(f"Conversation {conversation.id} is not visible to this caller",
                                        conversation.id)

    # --- Administration ---

    def ensure_privileged(self, caller: UserProfile, action: str) -> None:
        if not self.sees_everything(caller):
            raise PermissionDeniedError(f"Only administrators may {action}")
