import logging
from typing import Iterable, List

from google.cloud.firestore_v1.async_client import AsyncClient

from models.personality import group_of
from models.user_profile import UserProfile
from .access_policy import AccessPolicy
from .base_service import BaseService

logger = logging.getLogger(__name__)

SAME_GROUP_POINTS = 30
SHARED_HOBBY_POINTS = 10
CLOSE_AGE_POINTS = 20  # age gap <= 5
NEAR_AGE_POINTS = 10  # age gap <= 10
NO_SHARED_RED_FLAGS_POINTS = 15
HAS_PHOTO_POINTS = 10
BIO_POINTS = 5
BIO_MIN_LENGTH = 20

MAX_STARTERS = 5


def score(candidate: UserProfile, me: UserProfile) -> int:
    """Heuristic compatibility of candidate for me. Pure."""
    points = 0

    my_group = group_of(me.personality_tag)
    if my_group is not None and my_group == group_of(candidate.personality_tag):
        points += SAME_GROUP_POINTS

    # Uncapped
    points += SHARED_HOBBY_POINTS * len(set(me.hobbies) & set(candidate.hobbies))

    age_gap = abs(me.age - candidate.age)
    if age_gap <= 5:
        points += CLOSE_AGE_POINTS
    elif age_gap <= 10:
        points += NEAR_AGE_POINTS

    if not set(me.red_flags) & set(candidate.red_flags):
        points += NO_SHARED_RED_FLAGS_POINTS

    if candidate.photos:
        points += HAS_PHOTO_POINTS
    if len(candidate.bio or '') > BIO_MIN_LENGTH:
        points += BIO_POINTS
    return points


def top_matches(me: UserProfile, pool: Iterable[UserProfile], n: int) -> List[UserProfile]:
    """Best n candidates by score. Ties keep their order in pool."""
    scored = []
    for candidate in pool:
        if candidate.id == me.id or candidate.is_privileged:
            continue
        value = score(candidate, me)
        if value > 0:
            scored.append((value, candidate))
    # sorted() is stable
    scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
    return [candidate for _, candidate in scored[:max(n, 0)]]


def conversation_starters(me: UserProfile, partner: UserProfile) -> List[str]:
    starters = []
    shared = [h for h in me.hobbies if h in set(partner.hobbies)]
    if shared:
        starters.append(f"I see you're into {shared[0]}! What got you started?")
        starters.append(f"We both like {shared[0]}. What's your favourite part of it?")

    tag = partner.personality_tag
    starters.append(f"As an {tag}, what does a perfect weekend look like for you?"
                    if tag[:1] in "AEIOU" else
                    f"As a {tag}, what does a perfect weekend look like for you?")
    starters.append(f"I'm curious how {tag}s usually handle big decisions. How about you?")

    if partner.bio:
        starters.append("I loved reading your bio! Tell me more about it.")

    starters.append("Hey! I noticed we have some things in common. How's your day going?")
    starters.append("Hi! I'd love to learn more about you. What are you passionate about?")
    starters.append("Hello! What's something that made you smile today?")
    return starters[:MAX_STARTERS]


class MatchService(BaseService):
    def __init__(self, db: AsyncClient, policy: AccessPolicy, users_collection: str = 'users'):
        super().__init__(db)
        self.policy = policy
        self.users_collection = users_collection

    async def suggestions(self, caller: UserProfile, n: int = 10) -> List[UserProfile]:
        rows = await self.query_documents(self.users_collection, filters=self.policy.user_query_filters(caller))
        pool = self.policy.filter_users((UserProfile.from_document(uid, data) for uid, data in rows), caller)
        matches = top_matches(caller, pool, n)
        logger.debug("%d suggestions for %s from a pool of %d", len(matches), caller.id, len(pool))
        return matches
