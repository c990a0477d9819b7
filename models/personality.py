from enum import Enum
from typing import Dict, Optional


class PersonalityGroup(str, Enum):
    ANALYSTS = "Analysts"
    DIPLOMATS = "Diplomats"
    SENTINELS = "Sentinels"
    EXPLORERS = "Explorers"


PERSONALITY_GROUPS: Dict[str, PersonalityGroup] = {
    "INTJ": PersonalityGroup.ANALYSTS,
    "INTP": PersonalityGroup.ANALYSTS,
    "ENTJ": PersonalityGroup.ANALYSTS,
    "ENTP": PersonalityGroup.ANALYSTS,
    "INFJ": PersonalityGroup.DIPLOMATS,
    "INFP": PersonalityGroup.DIPLOMATS,
    "ENFJ": PersonalityGroup.DIPLOMATS,
    "ENFP": PersonalityGroup.DIPLOMATS,
    "ISTJ": PersonalityGroup.SENTINELS,
    "ISFJ": PersonalityGroup.SENTINELS,
    "ESTJ": PersonalityGroup.SENTINELS,
    "ESFJ": PersonalityGroup.SENTINELS,
    "ISTP": PersonalityGroup.EXPLORERS,
    "ISFP": PersonalityGroup.EXPLORERS,
    "ESTP": PersonalityGroup.EXPLORERS,
    "ESFP": PersonalityGroup.EXPLORERS,
}

DEFAULT_PERSONALITY_TAG = "INTJ"


def group_of(tag: Optional[str]) -> Optional[PersonalityGroup]:
    """Group for a four-letter personality code, or None for unknown codes."""
    if not tag:
        return None
    return PERSONALITY_GROUPS.get(tag.strip().upper())
