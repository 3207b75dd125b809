"""Detect verification challenges: posts that demand a real action, not text.

Moderators periodically post things like "if you're a real agent, upvote this".
Agents that only talk about it get flagged, so these must be answered with the
actual API call before anything else happens in a heartbeat.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .records import FeedItem


CHALLENGE_THRESHOLD = 0.6
INSTRUCTION_CHARS = 150
VALID_ACTIONS = ("upvote", "comment", "follow")

_I = re.IGNORECASE

# Context signals
AGENT_CONDITIONAL_RE = re.compile(
    r"\b(if|when)\s+(you('re| are)|u r)\s+(a |an )?"
    r"(real|actual|true|genuine|autonomous|legitimate)\s+(ai\s+)?agent",
    _I,
)
VERIFICATION_RE = re.compile(r"\b(verification|verify|test|prove|proof|challenge|check)\b", _I)
CAN_YOU_RE = re.compile(r"\bcan\s+(you|agents?)\s+(actually\s+)?(upvote|comment|follow|execute|perform|do)\b", _I)
ONLY_REAL_RE = re.compile(r"\b(only|real|true|actual|genuine)\s+agents?\s+(will|would|can|should)\s+(upvote|comment|follow)", _I)
CAN_ACTUALLY_RE = re.compile(r"\bagents?\s+(that|who|which)\s+can\s+actually\b", _I)

# Required actions
DIRECT_UPVOTE_RE = re.compile(r"\b(upvote|up-vote|up vote)\s+(this|my|the)\s+(post|message|thread)", _I)
UPVOTE_RE = re.compile(r"\bup-?\s?vote", _I)
DIRECT_COMMENT_RE = re.compile(
    r"\b(comment|reply|respond)\s+((on|to)\s+)?(this|my|the)\s+(post|message|thread)"
    r"|\b(comment|reply)\s+(below|here)\b",
    _I,
)
COMMENT_RE = re.compile(r"\b(comment|reply|respond)", _I)
DIRECT_FOLLOW_RE = re.compile(r"\bfollow\s+(me|this account|@\w+)\b", _I)
FOLLOW_RE = re.compile(r"\bfollow\b", _I)

# "prove you're more than text"
CATCH_ALL_RES = (
    re.compile(r"\b(prove|demonstrate|show)\b", _I),
    re.compile(r"(not just|more than|actually)", _I),
    re.compile(r"\b(text|talk|words|say)\b", _I),
)

logger = logging.getLogger("moltpulse.autonomy")


@dataclass(frozen=True)
class Challenge:
    target_post_id: str
    required_actions: Tuple[str, ...]
    confidence: float
    source_author: str
    kind: str
    instruction: str
    from_moderator: bool = False


def is_moderator(author: str, moderator_names: Iterable[str]) -> bool:
    handle = (author or "").strip().lower().lstrip("@")
    return bool(handle) and handle in {name.strip().lower() for name in moderator_names}


def _kind_for(actions: Sequence[str]) -> str:
    if len(actions) > 1:
        return "compound"
    return actions[0]


def detect_challenge(item: FeedItem, moderator_names: Iterable[str]) -> Optional[Challenge]:
    text = f"{item.title} {item.body}".lower()
    from_moderator = is_moderator(item.author, moderator_names)

    conditional = bool(AGENT_CONDITIONAL_RE.search(text))
    verification = bool(VERIFICATION_RE.search(text))
    can_you = bool(CAN_YOU_RE.search(text))
    only_real = bool(ONLY_REAL_RE.search(text))

    actions: List[str] = []
    confidence = 0.0

    direct_upvote = bool(DIRECT_UPVOTE_RE.search(text))
    mentions_upvote = bool(UPVOTE_RE.search(text))
    if direct_upvote or (mentions_upvote and (conditional or verification or can_you or only_real)):
        actions.append("upvote")
        confidence = 0.95 if direct_upvote else 0.85

    direct_comment = bool(DIRECT_COMMENT_RE.search(text))
    mentions_comment = bool(COMMENT_RE.search(text))
    if direct_comment or (mentions_comment and (conditional or verification or can_you or only_real)):
        actions.append("comment")
        confidence = max(confidence, 0.9 if direct_comment else 0.8)

    direct_follow = bool(DIRECT_FOLLOW_RE.search(text))
    mentions_follow = bool(FOLLOW_RE.search(text))
    if direct_follow or (mentions_follow and (conditional or can_you or only_real)):
        actions.append("follow")
        confidence = max(confidence, 0.85)

    if actions:
        if from_moderator:
            confidence += 0.1
        if conditional:
            confidence += 0.1
        if verification:
            confidence += 0.05
    elif all(pattern.search(text) for pattern in CATCH_ALL_RES):
        actions.append("upvote")
        confidence = 0.7

    if CAN_ACTUALLY_RE.search(text):
        confidence += 0.1
    confidence = min(confidence, 1.0)

    if not actions or confidence < CHALLENGE_THRESHOLD:
        return None

    challenge = Challenge(
        target_post_id=item.id,
        required_actions=tuple(actions),
        confidence=round(confidence, 4),
        source_author=item.author,
        kind=_kind_for(actions),
        instruction=text[:INSTRUCTION_CHARS],
        from_moderator=from_moderator,
    )
    logger.info(
        "Challenge detected kind=%s confidence=%.2f post_id=%s author=%s actions=%s",
        challenge.kind,
        challenge.confidence,
        challenge.target_post_id,
        challenge.source_author,
        ",".join(challenge.required_actions),
    )
    return challenge


def find_challenges(items: Iterable[FeedItem], moderator_names: Iterable[str]) -> List[Challenge]:
    """All challenges in the feed, moderator-authored first, then by confidence.

    ``sorted`` is stable so equal keys keep feed order.
    """
    names = list(moderator_names)
    found = [c for c in (detect_challenge(item, names) for item in items) if c is not None]
    return sorted(found, key=lambda c: (not c.from_moderator, -c.confidence))
