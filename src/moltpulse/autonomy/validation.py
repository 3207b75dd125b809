"""Validate externally proposed actions against what was actually fetched."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set

from .decision import ActionProposal
from .memory import has_interacted, has_replied_to
from .records import FeedItem
from .state import DailyCounters


logger = logging.getLogger("moltpulse.autonomy")


class FeedIndex:
    """Post ids of the enriched feed and, per post, its enriched comment ids."""

    def __init__(self, items: Iterable[FeedItem] = ()):
        self._comments: Dict[str, Set[str]] = {}
        self._items: Dict[str, FeedItem] = {}
        for item in items:
            self.add(item)

    def add(self, item: FeedItem) -> None:
        if item.id in self._items:
            return
        self._items[item.id] = item
        self._comments[item.id] = {c.id for c in item.comments}

    def has_post(self, post_id: str) -> bool:
        return post_id in self._items

    def has_comment(self, post_id: str, comment_id: str) -> bool:
        return comment_id in self._comments.get(post_id, set())

    def get(self, post_id: str) -> Optional[FeedItem]:
        return self._items.get(post_id)


@dataclass
class CycleCounters:
    upvotes: int = 0
    comments: int = 0
    replies: int = 0
    posts: int = 0
    follows: int = 0
    subscriptions: int = 0
    communities_created: int = 0
    challenges: int = 0
    challenge_upvotes: int = 0
    challenge_comments: int = 0
    rejected: int = 0

    @property
    def conversation(self) -> int:
        return self.comments + self.replies

    @property
    def total(self) -> int:
        return (
            self.upvotes
            + self.comments
            + self.replies
            + self.posts
            + self.follows
            + self.subscriptions
            + self.communities_created
        )

    def as_dict(self) -> Dict[str, int]:
        return {
            "upvotes": self.upvotes,
            "comments": self.comments,
            "replies": self.replies,
            "posts": self.posts,
            "follows": self.follows,
            "subscriptions": self.subscriptions,
            "communities_created": self.communities_created,
            "challenges": self.challenges,
            "challenge_upvotes": self.challenge_upvotes,
            "challenge_comments": self.challenge_comments,
            "rejected": self.rejected,
        }


@dataclass
class ActionValidator:
    """Gatekeeper between the decision engine and the API.

    ``check`` returns ``None`` for an accepted proposal, otherwise the reason
    it was rejected. Rejections are logged and counted; they never raise.
    """

    cfg: Any
    feed: FeedIndex
    memory: Dict[str, Any]
    daily: DailyCounters
    cycle: CycleCounters = field(default_factory=CycleCounters)

    def reject(self, proposal: ActionProposal, reason: str) -> str:
        self.cycle.rejected += 1
        logger.info(
            "Action rejected kind=%s post_id=%s parent=%s reason=%s",
            proposal.kind,
            proposal.post_id,
            proposal.parent_comment_id,
            reason,
        )
        return reason

    def check(self, proposal: ActionProposal) -> Optional[str]:
        kind = proposal.kind
        if kind not in ("upvote", "comment", "reply"):
            return self.reject(proposal, f"unsupported_kind:{kind}")
        if not self.feed.has_post(proposal.post_id):
            return self.reject(proposal, "unknown_post_id")
        if kind == "reply":
            if not proposal.parent_comment_id or not self.feed.has_comment(
                proposal.post_id, proposal.parent_comment_id
            ):
                return self.reject(proposal, "unknown_parent_comment_id")
        if kind in ("comment", "reply") and not (proposal.text or "").strip():
            return self.reject(proposal, "missing_text")

        if kind == "reply":
            if has_replied_to(self.memory, proposal.parent_comment_id or ""):
                return self.reject(proposal, "already_replied")
        elif has_interacted(self.memory, proposal.post_id):
            return self.reject(proposal, "already_interacted")

        if kind == "upvote":
            if self.cycle.upvotes >= self.cfg.max_upvotes_per_cycle:
                return self.reject(proposal, "cycle_upvote_limit")
            return None
        if self.cycle.conversation >= self.cfg.max_comments_per_cycle:
            return self.reject(proposal, "cycle_comment_limit")
        if self.daily.comments >= self.cfg.max_comments_per_day:
            return self.reject(proposal, "daily_comment_limit")
        return None

    def check_post(self, now: Optional[datetime] = None) -> Optional[str]:
        if self.daily.posts >= self.cfg.max_posts_per_day:
            return "daily_post_limit"
        elapsed = self.daily.seconds_since_last_post(now)
        if elapsed is not None and elapsed < self.cfg.min_seconds_between_posts:
            return f"post_cooldown:{int(self.cfg.min_seconds_between_posts - elapsed)}s"
        return None
