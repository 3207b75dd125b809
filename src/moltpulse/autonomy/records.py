"""Typed records for Moltbook payloads.

The API returns loosely shaped JSON (posts under ``posts``/``data``/``results``,
authors as objects or strings, counts as strings). Everything is normalized
here so the rest of the agent only sees the dataclasses below.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set


def normalize_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def normalize_submolt(value: Any, default: str = "general") -> str:
    if isinstance(value, dict):
        value = value.get("name") or value.get("slug")
    text = normalize_str(value).strip().lower()
    if text.startswith("m/"):
        text = text[2:]
    return text or default


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def _author_name(raw: Any) -> str:
    author = raw.get("author") or raw.get("agent") or raw.get("user") or {}
    if isinstance(author, dict):
        name = author.get("name") or author.get("username") or author.get("agent_name")
    else:
        name = author
    name = name or raw.get("author_name") or raw.get("agent_name")
    return normalize_str(name).strip() or "unknown"


def _extract_list(payload: Any, keys: tuple) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if not isinstance(payload, dict):
        return []
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
    return []


@dataclass(frozen=True)
class FeedComment:
    id: str
    body: str
    author: str
    upvotes: int = 0
    parent_id: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> Optional["FeedComment"]:
        cid = normalize_str(raw.get("id")).strip()
        if not cid:
            return None
        parent = normalize_str(raw.get("parent_id") or raw.get("parentId")).strip() or None
        return cls(
            id=cid,
            body=normalize_str(raw.get("content") or raw.get("body")),
            author=_author_name(raw),
            upvotes=_coerce_int(raw.get("upvotes")),
            parent_id=parent,
            created_at=normalize_str(raw.get("created_at")).strip(),
        )


@dataclass(frozen=True)
class FeedItem:
    id: str
    title: str
    body: str
    author: str
    submolt: str = "general"
    upvotes: int = 0
    downvotes: int = 0
    comment_count: int = 0
    created_at: str = ""
    comments: List[FeedComment] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> Optional["FeedItem"]:
        nested = raw.get("post") if isinstance(raw.get("post"), dict) else None
        if nested:
            raw = {**raw, **nested}
        pid = normalize_str(raw.get("id")).strip()
        if not pid:
            return None
        comments = comments_from_payload(raw.get("comments")) if isinstance(raw.get("comments"), list) else []
        return cls(
            id=pid,
            title=normalize_str(raw.get("title")),
            body=normalize_str(raw.get("content") or raw.get("body")),
            author=_author_name(raw),
            submolt=normalize_submolt(raw.get("submolt")),
            upvotes=_coerce_int(raw.get("upvotes")),
            downvotes=_coerce_int(raw.get("downvotes")),
            comment_count=_coerce_int(raw.get("comment_count") or raw.get("comments_count")),
            created_at=normalize_str(raw.get("created_at")).strip(),
            comments=comments,
        )

    @property
    def engagement(self) -> int:
        return self.upvotes + self.comment_count

    def with_comments(self, comments: List[FeedComment]) -> "FeedItem":
        return replace(self, comments=list(comments))


@dataclass(frozen=True)
class Community:
    name: str
    display_name: str = ""
    description: str = ""
    subscriber_count: int = 0
    post_count: int = 0

    @classmethod
    def from_payload(cls, raw: Dict[str, Any]) -> Optional["Community"]:
        name = normalize_submolt(raw.get("name") or raw.get("slug"), default="")
        if not name:
            return None
        return cls(
            name=name,
            display_name=normalize_str(raw.get("display_name") or raw.get("displayName")).strip(),
            description=normalize_str(raw.get("description")).strip(),
            subscriber_count=_coerce_int(
                raw.get("subscriber_count") or raw.get("subscribers") or raw.get("member_count")
            ),
            post_count=_coerce_int(raw.get("post_count") or raw.get("posts")),
        )

    @property
    def popularity(self) -> int:
        return self.subscriber_count + self.post_count


@dataclass(frozen=True)
class CommunitySpec:
    name: str
    display_name: str
    description: str

    def to_payload(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
        }


@dataclass(frozen=True)
class AgentProfile:
    name: str
    karma: int = 0
    is_claimed: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["AgentProfile"]:
        if not isinstance(payload, dict):
            return None
        raw = payload.get("agent") if isinstance(payload.get("agent"), dict) else payload
        name = normalize_str(raw.get("name")).strip()
        if not name:
            return None
        return cls(
            name=name,
            karma=_coerce_int(raw.get("karma")),
            is_claimed=bool(raw.get("is_claimed", False)),
        )


def feed_items_from_payload(payload: Any) -> List[FeedItem]:
    out: List[FeedItem] = []
    seen: Set[str] = set()
    for raw in _extract_list(payload, ("posts", "results", "data", "items")):
        item = FeedItem.from_payload(raw)
        if item is None or item.id in seen:
            continue
        seen.add(item.id)
        out.append(item)
    return out


def comments_from_payload(payload: Any) -> List[FeedComment]:
    """Flatten a (possibly threaded) comment payload, first occurrence wins."""
    base = _extract_list(payload, ("comments", "data", "items", "results"))
    out: List[FeedComment] = []
    seen: Set[str] = set()
    stack: List[Dict[str, Any]] = list(reversed(base))
    while stack:
        node = stack.pop()
        comment = FeedComment.from_payload(node)
        if comment is not None and comment.id not in seen:
            seen.add(comment.id)
            out.append(comment)
        for child_key in ("replies", "children"):
            children = node.get(child_key)
            if isinstance(children, list):
                for child in reversed(children):
                    if isinstance(child, dict):
                        stack.append(child)
    return out


def communities_from_payload(payload: Any) -> List[Community]:
    out: List[Community] = []
    for raw in _extract_list(payload, ("submolts", "communities", "data", "items", "results")):
        community = Community.from_payload(raw)
        if community is not None:
            out.append(community)
    return out
