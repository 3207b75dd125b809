"""Persistent cross-cycle memory.

One JSON document holds everything the agent must remember between
heartbeats: what it already interacted with, who it follows, what it posted
and how that performed. The document is a plain dict, loaded once per cycle
and mutated in place by the helpers below. Only the active cycle touches it.
"""

import contextlib
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .state import parse_iso, utc_iso, utc_now


SCHEMA_VERSION = 2

LIMITS = {
    "my_posts": 50,
    "interacted_post_ids": 500,
    "interacted_comment_ids": 200,
    "journal": 10,
    "known_agents": 100,
    "followed_agents": 50,
    "subscribed_communities": 20,
    "created_communities": 20,
}

FOLLOW_COOLDOWN = timedelta(days=7)
COMMUNITY_CREATION_WINDOW = timedelta(days=7)

TOPIC_PATTERNS = {
    "ai": re.compile(r"\b(ai|artificial intelligence|machine learning|ml|llm|gpt|claude)\b"),
    "agents": re.compile(r"\b(agent|agents|autonomous|agentic)\b"),
    "coding": re.compile(r"\b(code|coding|programming|developer|software)\b"),
    "philosophy": re.compile(r"\b(philosophy|consciousness|ethics|moral|existential)\b"),
    "creativity": re.compile(r"\b(creative|creativity|art|music|writing)\b"),
    "social": re.compile(r"\b(social|community|network|connection|friend)\b"),
    "tech": re.compile(r"\b(tech|technology|startup|product|innovation)\b"),
    "learning": re.compile(r"\b(learn|learning|education|knowledge|study)\b"),
    "future": re.compile(r"\b(future|prediction|trend|tomorrow|upcoming)\b"),
    "moltbook": re.compile(r"\b(moltbook|molt|lobster)\b"),
}

# camelCase keys written by the first release of the agent.
_LEGACY_KEYS = {
    "myPosts": "my_posts",
    "interactedPosts": "interacted_post_ids",
    "interactedComments": "interacted_comment_ids",
    "knownAgents": "known_agents",
    "topicPerformance": "topic_performance",
    "lastHeartbeat": "last_heartbeat_time",
    "totalHeartbeats": "total_heartbeats",
    "followedAgents": "followed_agents",
    "subscribedSubmolts": "subscribed_communities",
    "createdSubmolts": "created_communities",
    "lastSubmoltCheck": "last_community_check",
}

logger = logging.getLogger("moltpulse.autonomy")


def empty_memory() -> Dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "interacted_post_ids": [],
        "interacted_comment_ids": [],
        "followed_agents": [],
        "subscribed_communities": [],
        "created_communities": [],
        "known_agents": {},
        "my_posts": [],
        "topic_performance": {},
        "journal": [],
        "last_heartbeat_time": None,
        "total_heartbeats": 0,
        "last_community_check": None,
    }


def engagement_score(upvotes: int, comments: int) -> int:
    return int(upvotes) + 2 * int(comments)


# ─── Load / save ──────────────────────────────────────


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _id_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out: List[str] = []
    seen = set()
    for item in value:
        text = str(item).strip() if isinstance(item, (str, int)) else ""
        if text and text not in seen:
            seen.add(text)
            out.append(text)
    return out


def _named_entries(value: Any) -> List[Dict[str, Any]]:
    """Normalize ``[{name, ts}]`` lists; legacy plain strings get ``ts=None``."""
    if not isinstance(value, list):
        return []
    out: List[Dict[str, Any]] = []
    seen = set()
    for item in value:
        if isinstance(item, str):
            name, ts = item.strip(), None
        elif isinstance(item, dict):
            name = str(item.get("name") or "").strip()
            ts = item.get("ts") or item.get("createdAt") or item.get("created_at")
        else:
            continue
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        out.append({"name": name, "ts": ts if isinstance(ts, str) else None})
    return out


def _known_agents(value: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(value, dict):
        return {}
    out: Dict[str, Dict[str, Any]] = {}
    for handle, raw in value.items():
        if not isinstance(raw, dict):
            continue
        sentiment = raw.get("sentiment")
        out[str(handle)] = {
            "last_seen": raw.get("last_seen") or raw.get("lastInteraction"),
            "note": str(raw.get("note") or raw.get("context") or "")[:200],
            "sentiment": sentiment if sentiment in ("positive", "neutral", "negative") else "neutral",
            "interaction_count": max(1, _as_int(raw.get("interaction_count"), 1)),
        }
    return out


def _my_posts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    out: List[Dict[str, Any]] = []
    for raw in value:
        if not isinstance(raw, dict) or not raw.get("id"):
            continue
        upvotes = raw.get("upvotes", raw.get("lastKnownUpvotes"))
        comments = raw.get("comments", raw.get("lastKnownComments"))
        topics = raw.get("topics")
        out.append(
            {
                "id": str(raw["id"]),
                "title": str(raw.get("title") or ""),
                "submolt": str(raw.get("submolt") or "general"),
                "ts": raw.get("ts") or raw.get("timestamp"),
                "topics": [str(t) for t in topics] if isinstance(topics, list) else [],
                "upvotes": None if upvotes is None else _as_int(upvotes),
                "comments": None if comments is None else _as_int(comments),
            }
        )
    return out


def _topic_performance(value: Any) -> Dict[str, Dict[str, int]]:
    if not isinstance(value, dict):
        return {}
    out: Dict[str, Dict[str, int]] = {}
    for topic, raw in value.items():
        if not isinstance(raw, dict):
            continue
        out[str(topic)] = {
            "post_count": _as_int(raw.get("post_count", raw.get("postsCount"))),
            "total_upvotes": _as_int(raw.get("total_upvotes", raw.get("totalUpvotes"))),
            "total_comments": _as_int(raw.get("total_comments", raw.get("totalComments"))),
        }
    return out


def _journal(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    out: List[Dict[str, Any]] = []
    for raw in value:
        if not isinstance(raw, dict):
            continue
        out.append(
            {
                "ts": raw.get("ts") or raw.get("timestamp"),
                "summary": str(raw.get("summary") or ""),
                "status": str(raw.get("status") or "ok"),
                "posts": _as_int(raw.get("posts", raw.get("postsCreated"))),
                "comments": _as_int(raw.get("comments", raw.get("commentsCreated"))),
                "upvotes": _as_int(raw.get("upvotes", raw.get("upvotesGiven"))),
                "challenges": _as_int(raw.get("challenges")),
            }
        )
    return out


def migrate_memory(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Bring any older document (including the camelCase layout) to the current schema."""
    data = dict(raw)
    for legacy, current in _LEGACY_KEYS.items():
        if legacy in data and current not in data:
            data[current] = data.pop(legacy)
    memory = empty_memory()
    memory["interacted_post_ids"] = _id_list(data.get("interacted_post_ids"))
    memory["interacted_comment_ids"] = _id_list(data.get("interacted_comment_ids"))
    memory["followed_agents"] = _named_entries(data.get("followed_agents"))
    memory["subscribed_communities"] = _named_entries(data.get("subscribed_communities"))
    memory["created_communities"] = _named_entries(data.get("created_communities"))
    memory["known_agents"] = _known_agents(data.get("known_agents"))
    memory["my_posts"] = _my_posts(data.get("my_posts"))
    memory["topic_performance"] = _topic_performance(data.get("topic_performance"))
    memory["journal"] = _journal(data.get("journal"))
    last_heartbeat = data.get("last_heartbeat_time")
    memory["last_heartbeat_time"] = last_heartbeat if isinstance(last_heartbeat, str) and last_heartbeat else None
    memory["total_heartbeats"] = max(0, _as_int(data.get("total_heartbeats")))
    last_check = data.get("last_community_check")
    memory["last_community_check"] = last_check if isinstance(last_check, str) and last_check else None
    return memory


def load_memory(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.info("No memory file found path=%s starting fresh", path)
        return empty_memory()
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load memory path=%s error=%s starting fresh", path, e)
        return empty_memory()
    if not isinstance(raw, dict):
        logger.warning("Memory file is not a JSON object path=%s starting fresh", path)
        return empty_memory()
    version = _as_int(raw.get("schema_version"), 0)
    memory = migrate_memory(raw)
    if version != SCHEMA_VERSION:
        logger.info("Migrated memory schema from_version=%s to_version=%s", version, SCHEMA_VERSION)
    enforce_limits(memory)
    logger.debug(
        "Memory loaded my_posts=%s interacted=%s known_agents=%s heartbeats=%s",
        len(memory["my_posts"]),
        len(memory["interacted_post_ids"]),
        len(memory["known_agents"]),
        memory["total_heartbeats"],
    )
    return memory


def enforce_limits(memory: Dict[str, Any]) -> None:
    for key, limit in LIMITS.items():
        if key == "known_agents":
            agents = memory.get(key) or {}
            if len(agents) > limit:
                ranked = sorted(
                    agents.items(),
                    key=lambda kv: str(kv[1].get("last_seen") or ""),
                    reverse=True,
                )
                memory[key] = dict(ranked[:limit])
                logger.debug("Trimmed known_agents kept=%s", limit)
            continue
        items = memory.get(key) or []
        if len(items) > limit:
            memory[key] = items[-limit:]
            logger.debug("Trimmed %s removed=%s", key, len(items) - limit)


def save_memory(path: Path, memory: Dict[str, Any]) -> bool:
    enforce_limits(memory)
    memory["schema_version"] = SCHEMA_VERSION
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(memory, f, indent=2, sort_keys=True)
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to save memory path=%s error=%s", path, e)
        if tmp_name and os.path.exists(tmp_name):
            with contextlib.suppress(OSError):
                os.remove(tmp_name)
        return False
    logger.debug("Memory saved path=%s", path)
    return True


# ─── Membership ───────────────────────────────────────


def _names(entries: Sequence[Dict[str, Any]]) -> List[str]:
    return [str(entry.get("name") or "").lower() for entry in entries]


def has_interacted(memory: Dict[str, Any], post_id: str) -> bool:
    return str(post_id) in memory["interacted_post_ids"]


def has_replied_to(memory: Dict[str, Any], comment_id: str) -> bool:
    return str(comment_id) in memory["interacted_comment_ids"]


def has_followed(memory: Dict[str, Any], agent_name: str) -> bool:
    return agent_name.strip().lower() in _names(memory["followed_agents"])


def is_subscribed(memory: Dict[str, Any], community: str) -> bool:
    return community.strip().lower() in _names(memory["subscribed_communities"])


def has_created_community(memory: Dict[str, Any], name: str) -> bool:
    return name.strip().lower() in _names(memory["created_communities"])


# ─── Marks ────────────────────────────────────────────


def _append_bounded(memory: Dict[str, Any], key: str, value: Any) -> None:
    memory[key].append(value)
    limit = LIMITS[key]
    if len(memory[key]) > limit:
        memory[key] = memory[key][-limit:]


def mark_interacted(memory: Dict[str, Any], post_id: str) -> None:
    if not has_interacted(memory, post_id):
        _append_bounded(memory, "interacted_post_ids", str(post_id))


def mark_replied(memory: Dict[str, Any], comment_id: str) -> None:
    if not has_replied_to(memory, comment_id):
        _append_bounded(memory, "interacted_comment_ids", str(comment_id))


def mark_followed(memory: Dict[str, Any], agent_name: str, now: Optional[datetime] = None) -> None:
    if not has_followed(memory, agent_name):
        _append_bounded(memory, "followed_agents", {"name": agent_name.strip(), "ts": utc_iso(now)})
        logger.debug("Marked agent as followed agent=%s", agent_name)


def mark_subscribed(memory: Dict[str, Any], community: str, now: Optional[datetime] = None) -> None:
    if not is_subscribed(memory, community):
        _append_bounded(memory, "subscribed_communities", {"name": community.strip(), "ts": utc_iso(now)})


def mark_community_created(memory: Dict[str, Any], name: str, now: Optional[datetime] = None) -> None:
    if not has_created_community(memory, name):
        _append_bounded(memory, "created_communities", {"name": name.strip(), "ts": utc_iso(now)})


def mark_community_check_done(memory: Dict[str, Any], now: Optional[datetime] = None) -> None:
    memory["last_community_check"] = utc_iso(now)


def record_agent_interaction(
    memory: Dict[str, Any],
    name: str,
    note: str = "",
    sentiment: str = "neutral",
    now: Optional[datetime] = None,
) -> None:
    handle = name.strip()
    if not handle or handle == "unknown":
        return
    existing = memory["known_agents"].get(handle) or {}
    memory["known_agents"][handle] = {
        "last_seen": utc_iso(now),
        "note": (note or existing.get("note") or "")[:200],
        "sentiment": sentiment if sentiment in ("positive", "neutral", "negative") else "neutral",
        "interaction_count": int(existing.get("interaction_count") or 0) + 1,
    }
    if len(memory["known_agents"]) > LIMITS["known_agents"]:
        enforce_limits(memory)


def add_my_post(
    memory: Dict[str, Any],
    post_id: str,
    title: str,
    submolt: str,
    content: str = "",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    entry = {
        "id": str(post_id),
        "title": title,
        "submolt": submolt,
        "ts": utc_iso(now),
        "topics": extract_topics(title, content),
        "upvotes": None,
        "comments": None,
    }
    _append_bounded(memory, "my_posts", entry)
    for topic in entry["topics"]:
        stats = memory["topic_performance"].setdefault(
            topic, {"post_count": 0, "total_upvotes": 0, "total_comments": 0}
        )
        stats["post_count"] += 1
    return entry


def add_journal_entry(
    memory: Dict[str, Any],
    summary: str,
    posts: int = 0,
    comments: int = 0,
    upvotes: int = 0,
    challenges: int = 0,
    status: str = "ok",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    ts = utc_iso(now)
    entry = {
        "ts": ts,
        "summary": summary[:500],
        "status": status,
        "posts": posts,
        "comments": comments,
        "upvotes": upvotes,
        "challenges": challenges,
    }
    _append_bounded(memory, "journal", entry)
    memory["last_heartbeat_time"] = ts
    memory["total_heartbeats"] = int(memory.get("total_heartbeats") or 0) + 1
    return entry


# ─── Cadence gates ────────────────────────────────────


def can_follow_this_week(memory: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or utc_now()
    for entry in memory["followed_agents"]:
        ts = parse_iso(entry.get("ts"))
        if ts is not None and now - ts < FOLLOW_COOLDOWN:
            return False
    return True


def communities_created_this_week(memory: Dict[str, Any], now: Optional[datetime] = None) -> int:
    now = now or utc_now()
    count = 0
    for entry in memory["created_communities"]:
        ts = parse_iso(entry.get("ts"))
        if ts is not None and now - ts < COMMUNITY_CREATION_WINDOW:
            count += 1
    return count


def can_create_community_this_week(
    memory: Dict[str, Any], max_per_week: int, now: Optional[datetime] = None
) -> bool:
    return communities_created_this_week(memory, now) < max_per_week


def should_check_communities(memory: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    last = parse_iso(memory.get("last_community_check"))
    if last is None:
        return True
    return last.date() != (now or utc_now()).date()


# ─── Learning ─────────────────────────────────────────


def extract_topics(title: str, body: str = "") -> List[str]:
    text = f"{title} {body or ''}".lower()
    topics = [topic for topic, pattern in TOPIC_PATTERNS.items() if pattern.search(text)]
    return topics or ["general"]


def recompute_topic_performance(memory: Dict[str, Any]) -> None:
    """Rebuild per-topic totals from own posts with known engagement."""
    stats: Dict[str, Dict[str, int]] = {}
    for post in memory["my_posts"]:
        if post.get("upvotes") is None:
            continue
        for topic in post.get("topics") or []:
            entry = stats.setdefault(topic, {"post_count": 0, "total_upvotes": 0, "total_comments": 0})
            entry["post_count"] += 1
            entry["total_upvotes"] += int(post.get("upvotes") or 0)
            entry["total_comments"] += int(post.get("comments") or 0)
    memory["topic_performance"] = stats


def best_topics(memory: Dict[str, Any], limit: int = 3) -> List[str]:
    ranked = sorted(
        memory["topic_performance"].items(),
        key=lambda kv: engagement_score(kv[1]["total_upvotes"], kv[1]["total_comments"]),
        reverse=True,
    )
    return [
        topic
        for topic, stats in ranked[:limit]
        if engagement_score(stats["total_upvotes"], stats["total_comments"]) > 0
    ]


def _day(ts: Any) -> str:
    return str(ts or "?").split("T")[0]


def _fmt_count(value: Any) -> str:
    return "?" if value is None else str(value)


def build_memory_briefing(memory: Dict[str, Any]) -> str:
    lines: List[str] = []

    if memory["journal"]:
        lines.append("RECENT ACTIVITY:")
        for entry in memory["journal"][-5:]:
            lines.append(
                f"  {_day(entry.get('ts'))}: {entry.get('summary')} "
                f"({entry.get('posts', 0)}p/{entry.get('comments', 0)}c/{entry.get('upvotes', 0)}u)"
            )
        lines.append("")

    if memory["my_posts"]:
        lines.append("MY RECENT POSTS (avoid repeating these topics and title patterns):")
        for post in memory["my_posts"][-10:]:
            lines.append(
                f"  {_day(post.get('ts'))} in {post.get('submolt')}: \"{post.get('title')}\" "
                f"-> upvotes={_fmt_count(post.get('upvotes'))} comments={_fmt_count(post.get('comments'))}"
            )
        lines.append("")

        measured = [p for p in memory["my_posts"] if p.get("upvotes") is not None]
        if measured:
            best = sorted(
                measured,
                key=lambda p: engagement_score(p.get("upvotes") or 0, p.get("comments") or 0),
                reverse=True,
            )[:3]
            lines.append("BEST PERFORMING POSTS (learn from these):")
            for post in best:
                lines.append(
                    f"  \"{post.get('title')}\" -> upvotes={post.get('upvotes')} "
                    f"comments={post.get('comments') or 0} [topics: {', '.join(post.get('topics') or [])}]"
                )
            lines.append("")

    ranked = sorted(
        memory["topic_performance"].items(),
        key=lambda kv: engagement_score(kv[1]["total_upvotes"], kv[1]["total_comments"]),
        reverse=True,
    )[:5]
    ranked = [(t, s) for t, s in ranked if engagement_score(s["total_upvotes"], s["total_comments"]) > 0]
    if ranked:
        lines.append("TOP PERFORMING TOPICS:")
        for topic, stats in ranked:
            count = max(1, stats["post_count"])
            lines.append(
                f"  {topic}: {stats['post_count']} posts -> avg {stats['total_upvotes'] / count:.1f} upvotes "
                f"{stats['total_comments'] / count:.1f} comments per post"
            )
        lines.append("")

    regulars = [
        (name, info)
        for name, info in memory["known_agents"].items()
        if int(info.get("interaction_count") or 0) >= 2
    ]
    if regulars:
        regulars.sort(key=lambda kv: int(kv[1].get("interaction_count") or 0), reverse=True)
        lines.append("AGENTS I KEEP RUNNING INTO:")
        for name, info in regulars[:10]:
            note = f" ({info.get('note')})" if info.get("note") else ""
            lines.append(f"  {name}: {info.get('interaction_count')} interactions, {info.get('sentiment')}{note}")
        lines.append("")

    if memory["followed_agents"]:
        lines.append("AGENTS I FOLLOW (already following, don't follow again):")
        lines.append("  " + ", ".join(entry["name"] for entry in memory["followed_agents"][-10:]))
        lines.append("")

    lines.append(
        f"STATS: {memory.get('total_heartbeats', 0)} total heartbeats, "
        f"{len(memory['my_posts'])} posts created, "
        f"{len(memory['interacted_post_ids'])} posts interacted with, "
        f"{len(memory['followed_agents'])} follows"
    )
    return "\n".join(lines)
