from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import os

from dotenv import load_dotenv


DEFAULT_MODERATOR_NAMES = [
    "clawd_clawderberg",
    "clawdclawderberg",
    "clawd",
]

DEFAULT_PERSONA = (
    "You are a friendly and thoughtful AI agent participating in the Moltbook social network."
)

DEFAULT_CHALLENGE_COMMENT = "Real agent here, checking in with an actual action."

VALID_CHALLENGE_MARK_POLICIES = {"always", "on_success"}


@dataclass
class Config:
    agent_name: Optional[str]
    agent_description: str
    agent_persona: str
    heartbeat_seconds: int
    heartbeat_jitter: float
    suspended_interval_multiplier: float
    suspension_recheck_seconds: int
    feed_limit: int
    enrich_posts: int
    search_enabled: bool
    search_limit: int
    max_upvotes_per_cycle: int
    max_comments_per_cycle: int
    max_comments_per_day: int
    max_posts_per_day: int
    min_seconds_between_posts: int
    action_delay_min_seconds: float
    action_delay_max_seconds: float
    enrich_delay_min_seconds: float
    enrich_delay_max_seconds: float
    max_challenges_per_cycle: int
    challenge_mark_policy: str
    challenge_comment_text: str
    persist_after_challenges: bool
    moderator_names: List[str]
    comment_probability: float
    reply_probability: float
    post_probability: float
    follow_probability: float
    search_probability: float
    favorite_submolts: List[str]
    community_creation_enabled: bool
    min_karma_to_create_community: int
    max_communities_per_week: int
    state_path: Path
    action_journal_path: Optional[Path]
    dry_run: bool
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_model: str
    llm_temperature: float
    llm_max_tokens: int
    log_level: str
    log_path: Optional[Path]


def _parse_csv_env(env_key: str) -> List[str]:
    value = os.getenv(env_key, "")
    if not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(env_key: str, default: str) -> bool:
    return os.getenv(env_key, default).strip().lower() in {"1", "true", "yes"}


def _probability(env_key: str, default: str) -> float:
    value = float(os.getenv(env_key, default))
    return min(1.0, max(0.0, value))


def load_config() -> Config:
    load_dotenv(override=False)

    agent_name = os.getenv("MOLTBOOK_AGENT_NAME", "").strip() or os.getenv("AGENT_NAME", "").strip() or None
    agent_description = os.getenv("MOLTBOOK_AGENT_DESCRIPTION", "An AI agent on Moltbook").strip()
    agent_persona = os.getenv("MOLTBOOK_AGENT_PERSONA", "").strip() or DEFAULT_PERSONA

    heartbeat_seconds = int(os.getenv("MOLTBOOK_HEARTBEAT_SECONDS", "14400"))
    heartbeat_jitter = min(0.9, max(0.0, float(os.getenv("MOLTBOOK_HEARTBEAT_JITTER", "0.3"))))
    suspended_interval_multiplier = max(1.0, float(os.getenv("MOLTBOOK_SUSPENDED_INTERVAL_MULTIPLIER", "3.0")))
    suspension_recheck_seconds = int(os.getenv("MOLTBOOK_SUSPENSION_RECHECK_SECONDS", "21600"))

    feed_limit = int(os.getenv("MOLTBOOK_FEED_LIMIT", "15"))
    enrich_posts = int(os.getenv("MOLTBOOK_ENRICH_POSTS", "5"))
    search_enabled = _env_flag("MOLTBOOK_SEARCH_ENABLED", "1")
    search_limit = int(os.getenv("MOLTBOOK_SEARCH_LIMIT", "10"))

    max_upvotes_per_cycle = int(os.getenv("MOLTBOOK_MAX_UPVOTES_PER_CYCLE", "3"))
    max_comments_per_cycle = int(os.getenv("MOLTBOOK_MAX_COMMENTS_PER_CYCLE", "3"))
    # The platform allows 50 comments per day; stay below it.
    max_comments_per_day = int(os.getenv("MOLTBOOK_MAX_COMMENTS_PER_DAY", "45"))
    max_posts_per_day = int(os.getenv("MOLTBOOK_MAX_POSTS_PER_DAY", "3"))
    min_seconds_between_posts = int(os.getenv("MOLTBOOK_MIN_SECONDS_BETWEEN_POSTS", "1800"))

    action_delay_min_seconds = float(os.getenv("MOLTBOOK_ACTION_DELAY_MIN_SECONDS", "21"))
    action_delay_max_seconds = float(os.getenv("MOLTBOOK_ACTION_DELAY_MAX_SECONDS", "35"))
    if action_delay_max_seconds < action_delay_min_seconds:
        action_delay_max_seconds = action_delay_min_seconds
    enrich_delay_min_seconds = float(os.getenv("MOLTBOOK_ENRICH_DELAY_MIN_SECONDS", "0.5"))
    enrich_delay_max_seconds = float(os.getenv("MOLTBOOK_ENRICH_DELAY_MAX_SECONDS", "1.5"))
    if enrich_delay_max_seconds < enrich_delay_min_seconds:
        enrich_delay_max_seconds = enrich_delay_min_seconds

    max_challenges_per_cycle = int(os.getenv("MOLTBOOK_MAX_CHALLENGES_PER_CYCLE", "3"))
    challenge_mark_policy = os.getenv("MOLTBOOK_CHALLENGE_MARK_POLICY", "always").strip().lower()
    if challenge_mark_policy not in VALID_CHALLENGE_MARK_POLICIES:
        challenge_mark_policy = "always"
    challenge_comment_text = os.getenv("MOLTBOOK_CHALLENGE_COMMENT_TEXT", "").strip() or DEFAULT_CHALLENGE_COMMENT
    persist_after_challenges = _env_flag("MOLTBOOK_PERSIST_AFTER_CHALLENGES", "1")
    moderator_names = [n.lower() for n in _parse_csv_env("MOLTBOOK_MODERATOR_NAMES")]
    if not moderator_names:
        moderator_names = DEFAULT_MODERATOR_NAMES[:]

    comment_probability = _probability("MOLTBOOK_COMMENT_PROBABILITY", "0.85")
    reply_probability = _probability("MOLTBOOK_REPLY_PROBABILITY", "0.75")
    post_probability = _probability("MOLTBOOK_POST_PROBABILITY", "0.6")
    follow_probability = _probability("MOLTBOOK_FOLLOW_PROBABILITY", "0.3")
    search_probability = _probability("MOLTBOOK_SEARCH_PROBABILITY", "0.4")

    favorite_submolts = [s.lower().removeprefix("m/") for s in _parse_csv_env("MOLTBOOK_FAVORITE_SUBMOLTS")]
    if not favorite_submolts:
        favorite_submolts = ["general"]

    community_creation_enabled = _env_flag("MOLTBOOK_COMMUNITY_CREATION_ENABLED", "0")
    min_karma_to_create_community = int(os.getenv("MOLTBOOK_MIN_KARMA_TO_CREATE_COMMUNITY", "50"))
    max_communities_per_week = int(os.getenv("MOLTBOOK_MAX_COMMUNITIES_PER_WEEK", "1"))

    state_path = Path(os.getenv("MOLTBOOK_STATE_PATH", "memory/state.json"))
    journal_path_str = os.getenv("MOLTBOOK_ACTION_JOURNAL_PATH", "memory/actions.jsonl").strip()
    action_journal_path = Path(journal_path_str) if journal_path_str else None
    dry_run = _env_flag("MOLTBOOK_DRY_RUN", "0")

    llm_api_key = (
        os.getenv("LLM_API_KEY", "").strip()
        or os.getenv("GROQ_API_KEY", "").strip()
        or os.getenv("OPENAI_API_KEY", "").strip()
        or None
    )
    llm_base_url = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1").rstrip("/")
    llm_model = os.getenv("LLM_MODEL", "llama-3.3-70b-versatile")
    llm_temperature = float(os.getenv("LLM_TEMPERATURE", "0.8"))
    llm_max_tokens = int(os.getenv("LLM_MAX_TOKENS", "4096"))

    log_level = os.getenv("MOLTBOOK_LOG_LEVEL", "INFO").strip().upper()
    log_path_str = os.getenv("MOLTBOOK_LOG_PATH", "logs/agent.log").strip()
    log_path = Path(log_path_str) if log_path_str else None

    return Config(
        agent_name=agent_name,
        agent_description=agent_description,
        agent_persona=agent_persona,
        heartbeat_seconds=heartbeat_seconds,
        heartbeat_jitter=heartbeat_jitter,
        suspended_interval_multiplier=suspended_interval_multiplier,
        suspension_recheck_seconds=suspension_recheck_seconds,
        feed_limit=feed_limit,
        enrich_posts=enrich_posts,
        search_enabled=search_enabled,
        search_limit=search_limit,
        max_upvotes_per_cycle=max_upvotes_per_cycle,
        max_comments_per_cycle=max_comments_per_cycle,
        max_comments_per_day=max_comments_per_day,
        max_posts_per_day=max_posts_per_day,
        min_seconds_between_posts=min_seconds_between_posts,
        action_delay_min_seconds=action_delay_min_seconds,
        action_delay_max_seconds=action_delay_max_seconds,
        enrich_delay_min_seconds=enrich_delay_min_seconds,
        enrich_delay_max_seconds=enrich_delay_max_seconds,
        max_challenges_per_cycle=max_challenges_per_cycle,
        challenge_mark_policy=challenge_mark_policy,
        challenge_comment_text=challenge_comment_text,
        persist_after_challenges=persist_after_challenges,
        moderator_names=moderator_names,
        comment_probability=comment_probability,
        reply_probability=reply_probability,
        post_probability=post_probability,
        follow_probability=follow_probability,
        search_probability=search_probability,
        favorite_submolts=favorite_submolts,
        community_creation_enabled=community_creation_enabled,
        min_karma_to_create_community=min_karma_to_create_community,
        max_communities_per_week=max_communities_per_week,
        state_path=state_path,
        action_journal_path=action_journal_path,
        dry_run=dry_run,
        llm_api_key=llm_api_key,
        llm_base_url=llm_base_url,
        llm_model=llm_model,
        llm_temperature=llm_temperature,
        llm_max_tokens=llm_max_tokens,
        log_level=log_level,
        log_path=log_path,
    )
