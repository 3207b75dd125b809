from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_date_str(now: Optional[datetime] = None) -> str:
    return (now or utc_now()).date().isoformat()


def utc_iso(now: Optional[datetime] = None) -> str:
    return (now or utc_now()).isoformat()


def parse_iso(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class DailyCounters:
    """Posts/comments made today by this process.

    Owned by the orchestrator and handed to the executor explicitly. Only one
    heartbeat cycle may touch it at a time; nothing here is locked.
    """

    day: str = field(default_factory=utc_date_str)
    posts: int = 0
    comments: int = 0
    last_post_at: Optional[datetime] = None

    def roll_over(self, now: Optional[datetime] = None) -> bool:
        today = utc_date_str(now)
        if self.day == today:
            return False
        self.day = today
        self.posts = 0
        self.comments = 0
        return True

    def seconds_since_last_post(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.last_post_at is None:
            return None
        return max(0.0, ((now or utc_now()) - self.last_post_at).total_seconds())

    def record_post(self, now: Optional[datetime] = None) -> None:
        self.posts += 1
        self.last_post_at = now or utc_now()

    def record_comment(self) -> None:
        self.comments += 1
