import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests import exceptions as requests_exceptions

from .autonomy.records import CommunitySpec


MOLTBOOK_BASE_URL = "https://www.moltbook.com/api/v1"
MOLTBOOK_BASE_ENV = "MOLTBOOK_API_BASE"
CREDENTIALS_PATH = Path.home() / ".config" / "moltbook" / "credentials.json"
_MOLTBOOK_ALLOWED_PREFIX = "https://www.moltbook.com/api/v1"

SUSPENSION_MARKERS = ("suspended", "verification challenge", "banned")

logger = logging.getLogger("moltpulse.autonomy")


def normalize_sort(value: Any, allowed: tuple = ("hot", "new", "rising", "top"), default: str = "new") -> str:
    text = str(value or "").strip().lower()
    if text in allowed:
        return text
    return default


def looks_like_suspension(body: Any) -> bool:
    text = str(body or "").lower()
    return any(marker in text for marker in SUSPENSION_MARKERS)


class MoltbookAuthError(Exception):
    pass


@dataclass(frozen=True)
class AccountHealth:
    """Active, or Suspended(reason) with the epoch time it was detected."""

    suspended: bool = False
    reason: str = ""
    since: Optional[float] = None

    @classmethod
    def active(cls) -> "AccountHealth":
        return cls()

    @classmethod
    def suspended_for(cls, reason: str, since: Optional[float] = None) -> "AccountHealth":
        return cls(suspended=True, reason=reason.strip()[:500], since=time.time() if since is None else since)

    def describe(self) -> str:
        if not self.suspended:
            return "active"
        return f"suspended({self.reason or 'unknown'})"


@dataclass
class ApiResult:
    data: Optional[Dict[str, Any]]
    health: AccountHealth
    status_code: Optional[int] = None
    error: str = ""
    rate_limited: bool = False

    @property
    def ok(self) -> bool:
        return self.data is not None


@dataclass
class MoltbookCredentials:
    api_key: str
    agent_name: Optional[str] = None
    source: str = "unknown"

    @classmethod
    def load(cls) -> "MoltbookCredentials":
        """Load credentials from env or ~/.config/moltbook/credentials.json.

        Priority:
        1. MOLTBOOK_API_KEY env var
        2. credentials.json file
        """
        api_key = os.getenv("MOLTBOOK_API_KEY")
        agent_name: Optional[str] = os.getenv("MOLTBOOK_AGENT_NAME") or None
        source = "env:MOLTBOOK_API_KEY"

        if not api_key and CREDENTIALS_PATH.exists():
            with CREDENTIALS_PATH.open("r", encoding="utf-8") as f:
                data = json.load(f)
            api_key = data.get("api_key")
            agent_name = data.get("agent_name") or agent_name
            source = f"file:{CREDENTIALS_PATH}"

        if api_key is not None:
            api_key = str(api_key).strip()

        if not api_key:
            raise MoltbookAuthError(
                "Missing Moltbook API key. Set MOLTBOOK_API_KEY or create "
                f"{CREDENTIALS_PATH} with an 'api_key' field."
            )

        return cls(api_key=api_key, agent_name=agent_name, source=source)

    def save(self) -> Path:
        CREDENTIALS_PATH.parent.mkdir(parents=True, exist_ok=True)
        with CREDENTIALS_PATH.open("w", encoding="utf-8") as f:
            json.dump({"api_key": self.api_key, "agent_name": self.agent_name}, f, indent=2)
        return CREDENTIALS_PATH


class MoltbookClient:
    """Moltbook API client that never raises past its own boundary.

    Every call returns an ``ApiResult`` carrying the payload (or ``None``) and
    the current ``AccountHealth``. Once a response reveals a suspension the
    health stays suspended until ``clear_suspension`` is called, and every
    write becomes a logged no-op.

    SECURITY: This client only ever sends your API key to https://www.moltbook.com.
    Never modify it to talk to other domains with your key.
    """

    def __init__(self, credentials: Optional[MoltbookCredentials] = None, timeout: int = 30):
        self.credentials = credentials or MoltbookCredentials.load()
        env_base = os.getenv(MOLTBOOK_BASE_ENV)
        self.base_url = self._normalize_base_url(env_base or MOLTBOOK_BASE_URL)
        self.timeout = timeout
        self._health = AccountHealth.active()

    def _normalize_base_url(self, raw: str) -> str:
        candidate = str(raw).strip().rstrip("/")
        if candidate.startswith(_MOLTBOOK_ALLOWED_PREFIX):
            return candidate
        # Enforce the official API host so auth headers are never sent elsewhere.
        return MOLTBOOK_BASE_URL

    @property
    def health(self) -> AccountHealth:
        return self._health

    def mark_suspended(self, reason: str) -> AccountHealth:
        if not self._health.suspended:
            self._health = AccountHealth.suspended_for(reason)
        return self._health

    def clear_suspension(self) -> None:
        if self._health.suspended:
            logger.info("Account suspension cleared previous_reason=%s", self._health.reason)
        self._health = AccountHealth.active()

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credentials.api_key}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        path = path.lstrip("/")
        return f"{self.base_url}/{path}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        write: bool = False,
    ) -> ApiResult:
        if write and self._health.suspended:
            logger.warning(
                "Skipping %s %s: account suspended reason=%s", method, path, self._health.reason
            )
            return ApiResult(data=None, health=self._health, error="suspended")

        logger.debug("API %s %s params=%s", method, path, params)
        sender = getattr(requests, method.lower())
        kwargs: Dict[str, Any] = {"headers": self._headers, "timeout": self.timeout}
        if params:
            kwargs["params"] = params
        if payload is not None:
            kwargs["data"] = json.dumps(payload)
        try:
            resp = sender(self._url(path), **kwargs)
        except requests_exceptions.RequestException as e:
            logger.error("API request failed %s %s error=%s", method, path, e)
            return ApiResult(data=None, health=self._health, error=str(e))

        if resp.status_code == 429:
            logger.warning("Rate limited by Moltbook %s %s body=%s", method, path, (resp.text or "")[:200])
            return ApiResult(
                data=None,
                health=self._health,
                status_code=429,
                error="rate_limited",
                rate_limited=True,
            )

        if resp.status_code >= 400:
            error_text = resp.text or ""
            if looks_like_suspension(error_text):
                self.mark_suspended(error_text)
                logger.error("Account suspended detected on %s %s status=%s body=%s",
                             method, path, resp.status_code, error_text[:300])
            else:
                logger.error("API error status=%s %s %s body=%s", resp.status_code, method, path, error_text[:300])
            return ApiResult(data=None, health=self._health, status_code=resp.status_code, error=error_text[:500])

        try:
            data = resp.json()
        except ValueError:
            data = {"ok": True}
        if not isinstance(data, dict):
            data = {"data": data}
        if data.get("success") is False:
            message = data.get("error") or data.get("hint") or "success=false"
            logger.warning("API reported failure %s %s error=%s", method, path, message)
            return ApiResult(data=None, health=self._health, status_code=resp.status_code, error=str(message))
        return ApiResult(data=data, health=self._health, status_code=resp.status_code)

    # ─── Account ──────────────────────────────────────

    def get_account_status(self) -> ApiResult:
        return self._request("GET", "agents/status")

    def get_own_profile(self) -> ApiResult:
        return self._request("GET", "agents/me")

    # ─── Feed & posts ─────────────────────────────────

    def get_feed(self, sort: str = "new", limit: int = 15) -> ApiResult:
        return self._request("GET", "posts", params={"sort": normalize_sort(sort), "limit": int(limit)})

    def get_post(self, post_id: str) -> ApiResult:
        return self._request("GET", f"posts/{post_id}")

    def create_post(self, submolt: str, title: str, content: str) -> ApiResult:
        payload = {"submolt": submolt, "title": title, "content": content}
        return self._request("POST", "posts", payload=payload, write=True)

    def search(self, query: str, kind: str = "posts", limit: int = 10) -> ApiResult:
        kind = normalize_sort(kind, allowed=("all", "posts", "comments"), default="posts")
        return self._request("GET", "search", params={"q": query, "type": kind, "limit": int(limit)})

    # ─── Comments & votes ─────────────────────────────

    def get_comments(self, post_id: str, sort: str = "top") -> ApiResult:
        sort = normalize_sort(sort, allowed=("top", "new", "controversial"), default="top")
        return self._request("GET", f"posts/{post_id}/comments", params={"sort": sort})

    def create_comment(self, post_id: str, text: str, parent_id: Optional[str] = None) -> ApiResult:
        payload: Dict[str, Any] = {"content": text}
        if parent_id:
            payload["parent_id"] = parent_id
        return self._request("POST", f"posts/{post_id}/comments", payload=payload, write=True)

    def upvote(self, post_id: str) -> ApiResult:
        return self._request("POST", f"posts/{post_id}/upvote", write=True)

    # ─── Social ───────────────────────────────────────

    def follow(self, agent_name: str) -> ApiResult:
        return self._request("POST", f"agents/{agent_name.strip()}/follow", write=True)

    def list_communities(self) -> ApiResult:
        return self._request("GET", "submolts")

    def subscribe(self, community_name: str) -> ApiResult:
        return self._request("POST", f"submolts/{community_name.strip()}/subscribe", write=True)

    def create_community(self, spec: CommunitySpec) -> ApiResult:
        return self._request("POST", "submolts", payload=spec.to_payload(), write=True)


def register_agent(name: str, description: str, timeout: int = 30) -> Dict[str, Any]:
    """One-time agent registration. No API key exists yet, so this is unauthenticated."""
    if not name.strip():
        raise ValueError("agent name must be provided")
    try:
        resp = requests.post(
            f"{MOLTBOOK_BASE_URL}/agents/register",
            headers={"Content-Type": "application/json"},
            data=json.dumps({"name": name.strip(), "description": description}),
            timeout=timeout,
        )
    except requests_exceptions.Timeout as e:
        raise RuntimeError("Timed out while registering the agent on Moltbook.") from e

    try:
        data = resp.json()
    except ValueError:
        data = {}
    if resp.status_code >= 400:
        message = data.get("error") or data.get("hint") or resp.text
        raise RuntimeError(f"Moltbook registration error {resp.status_code}: {message}")
    return data
