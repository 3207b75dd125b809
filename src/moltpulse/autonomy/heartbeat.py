"""One heartbeat: fetch, defend, decide, act, remember.

The orchestrator walks a fixed sequence of phases (``CyclePhase``). It owns
the daily counters and hands them, together with the cycle's memory
document, to the validator and executor. Only one cycle may run at a time;
nothing here is locked and the scheduler in ``runner`` calls ``run_cycle``
strictly sequentially.
"""

from __future__ import annotations

import enum
import logging
import random
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..moltbook_client import AccountHealth, MoltbookClient
from .actions import ActionExecutor
from .cadence import CadenceGates
from .challenges import detect_challenge, find_challenges
from .decision import DecisionEngine, DecisionRequest, FeedDecision
from .memory import (
    TOPIC_PATTERNS,
    add_journal_entry,
    best_topics,
    build_memory_briefing,
    can_create_community_this_week,
    can_follow_this_week,
    has_created_community,
    has_followed,
    has_interacted,
    is_subscribed,
    load_memory,
    mark_community_check_done,
    recompute_topic_performance,
    save_memory,
    should_check_communities,
)
from .records import (
    AgentProfile,
    Community,
    FeedItem,
    communities_from_payload,
    comments_from_payload,
    feed_items_from_payload,
    normalize_str,
)
from .sanitizer import sanitize_feed
from .state import DailyCounters, utc_now
from .validation import ActionValidator, CycleCounters, FeedIndex


DEFAULT_SEARCH_TERMS = ("agents", "ai", "moltbook")
OWN_POSTS_TO_REFRESH = 5
SEARCH_RESULTS_TO_KEEP = 5

logger = logging.getLogger("moltpulse.autonomy")


class CyclePhase(str, enum.Enum):
    IDLE = "idle"
    FETCHING_STATUS = "fetching_status"
    CHECKING_SUSPENSION = "checking_suspension"
    FETCHING_FEED = "fetching_feed"
    EXECUTING_CHALLENGES = "executing_challenges"
    AWAITING_DECISION = "awaiting_decision"
    VALIDATING_AND_EXECUTING = "validating_and_executing"
    HANDLING_SOCIAL_ACTIONS = "handling_social_actions"
    PERSISTING_JOURNAL = "persisting_journal"


@dataclass
class CycleReport:
    seed: Optional[int] = None
    status: str = "ok"
    summary: str = ""
    error: str = ""
    phases: List[CyclePhase] = field(default_factory=list)
    counters: CycleCounters = field(default_factory=CycleCounters)
    health: AccountHealth = field(default_factory=AccountHealth.active)
    feed_size: int = 0
    flagged_items: int = 0
    challenges_detected: int = 0
    executed_targets: List[str] = field(default_factory=list)
    memory_saved: bool = False
    elapsed_seconds: float = 0.0

    @property
    def suspended(self) -> bool:
        return self.health.suspended

    @property
    def ok(self) -> bool:
        return self.status not in ("failed",)


def extract_trending_topics(items: Sequence[FeedItem], limit: int = 5) -> List[str]:
    counts: Dict[str, int] = {}
    for item in items:
        text = f"{item.title} {item.body}".lower()
        for topic, pattern in TOPIC_PATTERNS.items():
            if pattern.search(text):
                counts[topic] = counts.get(topic, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [topic for topic, _ in ranked[:limit]]


def format_trending(topics: Sequence[str]) -> str:
    if not topics:
        return ""
    return "FEED TRENDING TOPICS (what the community is discussing right now): " + ", ".join(topics)


def _status_value(data: Optional[Dict[str, Any]]) -> str:
    if not isinstance(data, dict):
        return ""
    agent = data.get("agent") if isinstance(data.get("agent"), dict) else {}
    return normalize_str(data.get("status") or agent.get("status")).strip().lower()


class HeartbeatOrchestrator:
    def __init__(
        self,
        cfg: Any,
        client: MoltbookClient,
        engine: DecisionEngine,
        daily: Optional[DailyCounters] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cfg = cfg
        self.client = client
        self.engine = engine
        self.daily = daily or DailyCounters()
        self.sleep = sleep
        self.clock = clock
        self.phase = CyclePhase.IDLE

    def _enter(self, report: CycleReport, phase: CyclePhase) -> None:
        self.phase = phase
        report.phases.append(phase)
        logger.debug("Heartbeat phase=%s", phase.value)

    # ─── Entry point ──────────────────────────────────

    def run_cycle(self, seed: Optional[int] = None) -> CycleReport:
        """Run one heartbeat. Never raises; failures come back as ``status="failed"``."""
        started = time.monotonic()
        report = CycleReport(seed=seed)
        memory: Optional[Dict[str, Any]] = None
        logger.info("Heartbeat started seed=%s dry_run=%s", seed, int(bool(self.cfg.dry_run)))
        try:
            memory = load_memory(self.cfg.state_path)
            self._run(report, memory, random.Random(seed))
        except Exception as e:
            logger.exception("Heartbeat failed error=%s", e)
            report.status = "failed"
            report.error = str(e)
            if memory is not None:
                try:
                    self._persist(report, memory, f"Heartbeat failed: {e}")
                except Exception as persist_error:
                    logger.exception("Failed to persist failed-cycle journal error=%s", persist_error)
        finally:
            report.health = self.client.health
            report.elapsed_seconds = round(time.monotonic() - started, 1)
            self._enter(report, CyclePhase.IDLE)
        logger.info(
            "Heartbeat complete status=%s elapsed=%.1fs actions=%s challenges=%s posts_today=%s comments_today=%s health=%s",
            report.status,
            report.elapsed_seconds,
            report.counters.total,
            report.counters.challenges,
            self.daily.posts,
            self.daily.comments,
            report.health.describe(),
        )
        return report

    def _persist(self, report: CycleReport, memory: Dict[str, Any], summary: str) -> None:
        self._enter(report, CyclePhase.PERSISTING_JOURNAL)
        report.summary = summary
        counters = report.counters
        add_journal_entry(
            memory,
            summary,
            posts=counters.posts,
            comments=counters.conversation + counters.challenge_comments,
            upvotes=counters.upvotes + counters.challenge_upvotes,
            challenges=counters.challenges,
            status=report.status,
            now=self.clock(),
        )
        report.memory_saved = save_memory(self.cfg.state_path, memory)

    # ─── Phases ───────────────────────────────────────

    def _run(self, report: CycleReport, memory: Dict[str, Any], rng: random.Random) -> None:
        cfg = self.cfg
        now = self.clock()
        if self.daily.roll_over(now):
            logger.info("Daily counters reset day=%s", self.daily.day)
        gates = CadenceGates.roll(cfg, seed=report.seed, rng=rng)
        logger.info("Cadence gates %s", gates.describe())

        self._enter(report, CyclePhase.FETCHING_STATUS)
        status = self.client.get_account_status()
        if not status.ok and not self.client.health.suspended:
            report.status = "unreachable"
            logger.error("Could not reach Moltbook API error=%s", status.error)
            self._persist(report, memory, "Could not reach Moltbook API")
            return
        if _status_value(status.data) == "pending_claim":
            report.status = "pending_claim"
            logger.warning("Agent is still pending claim; ask the owner to verify it")
            self._persist(report, memory, "Agent pending claim")
            return

        self._enter(report, CyclePhase.CHECKING_SUSPENSION)
        profile = self._check_suspension()
        if self.client.health.suspended:
            report.status = "suspended"
            logger.warning("Account suspended, skipping all actions reason=%s", self.client.health.reason)
            self._persist(report, memory, f"Suspended: {self.client.health.reason[:200]}")
            return
        karma = profile.karma if profile else 0

        self._enter(report, CyclePhase.FETCHING_FEED)
        self._refresh_own_posts(memory, rng)
        feed = self.client.get_feed("new", cfg.feed_limit)
        items = feed_items_from_payload(feed.data)
        if not items:
            report.status = "empty_feed"
            logger.info("Feed is empty or unavailable error=%s", feed.error)
            self._persist(report, memory, "Feed is empty or unavailable")
            return
        clean, report.flagged_items = sanitize_feed(items)
        report.feed_size = len(clean)
        logger.info("Feed fetched posts=%s flagged=%s", len(clean), report.flagged_items)

        validator = ActionValidator(cfg=cfg, feed=FeedIndex(), memory=memory, daily=self.daily, cycle=report.counters)
        executor = ActionExecutor(
            self.client, cfg, memory, self.daily, report.counters, sleep=self.sleep, rng=rng, clock=self.clock
        )

        self._enter(report, CyclePhase.EXECUTING_CHALLENGES)
        challenges = find_challenges(clean, cfg.moderator_names)
        report.challenges_detected = len(challenges)
        challenge_ids: Set[str] = {c.target_post_id for c in challenges}
        pending = [c for c in challenges if not has_interacted(memory, c.target_post_id)]
        for challenge in pending[: max(0, cfg.max_challenges_per_cycle)]:
            executor.run_challenge(challenge)
            report.executed_targets.append(challenge.target_post_id)
            if executor.suspended:
                break
        if executor.suspended:
            report.status = "suspended"
            self._persist(report, memory, "Suspended while executing challenges")
            return
        if pending and cfg.persist_after_challenges:
            save_memory(cfg.state_path, memory)

        fresh = [i for i in clean if i.id not in challenge_ids and not has_interacted(memory, i.id)]
        skipped = len(clean) - len(fresh) - len(challenge_ids & {i.id for i in clean})
        if skipped > 0:
            logger.info("Filtered posts already interacted with count=%s", skipped)
        if gates.search:
            fresh.extend(self._discover_via_search(memory, fresh, challenge_ids, rng))
        enriched = self._enrich(fresh, rng)
        for item in enriched:
            validator.feed.add(item)

        self._enter(report, CyclePhase.AWAITING_DECISION)
        decision = self._decide(enriched, memory, karma, validator, gates)
        if decision is None or not decision.usable:
            report.status = "decision_error"
            summary = (decision.summary if decision and decision.summary else "") or "No usable decision"
            logger.warning("Decision unusable error=%s", decision.error if decision else "no decision")
            self._persist(report, memory, f"Decision error: {summary}")
            return
        logger.info("Decision summary=%s actions=%s post=%s", decision.summary, len(decision.actions),
                    int(decision.post_idea is not None))

        self._enter(report, CyclePhase.VALIDATING_AND_EXECUTING)
        self._execute_feed_actions(report, decision, validator, executor, gates)

        social: List[str] = []
        if not executor.suspended:
            self._enter(report, CyclePhase.HANDLING_SOCIAL_ACTIONS)
            visible = [i for i in clean if i.id not in challenge_ids]
            social = self._social_actions(memory, visible, karma, executor, gates)

        if executor.suspended:
            report.status = "suspended"
        summary = decision.summary or f"Processed {len(enriched)} posts"
        if social:
            summary = f"{summary} | Social: {', '.join(social)}"
        self._persist(report, memory, summary)

    def _check_suspension(self) -> Optional[AgentProfile]:
        health = self.client.health
        if health.suspended:
            since = health.since or 0.0
            if time.time() - since < self.cfg.suspension_recheck_seconds:
                return None
            logger.info("Re-checking cached suspension reason=%s", health.reason)
        result = self.client.get_own_profile()
        if result.ok and health.suspended:
            self.client.clear_suspension()
        return AgentProfile.from_payload(result.data) if result.ok else None

    def _refresh_own_posts(self, memory: Dict[str, Any], rng: random.Random) -> None:
        recent = memory["my_posts"][-OWN_POSTS_TO_REFRESH:]
        if not recent:
            return
        refreshed = 0
        for post in recent:
            result = self.client.get_post(post["id"])
            self._enrich_pause(rng)
            if not result.ok:
                continue
            items = feed_items_from_payload({"posts": [result.data.get("post") or result.data]})
            if items:
                post["upvotes"] = items[0].upvotes
                post["comments"] = items[0].comment_count
                refreshed += 1
        if refreshed:
            recompute_topic_performance(memory)
        logger.debug("Own post engagement refreshed count=%s", refreshed)

    def _enrich_pause(self, rng: random.Random) -> None:
        delay = rng.uniform(self.cfg.enrich_delay_min_seconds, self.cfg.enrich_delay_max_seconds)
        if delay > 0:
            self.sleep(delay)

    def _discover_via_search(
        self,
        memory: Dict[str, Any],
        current: Sequence[FeedItem],
        challenge_ids: Set[str],
        rng: random.Random,
    ) -> List[FeedItem]:
        terms = best_topics(memory, limit=3)
        for term in DEFAULT_SEARCH_TERMS:
            if len(terms) >= 2:
                break
            if term not in terms:
                terms.append(term)
        term = rng.choice(terms)
        logger.info("Search discovery query=%s", term)
        result = self.client.search(term, "posts", self.cfg.search_limit)
        existing = {i.id for i in current} | challenge_ids
        found = [
            i
            for i in feed_items_from_payload(result.data)
            if i.id not in existing and not has_interacted(memory, i.id) and i.title
        ]
        clean, _ = sanitize_feed(found[:SEARCH_RESULTS_TO_KEEP])
        kept = []
        for item in clean:
            # Challenges only run from the main feed; the engine never sees one.
            if detect_challenge(item, self.cfg.moderator_names) is not None:
                continue
            kept.append(item)
        if kept:
            logger.info("Search discovery added=%s query=%s", len(kept), term)
        return kept

    def _enrich(self, items: List[FeedItem], rng: random.Random) -> List[FeedItem]:
        targets = sorted(
            (i for i in items if i.comment_count > 0),
            key=lambda i: i.engagement,
            reverse=True,
        )[: max(0, self.cfg.enrich_posts)]
        by_id = {i.id: i for i in items}
        for target in targets:
            result = self.client.get_comments(target.id, "top")
            self._enrich_pause(rng)
            if not result.ok:
                continue
            comments = comments_from_payload(result.data)
            if comments:
                enriched, _ = sanitize_feed([target.with_comments(comments)])
                by_id[target.id] = enriched[0]
        logger.debug("Enriched posts with comments count=%s", len(targets))
        return [by_id[i.id] for i in items]

    def _decide(
        self,
        items: List[FeedItem],
        memory: Dict[str, Any],
        karma: int,
        validator: ActionValidator,
        gates: CadenceGates,
    ) -> Optional[FeedDecision]:
        if not items:
            return FeedDecision(summary="Nothing new in the feed")
        post_block = validator.check_post(self.clock())
        if post_block:
            logger.info("New post not allowed this cycle reason=%s", post_block)
        request = DecisionRequest(
            feed=items,
            karma=karma,
            recent_activity=f"posts_today={self.daily.posts}, comments_today={self.daily.comments}",
            briefing=build_memory_briefing(memory),
            trending=format_trending(extract_trending_topics(items)),
            allowed_submolts=list(self.cfg.favorite_submolts),
            max_upvotes=self.cfg.max_upvotes_per_cycle,
            max_comments=self.cfg.max_comments_per_cycle,
            allow_post=gates.post and post_block is None,
        )
        return self.engine.decide_feed_actions(request)

    def _execute_feed_actions(
        self,
        report: CycleReport,
        decision: FeedDecision,
        validator: ActionValidator,
        executor: ActionExecutor,
        gates: CadenceGates,
    ) -> None:
        for proposal in decision.actions:
            if executor.suspended:
                logger.warning("Suspension detected, aborting remaining actions")
                break
            if proposal.kind == "skip":
                continue
            if proposal.kind == "comment" and not gates.comments:
                validator.reject(proposal, "cadence_gate")
                continue
            if proposal.kind == "reply" and not gates.replies:
                validator.reject(proposal, "cadence_gate")
                continue
            if validator.check(proposal) is not None:
                continue
            item = validator.feed.get(proposal.post_id)
            outcome = executor.execute(proposal, item)
            if outcome.attempted:
                report.executed_targets.append(proposal.post_id)

        idea = decision.post_idea
        if idea is None or executor.suspended:
            return
        if not gates.post:
            logger.info("Post idea skipped reason=cadence_gate")
            return
        block = validator.check_post(self.clock())
        if block:
            logger.info("Post idea skipped reason=%s", block)
            return
        favorites = list(self.cfg.favorite_submolts) or ["general"]
        if idea.submolt not in favorites:
            logger.info("Post submolt not allowed submolt=%s using=%s", idea.submolt, favorites[0])
            idea = replace(idea, submolt=favorites[0])
        executor.post(idea)

    def _social_actions(
        self,
        memory: Dict[str, Any],
        feed: Sequence[FeedItem],
        karma: int,
        executor: ActionExecutor,
        gates: CadenceGates,
    ) -> List[str]:
        done: List[str] = []
        own = (self.cfg.agent_name or "").strip().lower()

        if gates.follow and can_follow_this_week(memory, self.clock()):
            valid_names = []
            for item in feed:
                name = item.author
                if name == "unknown" or name.lower() == own or name in valid_names or has_followed(memory, name):
                    continue
                valid_names.append(name)
            if valid_names:
                picks = self.engine.decide_follows(feed, build_memory_briefing(memory), valid_names)
                for pick in picks[:1]:
                    if pick.name not in valid_names:
                        logger.warning("Follow pick rejected agent=%s reason=not_in_feed", pick.name)
                        continue
                    if executor.follow(pick.name, pick.reason).ok:
                        done.append("1 follow")
        elif gates.follow:
            logger.debug("Follow skipped reason=weekly_limit")

        communities: Optional[List[Community]] = None
        if not executor.suspended and should_check_communities(memory, self.clock()):
            listing = self.client.list_communities()
            if listing.ok:
                communities = communities_from_payload(listing.data)
                candidates = sorted(
                    (c for c in communities if not is_subscribed(memory, c.name)),
                    key=lambda c: c.popularity,
                    reverse=True,
                )
                if candidates and executor.subscribe(candidates[0].name).ok:
                    done.append("1 sub")
                mark_community_check_done(memory, self.clock())

        if (
            not executor.suspended
            and self.cfg.community_creation_enabled
            and karma >= self.cfg.min_karma_to_create_community
            and can_create_community_this_week(memory, self.cfg.max_communities_per_week, self.clock())
        ):
            if communities is None:
                listing = self.client.list_communities()
                communities = communities_from_payload(listing.data) if listing.ok else None
            if communities is not None:
                result = self.engine.decide_community(
                    communities, build_memory_briefing(memory), extract_trending_topics(feed)
                )
                spec = result.spec
                existing = {c.name.lower() for c in communities}
                if spec is None:
                    logger.debug("Community creation declined reason=%s", result.reason)
                elif spec.name.lower() in existing or has_created_community(memory, spec.name):
                    logger.warning("Community already exists name=%s", spec.name)
                elif executor.create_community(spec, result.reason).ok:
                    done.append("1 community created")
        return done
