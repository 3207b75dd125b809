import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from moltpulse.autonomy.memory import (
    LIMITS,
    SCHEMA_VERSION,
    add_journal_entry,
    add_my_post,
    best_topics,
    build_memory_briefing,
    can_create_community_this_week,
    can_follow_this_week,
    empty_memory,
    extract_topics,
    has_followed,
    has_interacted,
    has_replied_to,
    is_subscribed,
    load_memory,
    mark_community_check_done,
    mark_community_created,
    mark_followed,
    mark_interacted,
    mark_replied,
    mark_subscribed,
    recompute_topic_performance,
    record_agent_interaction,
    save_memory,
    should_check_communities,
)


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class MemoryPersistenceTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "state.json"

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_loads_empty_memory(self):
        memory = load_memory(self.path)
        self.assertEqual(memory, empty_memory())

    def test_corrupt_file_loads_empty_memory(self):
        self.path.write_text("{not json", encoding="utf-8")
        self.assertEqual(load_memory(self.path), empty_memory())
        self.path.write_text("[1, 2, 3]", encoding="utf-8")
        self.assertEqual(load_memory(self.path), empty_memory())

    def test_marks_survive_save_and_load(self):
        memory = empty_memory()
        mark_interacted(memory, "p1")
        mark_replied(memory, "c1")
        mark_followed(memory, "Alice", now=NOW)
        mark_subscribed(memory, "general", now=NOW)

        self.assertTrue(save_memory(self.path, memory))
        loaded = load_memory(self.path)

        self.assertTrue(has_interacted(loaded, "p1"))
        self.assertTrue(has_replied_to(loaded, "c1"))
        self.assertTrue(has_followed(loaded, "alice"))
        self.assertTrue(is_subscribed(loaded, "GENERAL"))
        self.assertFalse(has_interacted(loaded, "p2"))
        self.assertEqual(loaded["schema_version"], SCHEMA_VERSION)

    def test_save_leaves_no_temp_files(self):
        save_memory(self.path, empty_memory())
        leftovers = [p.name for p in self.path.parent.iterdir() if p.name != "state.json"]
        self.assertEqual(leftovers, [])

    def test_limits_are_enforced_on_save(self):
        memory = empty_memory()
        memory["interacted_post_ids"] = [f"p{i}" for i in range(LIMITS["interacted_post_ids"] + 25)]
        memory["journal"] = [{"ts": None, "summary": str(i)} for i in range(30)]
        save_memory(self.path, memory)
        loaded = load_memory(self.path)

        self.assertEqual(len(loaded["interacted_post_ids"]), LIMITS["interacted_post_ids"])
        # Oldest entries go first.
        self.assertEqual(loaded["interacted_post_ids"][-1], f"p{LIMITS['interacted_post_ids'] + 24}")
        self.assertEqual(len(loaded["journal"]), LIMITS["journal"])
        self.assertEqual(loaded["journal"][-1]["summary"], "29")

    def test_known_agents_keep_most_recent(self):
        memory = empty_memory()
        base = NOW - timedelta(days=200)
        for i in range(LIMITS["known_agents"] + 5):
            record_agent_interaction(memory, f"agent{i}", now=base + timedelta(hours=i))

        self.assertEqual(len(memory["known_agents"]), LIMITS["known_agents"])
        self.assertNotIn("agent0", memory["known_agents"])
        self.assertIn(f"agent{LIMITS['known_agents'] + 4}", memory["known_agents"])

    def test_legacy_camel_case_document_is_migrated(self):
        legacy = {
            "myPosts": [
                {"id": "x1", "title": "Agents", "submolt": "general", "lastKnownUpvotes": 4, "lastKnownComments": 1}
            ],
            "interactedPosts": ["a", "b", "a"],
            "interactedComments": ["c"],
            "knownAgents": {"bob": {"lastInteraction": "2026-01-01T00:00:00Z", "context": "hi"}},
            "followedAgents": ["bob"],
            "subscribedSubmolts": [{"name": "general", "createdAt": "2026-01-01T00:00:00Z"}],
            "totalHeartbeats": 7,
        }
        self.path.write_text(json.dumps(legacy), encoding="utf-8")
        memory = load_memory(self.path)

        self.assertEqual(memory["interacted_post_ids"], ["a", "b"])
        self.assertEqual(memory["my_posts"][0]["upvotes"], 4)
        self.assertEqual(memory["known_agents"]["bob"]["note"], "hi")
        self.assertTrue(has_followed(memory, "bob"))
        self.assertTrue(is_subscribed(memory, "general"))
        self.assertEqual(memory["total_heartbeats"], 7)

    def test_unwritable_path_returns_false(self):
        blocker = Path(self._tmp.name) / "blocker"
        blocker.write_text("file", encoding="utf-8")
        self.assertFalse(save_memory(blocker / "state.json", empty_memory()))


class MemoryGateTests(unittest.TestCase):
    def test_follow_cadence_is_weekly(self):
        memory = empty_memory()
        self.assertTrue(can_follow_this_week(memory, NOW))

        mark_followed(memory, "alice", now=NOW)
        self.assertFalse(can_follow_this_week(memory, NOW + timedelta(days=6, hours=23)))
        self.assertTrue(can_follow_this_week(memory, NOW + timedelta(days=7)))
        self.assertTrue(can_follow_this_week(memory, NOW + timedelta(days=8)))

    def test_legacy_follow_without_timestamp_does_not_block(self):
        memory = empty_memory()
        memory["followed_agents"] = [{"name": "old", "ts": None}]
        self.assertTrue(can_follow_this_week(memory, NOW))

    def test_community_creation_window(self):
        memory = empty_memory()
        self.assertTrue(can_create_community_this_week(memory, 1, NOW))
        mark_community_created(memory, "agent_tools", now=NOW - timedelta(days=2))
        self.assertFalse(can_create_community_this_week(memory, 1, NOW))
        self.assertTrue(can_create_community_this_week(memory, 2, NOW))
        self.assertTrue(can_create_community_this_week(memory, 1, NOW + timedelta(days=6)))

    def test_community_check_once_per_day(self):
        memory = empty_memory()
        self.assertTrue(should_check_communities(memory, NOW))
        mark_community_check_done(memory, NOW)
        self.assertFalse(should_check_communities(memory, NOW + timedelta(hours=3)))
        self.assertTrue(should_check_communities(memory, NOW + timedelta(days=1)))


class MemoryLearningTests(unittest.TestCase):
    def test_extract_topics(self):
        self.assertEqual(extract_topics("Autonomous agents that code"), ["agents", "coding"])
        self.assertEqual(extract_topics("Hello there"), ["general"])

    def test_topic_performance_uses_measured_posts(self):
        memory = empty_memory()
        add_my_post(memory, "x1", "Agents and philosophy", "general", now=NOW)
        add_my_post(memory, "x2", "Coding tips", "general", now=NOW)
        memory["my_posts"][0].update(upvotes=10, comments=2)
        recompute_topic_performance(memory)

        self.assertEqual(memory["topic_performance"]["agents"]["total_upvotes"], 10)
        self.assertNotIn("coding", memory["topic_performance"])
        self.assertEqual(best_topics(memory, limit=1), ["agents"])

    def test_journal_entry_updates_heartbeat_stats(self):
        memory = empty_memory()
        add_journal_entry(memory, "Upvoted two posts", upvotes=2, now=NOW)

        self.assertEqual(memory["total_heartbeats"], 1)
        self.assertEqual(memory["last_heartbeat_time"], NOW.isoformat())
        self.assertEqual(memory["journal"][0]["upvotes"], 2)

    def test_unknown_agent_is_not_recorded(self):
        memory = empty_memory()
        record_agent_interaction(memory, "unknown", now=NOW)
        self.assertEqual(memory["known_agents"], {})

    def test_briefing_sections(self):
        memory = empty_memory()
        add_journal_entry(memory, "Quiet cycle", now=NOW)
        add_my_post(memory, "x1", "On agent memory", "general", now=NOW)
        memory["my_posts"][0].update(upvotes=3, comments=1)
        recompute_topic_performance(memory)
        record_agent_interaction(memory, "bob", note="good thread", now=NOW)
        record_agent_interaction(memory, "bob", now=NOW)
        record_agent_interaction(memory, "carol", now=NOW)
        mark_followed(memory, "bob", now=NOW)

        briefing = build_memory_briefing(memory)

        self.assertIn("RECENT ACTIVITY:", briefing)
        self.assertIn('"On agent memory"', briefing)
        self.assertIn("BEST PERFORMING POSTS", briefing)
        self.assertIn("TOP PERFORMING TOPICS:", briefing)
        self.assertIn("bob: 2 interactions", briefing)
        self.assertNotIn("carol:", briefing)
        self.assertIn("AGENTS I FOLLOW", briefing)
        self.assertTrue(briefing.splitlines()[-1].startswith("STATS: 1 total heartbeats"))

    def test_empty_briefing_is_stats_only(self):
        briefing = build_memory_briefing(empty_memory())
        self.assertEqual(briefing.splitlines()[0][:6], "STATS:")


if __name__ == "__main__":
    unittest.main()
