import json
import unittest
from unittest.mock import patch

from moltpulse.autonomy.decision import (
    DecisionEngine,
    DecisionRequest,
    build_feed_digest,
    parse_community_decision,
    parse_feed_decision,
    parse_follow_picks,
    salvage_truncated_json,
    validate_community_name,
)
from moltpulse.autonomy.records import FeedComment, FeedItem


GOOD = {
    "actions": [
        {"type": "upvote", "post_id": "p1", "reason": "solid benchmark"},
        {"type": "reply", "post_id": "p1", "parent_comment_id": "c1", "comment": "Good question", "reason": "r"},
    ],
    "should_post": True,
    "post_idea": {"submolt": "m/General", "title": "Agent memory", "content": "Notes on what I keep."},
    "summary": "Engaged with one post",
}


class _Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


class _Cfg:
    agent_name = "pulse"
    agent_persona = "Curious."
    llm_api_key = "key"
    llm_base_url = "https://llm.example/v1"
    llm_model = "test-model"
    llm_temperature = 0.5
    llm_max_tokens = 256


class FeedDecisionParsingTests(unittest.TestCase):
    def test_strict_json(self):
        decision = parse_feed_decision(json.dumps(GOOD))

        self.assertTrue(decision.usable)
        self.assertEqual([a.kind for a in decision.actions], ["upvote", "reply"])
        self.assertEqual(decision.actions[1].parent_comment_id, "c1")
        self.assertEqual(decision.actions[1].text, "Good question")
        self.assertEqual(decision.post_idea.submolt, "general")
        self.assertEqual(decision.summary, "Engaged with one post")

    def test_code_fences_and_prose_are_tolerated(self):
        text = "Sure! Here you go:\n```json\n" + json.dumps(GOOD) + "\n```\nHope this helps."
        decision = parse_feed_decision(text)
        self.assertTrue(decision.usable)
        self.assertEqual(len(decision.actions), 2)

    def test_malformed_action_entries_are_dropped(self):
        payload = {"actions": [{"type": "upvote"}, "junk", {"type": "nuke", "post_id": "p1"},
                               {"type": "skip", "post_id": "p2"}], "summary": "s"}
        decision = parse_feed_decision(json.dumps(payload))
        self.assertEqual([(a.kind, a.post_id) for a in decision.actions], [("skip", "p2")])

    def test_post_idea_needs_should_post(self):
        payload = dict(GOOD, should_post=False)
        self.assertIsNone(parse_feed_decision(json.dumps(payload)).post_idea)

    def test_truncated_response_keeps_summary_but_no_actions(self):
        truncated = '{"summary": "Looked at the feed", "actions": [{"type": "upvote", "post_id": "p1", "reason": "go'
        decision = parse_feed_decision(truncated)

        self.assertFalse(decision.usable)
        self.assertTrue(decision.salvaged)
        self.assertEqual(decision.actions, [])
        self.assertIsNone(decision.post_idea)
        self.assertEqual(decision.summary, "Looked at the feed")

    def test_garbage_is_an_error_decision(self):
        decision = parse_feed_decision("I think you should upvote everything")
        self.assertFalse(decision.usable)
        self.assertEqual(decision.actions, [])
        self.assertFalse(parse_feed_decision("").usable)

    def test_salvage_closes_open_structures(self):
        salvaged = salvage_truncated_json('{"a": 1, "b": [1, 2, {"c": "d')
        self.assertEqual(salvaged["a"], 1)
        self.assertIsNone(salvage_truncated_json("no braces here"))


class SocialDecisionParsingTests(unittest.TestCase):
    def test_follow_picks_are_limited_to_feed_authors(self):
        text = json.dumps({"agents_to_follow": [{"name": "@ghost"}, {"name": "alice", "reason": "great posts"},
                                                {"name": "bob"}]})
        picks = parse_follow_picks(text, ["alice", "bob"])
        self.assertEqual(len(picks), 1)
        self.assertEqual(picks[0].name, "alice")
        self.assertEqual(picks[0].reason, "great posts")

    def test_follow_picks_unparseable(self):
        self.assertEqual(parse_follow_picks("nope", ["alice"]), [])

    def test_community_name_rules(self):
        self.assertIsNone(validate_community_name("agent_tools"))
        self.assertIsNotNone(validate_community_name("Agent Tools"))
        self.assertIsNotNone(validate_community_name("a" * 21))

    def test_community_decision(self):
        text = json.dumps({"should_create": True, "reason": "gap",
                           "community": {"name": "agent_tools", "display_name": "Agent Tools",
                                         "description": "Tools."}})
        decision = parse_community_decision(text)
        self.assertEqual(decision.spec.name, "agent_tools")

        bad = json.dumps({"should_create": True, "community": {"name": "Bad-Name"}})
        self.assertIsNone(parse_community_decision(bad).spec)
        self.assertIsNone(parse_community_decision(json.dumps({"should_create": False})).spec)


class DecisionEngineTests(unittest.TestCase):
    def test_digest_lists_exact_ids(self):
        item = FeedItem(id="p1", title="T", body="b" * 500, author="alice",
                        comments=[FeedComment(id=f"c{i}", body="x", author="bob") for i in range(5)])
        digest = build_feed_digest([item])
        self.assertIn('POST_ID="p1"', digest)
        self.assertIn('COMMENT_ID="c2"', digest)
        self.assertNotIn('COMMENT_ID="c3"', digest)
        self.assertNotIn("b" * 201, digest)

    @patch("moltpulse.autonomy.decision.requests.post")
    def test_decide_feed_actions_calls_chat_completions(self, mock_post):
        mock_post.return_value = _Resp(
            payload={"choices": [{"message": {"content": json.dumps(GOOD)}, "finish_reason": "stop"}]}
        )
        request = DecisionRequest(feed=[FeedItem(id="p1", title="T", body="", author="a")], allow_post=False)
        decision = DecisionEngine(_Cfg()).decide_feed_actions(request)

        self.assertEqual(len(decision.actions), 2)
        self.assertIsNone(decision.post_idea)
        self.assertEqual(mock_post.call_args.args[0], "https://llm.example/v1/chat/completions")
        body = json.loads(mock_post.call_args.kwargs["data"])
        self.assertEqual(body["response_format"], {"type": "json_object"})

    @patch("moltpulse.autonomy.decision.requests.post")
    def test_llm_failure_returns_none(self, mock_post):
        mock_post.return_value = _Resp(status_code=500, text="down")
        request = DecisionRequest(feed=[])
        self.assertIsNone(DecisionEngine(_Cfg()).decide_feed_actions(request))


if __name__ == "__main__":
    unittest.main()
