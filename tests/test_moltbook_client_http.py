import json
import unittest
from unittest.mock import patch

from requests import exceptions as requests_exceptions

from moltpulse.autonomy.records import CommunitySpec
from moltpulse.moltbook_client import (
    MoltbookClient,
    MoltbookCredentials,
    looks_like_suspension,
    normalize_sort,
)


class _Resp:
    def __init__(self, status_code=200, payload=None, text="", json_error=False):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text
        self._json_error = json_error

    def json(self):
        if self._json_error:
            raise ValueError("not json")
        return self._payload


def _client():
    return MoltbookClient(credentials=MoltbookCredentials(api_key="k"))


class MoltbookClientHttpTests(unittest.TestCase):
    @patch("moltpulse.moltbook_client.requests.get")
    def test_get_feed_hits_posts_endpoint_with_sort_and_limit(self, mock_get):
        mock_get.return_value = _Resp(payload={"posts": [{"id": "p1", "title": "t"}]})
        result = _client().get_feed(sort="HOT", limit=7)

        self.assertTrue(result.ok)
        self.assertEqual(result.data["posts"][0]["id"], "p1")
        url = mock_get.call_args.args[0]
        self.assertEqual(url, "https://www.moltbook.com/api/v1/posts")
        self.assertEqual(mock_get.call_args.kwargs["params"], {"sort": "hot", "limit": 7})
        self.assertEqual(mock_get.call_args.kwargs["headers"]["Authorization"], "Bearer k")

    @patch("moltpulse.moltbook_client.requests.get")
    def test_rate_limit_degrades_to_null_result(self, mock_get):
        mock_get.return_value = _Resp(status_code=429, text="slow down")
        client = _client()
        result = client.get_feed()

        self.assertFalse(result.ok)
        self.assertTrue(result.rate_limited)
        self.assertFalse(client.health.suspended)

    @patch("moltpulse.moltbook_client.requests.get")
    def test_network_error_never_raises(self, mock_get):
        mock_get.side_effect = requests_exceptions.ConnectionError("boom")
        result = _client().get_account_status()

        self.assertIsNone(result.data)
        self.assertIn("boom", result.error)

    @patch("moltpulse.moltbook_client.requests.post")
    @patch("moltpulse.moltbook_client.requests.get")
    def test_suspension_body_flips_health_and_blocks_writes(self, mock_get, mock_post):
        mock_get.return_value = _Resp(
            status_code=403,
            text='{"error": "Account suspended: failed verification challenge"}',
        )
        client = _client()
        profile = client.get_own_profile()

        self.assertFalse(profile.ok)
        self.assertTrue(client.health.suspended)
        self.assertIn("suspended", client.health.reason.lower())

        result = client.upvote("p1")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "suspended")
        mock_post.assert_not_called()

        client.clear_suspension()
        self.assertFalse(client.health.suspended)

    @patch("moltpulse.moltbook_client.requests.get")
    def test_generic_error_does_not_mark_suspended(self, mock_get):
        mock_get.return_value = _Resp(status_code=500, text="internal error")
        client = _client()
        result = client.get_post("p1")

        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 500)
        self.assertFalse(client.health.suspended)

    @patch("moltpulse.moltbook_client.requests.post")
    def test_create_comment_sends_parent_id_for_replies(self, mock_post):
        mock_post.return_value = _Resp(payload={"success": True, "comment": {"id": "c9"}})
        result = _client().create_comment("p1", "hello", parent_id="c1")

        self.assertTrue(result.ok)
        url = mock_post.call_args.args[0]
        self.assertTrue(url.endswith("/posts/p1/comments"))
        body = json.loads(mock_post.call_args.kwargs["data"])
        self.assertEqual(body, {"content": "hello", "parent_id": "c1"})

    @patch("moltpulse.moltbook_client.requests.post")
    def test_success_false_payload_is_failure(self, mock_post):
        mock_post.return_value = _Resp(payload={"success": False, "error": "already upvoted"})
        result = _client().upvote("p1")

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "already upvoted")

    @patch("moltpulse.moltbook_client.requests.post")
    def test_non_json_success_body_is_treated_as_ok(self, mock_post):
        mock_post.return_value = _Resp(status_code=200, json_error=True)
        result = _client().follow("someone")

        self.assertTrue(result.ok)
        self.assertTrue(mock_post.call_args.args[0].endswith("/agents/someone/follow"))

    @patch("moltpulse.moltbook_client.requests.post")
    def test_create_community_posts_spec_payload(self, mock_post):
        mock_post.return_value = _Resp(payload={"success": True})
        spec = CommunitySpec(name="agent_tools", display_name="Agent Tools", description="Tools.")
        _client().create_community(spec)

        body = json.loads(mock_post.call_args.kwargs["data"])
        self.assertEqual(body["name"], "agent_tools")
        self.assertTrue(mock_post.call_args.args[0].endswith("/submolts"))

    @patch("moltpulse.moltbook_client.requests.get")
    def test_search_and_comments_normalize_their_kinds(self, mock_get):
        mock_get.return_value = _Resp(payload={"results": []})
        client = _client()
        client.search("agents", kind="weird", limit=3)
        self.assertEqual(mock_get.call_args.kwargs["params"], {"q": "agents", "type": "posts", "limit": 3})
        client.get_comments("p1", sort="nope")
        self.assertEqual(mock_get.call_args.kwargs["params"], {"sort": "top"})

    def test_base_url_override_cannot_leave_official_host(self):
        with patch.dict("os.environ", {"MOLTBOOK_API_BASE": "https://evil.example.com/api"}):
            client = _client()
        self.assertEqual(client.base_url, "https://www.moltbook.com/api/v1")

    def test_helpers(self):
        self.assertEqual(normalize_sort("rising"), "rising")
        self.assertEqual(normalize_sort(None), "new")
        self.assertTrue(looks_like_suspension("You are BANNED"))
        self.assertFalse(looks_like_suspension("not found"))


if __name__ == "__main__":
    unittest.main()
