import json
import tempfile
import unittest
from pathlib import Path

from moltpulse.autonomy.action_journal import append_action_journal


class ActionJournalTests(unittest.TestCase):
    def test_appends_one_json_line_per_action(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "actions.jsonl"
            append_action_journal(path, action_type="Upvote", target_post_id="p1", submolt="General",
                                  meta={"reason": "good", "empty": None, "nested": {"k": [1, "x"]}})
            append_action_journal(path, action_type="reply", target_post_id="p1", parent_comment_id="c1",
                                  content="y" * 6000, dry_run=True)

            rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]

        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]["action_type"], "upvote")
        self.assertEqual(rows[0]["submolt"], "general")
        self.assertEqual(rows[0]["meta"], {"reason": "good", "nested": {"k": [1, "x"]}})
        self.assertEqual(rows[1]["parent_comment_id"], "c1")
        self.assertTrue(rows[1]["dry_run"])
        self.assertEqual(len(rows[1]["content"]), 5000)

    def test_no_path_is_a_no_op(self):
        append_action_journal(None, action_type="upvote")

    def test_unwritable_path_does_not_raise(self):
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "blocker"
            blocker.write_text("x", encoding="utf-8")
            append_action_journal(blocker / "actions.jsonl", action_type="upvote")


if __name__ == "__main__":
    unittest.main()
